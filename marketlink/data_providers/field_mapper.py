"""
Field Mapper

Path extraction and value transforms over generic JSON-like trees.

Paths are dot-separated segments, each optionally followed by one or more
bracketed indices: ``result[0].price``, ``data[0][1]``, ``[0].symbol``.
A path is parsed once into a tuple of typed segments and then evaluated
against the tree; evaluation is total and returns ``None`` for anything
it cannot reach.
"""
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Optional, Union

from loguru import logger

from marketlink.data_providers.models import (
    FieldMapping,
    FieldTransform,
    ValidationError,
    ValidationErrorCode,
)


@dataclass(frozen=True)
class FieldSegment:
    name: str


@dataclass(frozen=True)
class IndexSegment:
    index: int


PathSegment = Union[FieldSegment, IndexSegment]

_PART_RE = re.compile(r"^([^\[\]]*)((?:\[\d+\])*)$")
_INDEX_RE = re.compile(r"\[(\d+)\]")
_FLOAT_PREFIX_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

# Epoch values at or above this are taken to be milliseconds
_EPOCH_MS_THRESHOLD = 1e11


@lru_cache(maxsize=1024)
def parse_path(path: str) -> Optional[tuple[PathSegment, ...]]:
    """Parse a path string into segments, or None if it is malformed."""
    if not isinstance(path, str) or not path:
        return None

    segments: list[PathSegment] = []
    for part in path.split("."):
        match = _PART_RE.match(part)
        if not match:
            return None
        name, indices = match.groups()
        if not name and not indices:
            return None
        if name:
            segments.append(FieldSegment(name))
        segments.extend(IndexSegment(int(i)) for i in _INDEX_RE.findall(indices))
    return tuple(segments)


def _step(current: Any, segment: PathSegment) -> Any:
    if isinstance(segment, FieldSegment):
        if isinstance(current, dict):
            return current.get(segment.name)
        return None
    if isinstance(current, list) and segment.index < len(current):
        return current[segment.index]
    return None


def extract_value(tree: Any, path: str) -> Any:
    """Walk ``path`` through ``tree``; None on any missing key or bad index."""
    segments = parse_path(path)
    if segments is None:
        return None

    current = tree
    for segment in segments:
        current = _step(current, segment)
        if current is None:
            return None
    return current


# ==================== Transforms ====================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_float(value: Any) -> Optional[float]:
    """Leading-numeric parse: "12.5%" -> 12.5, "abc" -> None."""
    if _is_number(value):
        return float(value)
    if not isinstance(value, str):
        return None
    match = _FLOAT_PREFIX_RE.match(value.strip())
    if not match:
        return None
    result = float(match.group(0))
    return None if math.isnan(result) else result


def parse_date(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 strings or epoch seconds/milliseconds into UTC datetimes."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            value = int(text)
        else:
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError:
                return None
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    if _is_number(value):
        seconds = value / 1000 if value >= _EPOCH_MS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    return None


def apply_transform(value: Any, transform: FieldTransform | str) -> Any:
    """Apply a named transform; unknown names leave the value unchanged."""
    try:
        kind = FieldTransform(transform)
    except ValueError:
        return value

    if kind is FieldTransform.UPPERCASE:
        return value.upper() if isinstance(value, str) else value
    if kind is FieldTransform.LOWERCASE:
        return value.lower() if isinstance(value, str) else value
    if kind is FieldTransform.PARSE_FLOAT:
        return parse_float(value)
    if kind is FieldTransform.PARSE_DATE:
        return parse_date(value)
    if kind is FieldTransform.MULTIPLY_100:
        return value * 100 if _is_number(value) else value
    if kind is FieldTransform.DIVIDE_100:
        return value / 100 if _is_number(value) else value
    return value


# ==================== Mapping ====================

def transform(raw_response: Any, mappings: list[FieldMapping]) -> dict[str, Any]:
    """
    Build a flat dict of canonical fields from a raw response.

    Each mapping is applied independently. A mapping whose value cannot be
    extracted or transformed falls back to its default value (if any) and
    never aborts the others.
    """
    result: dict[str, Any] = {}

    for mapping in mappings:
        try:
            value = extract_value(raw_response, mapping.source_field)
            if value is not None:
                value = apply_transform(value, mapping.transform)
        except Exception as e:
            logger.warning(f"Failed to map field {mapping.source_field}: {e}")
            value = None

        if value is not None:
            result[mapping.target_field] = value
        elif mapping.default_value is not None:
            result[mapping.target_field] = mapping.default_value

    return result


def validate_response(raw_response: Any, mappings: list[FieldMapping]) -> list[ValidationError]:
    """Return one error per required mapping whose source value is missing."""
    errors: list[ValidationError] = []

    for mapping in mappings:
        if not mapping.required:
            continue
        try:
            value = extract_value(raw_response, mapping.source_field)
        except Exception as e:
            errors.append(ValidationError(
                field=mapping.source_field,
                message=f"Failed to access field '{mapping.source_field}': {e}",
                code=ValidationErrorCode.FIELD_ACCESS_ERROR,
            ))
            continue
        if value is None:
            errors.append(ValidationError(
                field=mapping.source_field,
                message=f"Required field '{mapping.source_field}' is missing",
                code=ValidationErrorCode.MISSING_REQUIRED_FIELD,
            ))

    return errors
