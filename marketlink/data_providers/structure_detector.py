"""
API Structure Detection

Infers field mappings from an unseen JSON payload by matching field names
against a synonym table and values against simple shape heuristics, then
scores the result.
"""
import re
from datetime import datetime
from typing import Any, Optional

import aiohttp
from loguru import logger

from marketlink.data_providers.adapters.base import join_url
from marketlink.data_providers.models import (
    ConfidenceLevel,
    CustomApiValidationResult,
    DetectedField,
    DetectedStructure,
    FieldCandidate,
    FieldDataType,
    FieldMapping,
    FieldTransform,
    OperationKind,
    ValidationError,
    ValidationErrorCode,
)


# Canonical field -> lower-case name synonyms
FIELD_PATTERNS: dict[str, list[str]] = {
    # Quote
    "symbol": ["symbol", "ticker", "code", "stock_code", "instrument"],
    "price": ["price", "last", "last_price", "current_price", "close", "ltp", "lastprice"],
    "change": ["change", "net_change", "price_change", "daily_change"],
    "change_percent": ["change_percent", "percent_change", "pct_change", "change_pct", "percentage"],
    "volume": ["volume", "vol", "total_volume", "traded_volume"],
    "high": ["high", "day_high", "daily_high", "h"],
    "low": ["low", "day_low", "daily_low", "l"],
    "open": ["open", "open_price", "opening_price", "o"],
    "previous_close": ["prev_close", "previous_close", "yesterday_close", "pc"],
    # Profile
    "name": ["name", "company_name", "full_name", "companyname"],
    "description": ["description", "about", "business_description", "summary"],
    "sector": ["sector", "industry_sector", "gics_sector"],
    "industry": ["industry", "sub_industry", "gics_industry"],
    "market_cap": ["market_cap", "market_capitalization", "mcap", "marketcapitalization"],
    "employees": ["employees", "employee_count", "total_employees", "workforce"],
    "website": ["website", "web_url", "homepage", "url"],
    # News
    "title": ["title", "headline", "subject", "header"],
    "summary": ["summary", "description", "excerpt", "snippet"],
    "published_at": ["published_at", "date", "timestamp", "created_at", "pub_date"],
    "source": ["source", "publisher", "author", "provider"],
    "url": ["url", "link", "href", "article_url"],
    # Historical
    "timestamp": ["timestamp", "date", "time", "datetime", "t"],
    "close": ["close", "closing_price", "c"],
}

REQUIRED_FIELDS: dict[OperationKind, list[str]] = {
    OperationKind.QUOTE: ["symbol", "price", "timestamp"],
    OperationKind.HISTORICAL: ["timestamp", "open", "high", "low", "close", "volume"],
    OperationKind.PROFILE: ["symbol", "name"],
    OperationKind.NEWS: ["title", "published_at", "source"],
    OperationKind.SEARCH: ["symbol"],
}

# Mapped after the required fields when a confident candidate exists
OPTIONAL_FIELDS: dict[OperationKind, list[str]] = {
    OperationKind.QUOTE: ["change_percent"],
}

PERCENT_FIELDS = {"change_percent"}

LIST_KINDS = {OperationKind.HISTORICAL, OperationKind.NEWS, OperationKind.SEARCH}

SYMBOL_RE = re.compile(r"^[A-Z]{1,8}$")
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}|^\d{10,13}$|^\d{4}/\d{2}/\d{2}")
URL_RE = re.compile(r"^https?://")
NUMERIC_RE = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)\s*$")
ITEMS_PREFIX_RE = re.compile(r"^(.*?)\[0\]\.?")

EXACT_MATCH_CONFIDENCE = 0.9
PARTIAL_MATCH_CONFIDENCE = 0.7
MAPPING_THRESHOLD = 0.5
MAX_CANDIDATES = 3
MAX_ARRAY_SAMPLES = 3
ESSENTIAL_QUOTE_FIELDS = ("symbol", "price")

# Synonyms this short ("h", "pc") only count on an exact name match
_MIN_SUBSTRING_PATTERN = 3


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _looks_like_date(text: str) -> bool:
    if DATE_RE.match(text):
        return True
    if text.isdigit():
        return False
    try:
        datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


def get_value_type(value: Any) -> str:
    if isinstance(value, list):
        return "array"
    if value is None or isinstance(value, dict):
        return "object"
    if isinstance(value, bool):
        return "boolean"
    if _is_number(value):
        return "number"
    if isinstance(value, str) and _looks_like_date(value):
        return "date"
    return "string"


# ==================== Detection ====================

def find_possible_mappings(field_name: str, value: Any) -> list[FieldCandidate]:
    """Score canonical targets for one leaf; returns the top three."""
    candidates: list[FieldCandidate] = []
    lower_name = field_name.lower()

    for target, patterns in FIELD_PATTERNS.items():
        for pattern in patterns:
            if lower_name == pattern:
                confidence = EXACT_MATCH_CONFIDENCE
            elif len(pattern) >= _MIN_SUBSTRING_PATTERN and pattern in lower_name:
                confidence = PARTIAL_MATCH_CONFIDENCE
            else:
                continue
            candidates.append(FieldCandidate(
                target_field=target,
                confidence=confidence,
                reason=f"Field name '{field_name}' matches pattern '{pattern}'",
            ))

    if isinstance(value, str):
        if SYMBOL_RE.match(value):
            candidates.append(FieldCandidate("symbol", 0.8, f"Value '{value}' matches stock symbol pattern"))
        if URL_RE.match(value):
            candidates.append(FieldCandidate("url", 0.9, f"Value '{value}' is a URL"))
    elif _is_number(value):
        if 0 < value < 10000 and isinstance(value, float) and not value.is_integer():
            candidates.append(FieldCandidate("price", 0.6, f"Numeric value {value} could be a price"))
        if value > 1000 and float(value).is_integer():
            candidates.append(FieldCandidate("volume", 0.5, f"Large integer {value} could be volume"))

    candidates.sort(key=lambda c: c.confidence, reverse=True)
    return candidates[:MAX_CANDIDATES]


def extract_fields(payload: Any) -> list[DetectedField]:
    """
    Flatten a JSON-like tree into leaf fields.

    Objects are walked fully; arrays contribute only their first three
    elements. Leaves inside objects are scored by key name, array
    primitives by their full path.
    """
    fields: list[DetectedField] = []

    def leaf(path: str, name: str, value: Any) -> None:
        fields.append(DetectedField(
            path=path,
            value=value,
            inferred_type=get_value_type(value),
            candidate_mappings=find_possible_mappings(name, value),
        ))

    def traverse(current: Any, path: str) -> None:
        if isinstance(current, list):
            for index, item in enumerate(current[:MAX_ARRAY_SAMPLES]):
                item_path = f"{path}[{index}]"
                if isinstance(item, (dict, list)):
                    traverse(item, item_path)
                elif item is not None:
                    leaf(item_path, path, item)
        elif isinstance(current, dict):
            for key, value in current.items():
                new_path = f"{path}.{key}" if path else key
                if isinstance(value, (dict, list)):
                    traverse(value, new_path)
                elif value is not None:
                    leaf(new_path, key, value)

    traverse(payload, "")
    return fields


def suggest_transform(value: Any, inferred_type: str, target_field: str) -> FieldTransform:
    if isinstance(value, str):
        if inferred_type == "date":
            return FieldTransform.PARSE_DATE
        if NUMERIC_RE.match(value):
            return FieldTransform.PARSE_FLOAT
        if target_field == "symbol" and value != value.upper():
            return FieldTransform.UPPERCASE
    elif _is_number(value) and target_field in PERCENT_FIELDS and 0 < abs(value) < 1:
        # Fractions such as 0.05 are reported as 5 (%)
        return FieldTransform.MULTIPLY_100
    return FieldTransform.NONE


def _data_type(inferred_type: str, transform: FieldTransform) -> FieldDataType:
    if transform is FieldTransform.PARSE_FLOAT:
        return FieldDataType.NUMBER
    if transform is FieldTransform.PARSE_DATE:
        return FieldDataType.DATE
    try:
        return FieldDataType(inferred_type)
    except ValueError:
        return FieldDataType.STRING


def generate_mappings(
    detected_fields: list[DetectedField],
    expected_kind: OperationKind | str,
) -> list[FieldMapping]:
    """
    Pick the best unused candidate above threshold for each required field,
    then for the kind's optional fields such as percentages.
    """
    kind = OperationKind(expected_kind)
    required = REQUIRED_FIELDS[kind]
    mappings: list[FieldMapping] = []
    used_paths: set[str] = set()

    for target in required + OPTIONAL_FIELDS.get(kind, []):
        best: Optional[tuple[float, DetectedField]] = None
        for detected in detected_fields:
            if detected.path in used_paths:
                continue
            for candidate in detected.candidate_mappings:
                if candidate.target_field != target:
                    continue
                if best is None or candidate.confidence > best[0]:
                    best = (candidate.confidence, detected)

        if best is None or best[0] <= MAPPING_THRESHOLD:
            continue

        detected = best[1]
        transform = suggest_transform(detected.value, detected.inferred_type, target)
        mappings.append(FieldMapping(
            source_field=detected.path,
            target_field=target,
            data_type=_data_type(detected.inferred_type, transform),
            transform=transform,
            required=target in required,
        ))
        used_paths.add(detected.path)

    return mappings


def calculate_confidence(mappings: list[FieldMapping]) -> ConfidenceLevel:
    if not mappings:
        return ConfidenceLevel.LOW

    average = sum(1.0 if m.required else 0.5 for m in mappings) / len(mappings)
    if average > 0.8:
        return ConfidenceLevel.HIGH
    if average > 0.5:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def split_items_path(mappings: list[FieldMapping]) -> tuple[Optional[str], list[FieldMapping]]:
    """
    Factor a shared ``<prefix>[0]`` out of list-shaped mappings.

    Returns the items path ("" for a root array) and the mappings
    rewritten relative to one item, or (None, mappings) when the
    source paths do not share a first-element prefix.
    """
    prefixes = set()
    for mapping in mappings:
        match = ITEMS_PREFIX_RE.match(mapping.source_field)
        if not match:
            return None, mappings
        prefixes.add(match.group(1))
    if len(prefixes) != 1:
        return None, mappings

    prefix = prefixes.pop()
    relative = []
    for mapping in mappings:
        rest = ITEMS_PREFIX_RE.sub("", mapping.source_field, count=1)
        if not rest:
            return None, mappings
        relative.append(FieldMapping(
            source_field=rest,
            target_field=mapping.target_field,
            data_type=mapping.data_type,
            transform=mapping.transform,
            default_value=mapping.default_value,
            required=mapping.required,
        ))
    return prefix, relative


def detect_structure(sample_response: Any, expected_kind: OperationKind | str) -> DetectedStructure:
    """Detect fields in a sample payload and suggest mappings for ``expected_kind``."""
    kind = OperationKind(expected_kind)
    detected_fields = extract_fields(sample_response)
    suggested = generate_mappings(detected_fields, kind)
    confidence = calculate_confidence(suggested)

    items_path = None
    if kind in LIST_KINDS and suggested:
        items_path, suggested = split_items_path(suggested)

    logger.debug(
        f"Detected {len(detected_fields)} fields, {len(suggested)} mappings "
        f"for {kind.value} ({confidence.value})"
    )
    return DetectedStructure(
        sample_response=sample_response,
        detected_fields=detected_fields,
        suggested_mappings=suggested,
        confidence=confidence,
        items_path=items_path,
    )


def generate_improvement_suggestions(structure: DetectedStructure) -> list[str]:
    suggestions = []

    if structure.confidence is ConfidenceLevel.LOW:
        suggestions.append(
            "Consider providing more sample data or checking if the API endpoint is correct"
        )
    if len(structure.suggested_mappings) < 3:
        suggestions.append(
            "This API may have limited data fields. Consider using it alongside other providers"
        )
    if not any(m.target_field == "timestamp" for m in structure.suggested_mappings):
        suggestions.append("No timestamp field detected. Real-time data may not be available")

    return suggestions


# ==================== Live Validation ====================

async def validate_custom_api(
    base_url: str,
    endpoint: str,
    auth_headers: dict[str, str],
    test_symbol: str = "AAPL",
    session: Optional[aiohttp.ClientSession] = None,
    timeout_seconds: float = 30.0,
) -> CustomApiValidationResult:
    """
    Call a custom endpoint once with a live GET and detect its quote structure.

    ``endpoint`` may be absolute or relative to ``base_url`` and may contain
    a ``{symbol}`` placeholder. Transport failures are reported as a
    CONNECTION_ERROR entry rather than raised.
    """
    url = join_url(base_url, endpoint.replace("{symbol}", test_symbol))
    errors: list[ValidationError] = []
    warnings: list[ValidationError] = []

    owns_session = session is None
    if owns_session:
        session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout_seconds))

    try:
        async with session.get(url, headers=auth_headers) as response:
            if not 200 <= response.status < 300:
                errors.append(ValidationError(
                    field="endpoint",
                    message=f"API returned {response.status}: {response.reason}",
                    code=ValidationErrorCode.HTTP_ERROR,
                ))
                return CustomApiValidationResult(is_valid=False, errors=errors, warnings=warnings)
            data = await response.json(content_type=None)
    except Exception as e:
        logger.warning(f"Custom API validation failed for {url}: {e}")
        errors.append(ValidationError(
            field="connection",
            message=f"Failed to connect to API: {e}",
            code=ValidationErrorCode.CONNECTION_ERROR,
        ))
        return CustomApiValidationResult(is_valid=False, errors=errors, warnings=warnings)
    finally:
        if owns_session:
            await session.close()

    structure = detect_structure(data, OperationKind.QUOTE)
    mapped = {m.target_field for m in structure.suggested_mappings}
    if not all(field in mapped for field in ESSENTIAL_QUOTE_FIELDS):
        warnings.append(ValidationError(
            field="mappings",
            message="Could not automatically detect all essential fields. "
                    "You may need to manually configure field mappings",
            code=ValidationErrorCode.MISSING_REQUIRED_FIELD,
            severity="warning",
        ))

    return CustomApiValidationResult(
        is_valid=True,
        errors=errors,
        warnings=warnings,
        detected_structure=structure,
        suggested_improvements=generate_improvement_suggestions(structure),
    )
