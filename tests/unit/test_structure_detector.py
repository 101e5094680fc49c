"""
Unit Tests - Structure Detector
Tests for field discovery, mapping suggestions and live API validation.
"""
import aiohttp
import pytest

from marketlink.data_providers.models import (
    ConfidenceLevel,
    FieldMapping,
    FieldTransform,
    OperationKind,
    ValidationErrorCode,
)
from marketlink.data_providers.structure_detector import (
    calculate_confidence,
    detect_structure,
    extract_fields,
    find_possible_mappings,
    generate_improvement_suggestions,
    get_value_type,
    split_items_path,
    suggest_transform,
    validate_custom_api,
)
from tests.conftest import FakeResponse, FakeSession


class TestValueTypes:

    def test_types(self):
        assert get_value_type([1]) == "array"
        assert get_value_type({"a": 1}) == "object"
        assert get_value_type(True) == "boolean"
        assert get_value_type(1.5) == "number"
        assert get_value_type("2024-01-05T00:00:00Z") == "date"
        assert get_value_type("AAPL") == "string"


class TestFindPossibleMappings:
    """Tests for name and value heuristics."""

    def test_exact_name_match(self):
        candidates = find_possible_mappings("price", 10)
        assert candidates[0].target_field == "price"
        assert candidates[0].confidence == 0.9

    def test_substring_name_match(self):
        candidates = find_possible_mappings("regularMarketVolume", 5)
        assert ("volume", 0.7) in [(c.target_field, c.confidence) for c in candidates]

    def test_short_synonyms_need_exact_match(self):
        # "h" and "l" must not match every name containing those letters
        targets = {c.target_field for c in find_possible_mappings("shell", "x")}
        assert "high" not in targets and "low" not in targets

    def test_symbol_value_heuristic(self):
        candidates = find_possible_mappings("foo", "MSFT")
        assert [(c.target_field, c.confidence) for c in candidates] == [("symbol", 0.8)]

    def test_url_value_heuristic(self):
        candidates = find_possible_mappings("foo", "https://example.com/a")
        assert candidates[0].target_field == "url"
        assert candidates[0].confidence == 0.9

    def test_price_and_volume_heuristics(self):
        assert find_possible_mappings("foo", 12.34)[0].target_field == "price"
        assert find_possible_mappings("foo", 250000)[0].target_field == "volume"
        assert find_possible_mappings("foo", 12) == []

    def test_top_three_sorted(self):
        candidates = find_possible_mappings("close_price", 1.5)
        assert len(candidates) <= 3
        confidences = [c.confidence for c in candidates]
        assert confidences == sorted(confidences, reverse=True)


class TestExtractFields:
    """Tests for flattening payloads."""

    def test_nested_objects(self):
        fields = extract_fields({"quote": {"symbol": "AAPL", "price": 1.5}, "meta": None})
        assert [f.path for f in fields] == ["quote.symbol", "quote.price"]

    def test_only_first_three_array_elements(self):
        payload = {"bars": [{"close": i + 0.5} for i in range(10)]}
        paths = [f.path for f in extract_fields(payload)]
        assert paths == ["bars[0].close", "bars[1].close", "bars[2].close"]

    def test_root_array(self):
        fields = extract_fields([{"title": "Hello"}])
        assert fields[0].path == "[0].title"


class TestSuggestTransform:

    def test_numeric_string(self):
        assert suggest_transform("187.32", "string", "price") == FieldTransform.PARSE_FLOAT

    def test_date_string(self):
        assert suggest_transform("2024-01-05", "date", "timestamp") == FieldTransform.PARSE_DATE

    def test_lowercase_symbol(self):
        assert suggest_transform("aapl", "string", "symbol") == FieldTransform.UPPERCASE

    def test_fractional_percent(self):
        assert suggest_transform(0.0123, "number", "change_percent") == FieldTransform.MULTIPLY_100

    def test_plain_price_untouched(self):
        assert suggest_transform(0.5, "number", "price") == FieldTransform.NONE


class TestDetectStructure:
    """Tests for end-to-end detection."""

    def test_simple_quote(self):
        sample = {"symbol": "AAPL", "price": 187.32, "timestamp": "2024-01-05T00:00:00Z"}
        structure = detect_structure(sample, "quote")

        by_target = {m.target_field: m for m in structure.suggested_mappings}
        assert by_target["symbol"].source_field == "symbol"
        assert by_target["price"].source_field == "price"
        assert by_target["timestamp"].transform == FieldTransform.PARSE_DATE
        assert all(m.required for m in structure.suggested_mappings)

        # Mapped fields were chosen from candidates at or above 0.5
        for field in structure.detected_fields:
            if field.path in ("symbol", "price"):
                assert max(c.confidence for c in field.candidate_mappings) >= 0.5
        assert structure.confidence in (ConfidenceLevel.MEDIUM, ConfidenceLevel.HIGH)

    def test_fractional_percent_mapped_as_optional(self):
        sample = {"symbol": "AAPL", "price": 187.32, "timestamp": 1704412800, "change_pct": 0.0123}
        structure = detect_structure(sample, "quote")

        by_target = {m.target_field: m for m in structure.suggested_mappings}
        percent = by_target["change_percent"]
        assert percent.source_field == "change_pct"
        assert percent.transform == FieldTransform.MULTIPLY_100
        assert percent.required is False
        assert by_target["price"].source_field == "price"
        assert structure.confidence == ConfidenceLevel.HIGH

    def test_each_path_used_once(self):
        structure = detect_structure({"close": 101.5}, OperationKind.HISTORICAL)
        sources = [m.source_field for m in structure.suggested_mappings]
        assert len(sources) == len(set(sources))

    def test_nothing_recognized(self):
        structure = detect_structure({"zzz": True}, "quote")
        assert structure.suggested_mappings == []
        assert structure.confidence == ConfidenceLevel.LOW

    def test_list_kind_factors_items_path(self):
        sample = {"data": [
            {"title": "A", "date": "2024-01-05", "source": "Wire"},
            {"title": "B", "date": "2024-01-06", "source": "Wire"},
        ]}
        structure = detect_structure(sample, "news")
        assert structure.items_path == "data"
        by_target = {m.target_field: m.source_field for m in structure.suggested_mappings}
        assert by_target == {"title": "title", "published_at": "date", "source": "source"}

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            detect_structure({}, "bogus")


class TestConfidence:

    def test_buckets(self):
        required = FieldMapping("a", "symbol", required=True)
        optional = FieldMapping("b", "change")
        assert calculate_confidence([]) == ConfidenceLevel.LOW
        assert calculate_confidence([required]) == ConfidenceLevel.HIGH
        assert calculate_confidence([required, optional]) == ConfidenceLevel.MEDIUM
        assert calculate_confidence([optional]) == ConfidenceLevel.LOW

    def test_split_items_path_mixed_prefixes(self):
        mappings = [FieldMapping("a[0].x", "title"), FieldMapping("b[0].y", "source")]
        assert split_items_path(mappings) == (None, mappings)

    def test_improvement_suggestions(self):
        structure = detect_structure({"zzz": True}, "quote")
        suggestions = generate_improvement_suggestions(structure)
        assert len(suggestions) == 3


class TestValidateCustomApi:
    """Tests for live custom API validation."""

    @pytest.mark.asyncio
    async def test_valid_endpoint(self):
        session = FakeSession(FakeResponse({"symbol": "AAPL", "price": 187.32, "timestamp": 1704412800}))
        result = await validate_custom_api(
            "https://api.example.com", "/quote/{symbol}", {"X-Key": "k"}, "MSFT", session=session
        )

        assert result.is_valid is True
        assert result.errors == []
        assert result.warnings == []
        assert session.calls[0]["url"] == "https://api.example.com/quote/MSFT"
        assert session.calls[0]["headers"] == {"X-Key": "k"}
        assert session.closed is False

    @pytest.mark.asyncio
    async def test_http_error(self):
        session = FakeSession(FakeResponse(None, status=404, reason="Not Found"))
        result = await validate_custom_api("https://api.example.com", "/q", {}, session=session)

        assert result.is_valid is False
        assert result.errors[0].code == ValidationErrorCode.HTTP_ERROR
        assert result.errors[0].message == "API returned 404: Not Found"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        session = FakeSession(aiohttp.ClientConnectionError("refused"))
        result = await validate_custom_api("https://api.example.com", "/q", {}, session=session)

        assert result.is_valid is False
        assert result.errors[0].code == ValidationErrorCode.CONNECTION_ERROR

    @pytest.mark.asyncio
    async def test_warns_on_missing_essentials(self):
        session = FakeSession(FakeResponse({"foo": True}))
        result = await validate_custom_api("https://api.example.com", "/q", {}, session=session)

        assert result.is_valid is True
        assert result.warnings[0].severity == "warning"
        assert result.suggested_improvements
