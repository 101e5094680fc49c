"""
Unit Tests - Finnhub Adapter
"""
from datetime import datetime, timezone

import pytest

from marketlink.data_providers.adapters.finnhub import FinnhubAdapter, create_finnhub_provider
from marketlink.data_providers.models import (
    ApiFeature,
    HistoricalDataRequest,
    NewsRequest,
    QuoteRequest,
)
from marketlink.utils.exceptions import ApiError, ApiErrorCode
from tests.conftest import FakeResponse, FakeSession


QUOTE_PAYLOAD = {"c": 187.32, "d": 1.2, "dp": 0.65, "h": 188.0, "l": 185.5, "o": 186.0, "pc": 186.12, "t": 1704412800}


@pytest.fixture
def adapter():
    return FinnhubAdapter()


class TestProvider:

    def test_descriptor(self):
        provider = create_finnhub_provider()
        assert provider.id == "finnhub"
        assert provider.requires_api_key is True
        assert provider.supports(ApiFeature.MARKET_NEWS)
        assert not provider.supports(ApiFeature.INDIAN_STOCKS)

    def test_base_url_override(self):
        assert create_finnhub_provider("https://mirror.test").base_url == "https://mirror.test"


class TestQuote:
    """Tests for /quote normalization."""

    @pytest.mark.asyncio
    async def test_quote(self, adapter, credentials):
        adapter._session = FakeSession(FakeResponse(QUOTE_PAYLOAD))
        result = await adapter.get_quote(QuoteRequest("aapl"), credentials)

        assert result.success is True
        quote = result.data
        assert quote.symbol == "AAPL"
        assert quote.price == 187.32
        assert quote.change_percent == 0.65
        assert quote.currency == "USD"
        assert quote.timestamp == datetime(2024, 1, 5, tzinfo=timezone.utc)

        call = adapter._session.calls[0]
        assert call["url"].endswith("/quote")
        assert call["params"] == {"symbol": "AAPL"}
        assert call["headers"]["X-Finnhub-Token"] == "test-key"

    @pytest.mark.asyncio
    async def test_all_zero_is_no_data(self, adapter, credentials):
        adapter._session = FakeSession(FakeResponse({"c": 0, "h": 0, "l": 0, "d": None}))
        with pytest.raises(ApiError) as exc_info:
            await adapter.get_quote(QuoteRequest("ZZZZ"), credentials)
        assert exc_info.value.code == ApiErrorCode.NO_DATA

    @pytest.mark.asyncio
    async def test_error_body_is_api_error(self, adapter, credentials):
        adapter._session = FakeSession(FakeResponse({"error": "Invalid API key"}))
        with pytest.raises(ApiError) as exc_info:
            await adapter.get_quote(QuoteRequest("AAPL"), credentials)
        assert exc_info.value.code == ApiErrorCode.API_ERROR


class TestHistorical:
    """Tests for /stock/candle normalization."""

    @pytest.mark.asyncio
    async def test_candles_sorted_and_limited(self, adapter, credentials):
        adapter._session = FakeSession(FakeResponse({
            "s": "ok",
            "t": [1704499200, 1704412800, 1704585600],
            "o": [2.0, 1.0, 3.0],
            "h": [2.5, 1.5, 3.5],
            "l": [1.8, 0.8, 2.8],
            "c": [2.2, 1.2, 3.2],
            "v": [200, 100, 300],
        }))
        result = await adapter.get_historical_data(
            HistoricalDataRequest("AAPL", interval="1hour", limit=2), credentials
        )

        assert result.success is True
        assert [p.close for p in result.data] == [2.2, 3.2]
        assert adapter._session.calls[0]["params"]["resolution"] == "60"

    @pytest.mark.asyncio
    async def test_unsupported_interval_makes_no_call(self, adapter, credentials):
        adapter._session = FakeSession(FakeResponse({"s": "ok"}))
        result = await adapter.get_historical_data(HistoricalDataRequest("AAPL", interval="2day"), credentials)

        assert result.success is False
        assert "2day" in result.error
        assert adapter._session.calls == []

    @pytest.mark.asyncio
    async def test_no_data(self, adapter, credentials):
        adapter._session = FakeSession(FakeResponse({"s": "no_data"}))
        with pytest.raises(ApiError) as exc_info:
            await adapter.get_historical_data(HistoricalDataRequest("AAPL"), credentials)
        assert exc_info.value.code == ApiErrorCode.NO_DATA

    @pytest.mark.asyncio
    async def test_default_window_is_thirty_days(self, adapter, credentials):
        adapter._session = FakeSession(FakeResponse({"s": "ok", "t": []}))
        to_date = datetime(2024, 2, 1, tzinfo=timezone.utc)
        await adapter.get_historical_data(HistoricalDataRequest("AAPL", to_date=to_date), credentials)

        params = adapter._session.calls[0]["params"]
        assert int(params["to"]) - int(params["from"]) == 30 * 86400


class TestCompanyProfile:

    @pytest.mark.asyncio
    async def test_profile(self, adapter, credentials):
        adapter._session = FakeSession(FakeResponse({
            "name": "Apple Inc",
            "finnhubIndustry": "Technology",
            "marketCapitalization": 2900000.5,
            "employeeTotal": 161000,
            "weburl": "https://www.apple.com/",
            "country": "US",
            "exchange": "NASDAQ NMS - GLOBAL MARKET",
        }))
        result = await adapter.get_company_profile("aapl", credentials)

        profile = result.data
        assert profile.symbol == "AAPL"
        assert profile.name == "Apple Inc"
        assert profile.sector == profile.industry == "Technology"
        assert profile.market_cap == 2900000.5
        assert profile.employees == 161000
        assert profile.website == "https://www.apple.com/"
        assert profile.country == "US"

        call = adapter._session.calls[0]
        assert call["url"].endswith("/stock/profile2")
        assert call["params"] == {"symbol": "AAPL"}

    @pytest.mark.asyncio
    async def test_empty_profile_is_no_data(self, adapter, credentials):
        adapter._session = FakeSession(FakeResponse({}))
        with pytest.raises(ApiError) as exc_info:
            await adapter.get_company_profile("ZZZZ", credentials)
        assert exc_info.value.code == ApiErrorCode.NO_DATA


class TestNews:

    @pytest.mark.asyncio
    async def test_company_news_for_first_symbol(self, adapter, credentials):
        adapter._session = FakeSession(FakeResponse([
            {"id": 7, "headline": "Earnings beat", "source": "Wire", "datetime": 1704412800, "url": "https://x"},
        ]))
        result = await adapter.get_market_news(NewsRequest(symbols=["aapl", "msft"]), credentials)

        call = adapter._session.calls[0]
        assert call["url"].endswith("/company-news")
        assert call["params"]["symbol"] == "AAPL"
        assert result.data[0].id == "fh-7"
        assert result.data[0].title == "Earnings beat"

    @pytest.mark.asyncio
    async def test_general_news_limited(self, adapter, credentials):
        articles = [{"id": i, "headline": f"h{i}"} for i in range(10)]
        adapter._session = FakeSession(FakeResponse(articles))
        result = await adapter.get_market_news(NewsRequest(limit=3), credentials)

        assert adapter._session.calls[0]["url"].endswith("/news")
        assert adapter._session.calls[0]["params"]["category"] == "general"
        assert len(result.data) == 3


class TestSearchAndSymbols:

    @pytest.mark.asyncio
    async def test_search(self, adapter, credentials):
        adapter._session = FakeSession(FakeResponse({"result": [{"symbol": "AAPL"}, {"description": "x"}]}))
        result = await adapter.search_symbols("apple", credentials)
        assert result.data == ["AAPL"]

    @pytest.mark.asyncio
    async def test_supported_symbols_empty(self, adapter, credentials):
        result = await adapter.get_supported_symbols(credentials)
        assert result.success is True
        assert result.data == []


class TestValidateCredentials:

    @pytest.mark.asyncio
    async def test_valid(self, adapter, credentials):
        adapter._session = FakeSession(FakeResponse(QUOTE_PAYLOAD))
        assert await adapter.validate_credentials(credentials) is True

    @pytest.mark.asyncio
    async def test_rejected_key(self, adapter, credentials):
        adapter._session = FakeSession(FakeResponse(None, status=401))
        assert await adapter.validate_credentials(credentials) is False
