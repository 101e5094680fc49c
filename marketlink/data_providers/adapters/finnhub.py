"""
Finnhub Adapter

Provides access to the Finnhub market data REST API for global stocks.

API Documentation: https://finnhub.io/docs/api
Free tier: 60 API calls/minute, real-time US stock quotes
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from marketlink.data_providers.adapters.base import (
    BaseAdapter,
    as_utc,
    finalize_history,
    operation,
)
from marketlink.data_providers.models import (
    ApiFeature,
    ApiResponse,
    CompanyProfile,
    Credentials,
    HistoricalDataRequest,
    HistoricalPoint,
    NewsItem,
    NewsRequest,
    Provider,
    Quote,
    QuoteRequest,
    utc_now,
)
from marketlink.utils.exceptions import ApiError, ApiErrorCode


FINNHUB_BASE_URL = "https://finnhub.io/api/v1"

DEFAULT_HISTORY_WINDOW = timedelta(days=30)
DEFAULT_NEWS_WINDOW = timedelta(days=7)
DEFAULT_NEWS_LIMIT = 50


def create_finnhub_provider(base_url: Optional[str] = None) -> Provider:
    """Create the provider descriptor for Finnhub."""
    return Provider(
        id="finnhub",
        name="Finnhub",
        description="Real-time stock prices, company fundamentals, and market news",
        base_url=base_url or FINNHUB_BASE_URL,
        requires_api_key=True,
        rate_limit_per_minute=60,  # Free tier limit
        supported_features=frozenset({
            ApiFeature.REAL_TIME_QUOTES,
            ApiFeature.HISTORICAL_DATA,
            ApiFeature.COMPANY_PROFILE,
            ApiFeature.MARKET_NEWS,
            ApiFeature.CRYPTO_DATA,
            ApiFeature.FOREX_DATA,
            ApiFeature.US_STOCKS,
            ApiFeature.GLOBAL_STOCKS,
        }),
        documentation_url="https://finnhub.io/docs/api/",
    )


def _from_epoch(seconds) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _sentiment(score: Optional[float]) -> str:
    if not score:
        return "neutral"
    return "positive" if score > 0 else "negative"


class FinnhubAdapter(BaseAdapter):
    """
    Finnhub data provider adapter.

    Features:
    - Real-time quotes
    - Historical candle data
    - Company profile and news

    Usage:
        adapter = FinnhubAdapter()
        quote = await adapter.get_quote(QuoteRequest("AAPL"), Credentials(api_key="..."))
    """

    SUPPORTED_INTERVALS = {
        "1min": "1",
        "5min": "5",
        "15min": "15",
        "30min": "30",
        "1hour": "60",
        "1day": "D",
        "1week": "W",
        "1month": "M",
    }

    def __init__(self, provider: Optional[Provider] = None, timeout_seconds: float = 30.0):
        super().__init__(provider or create_finnhub_provider(), timeout_seconds)

    def _auth_headers(self, credentials: Credentials) -> dict[str, str]:
        return {"X-Finnhub-Token": credentials.api_key}

    async def validate_credentials(self, credentials: Credentials) -> bool:
        """Check the key with one quote call; 401/403 or a body without ``c`` is invalid."""
        try:
            data, _ = await self._request_json("/quote", credentials, params={"symbol": self.test_symbol})
            return isinstance(data, dict) and data.get("c") is not None
        except Exception:
            return False

    # ==================== REST API Methods ====================

    @operation("Failed to fetch quote")
    async def get_quote(self, request: QuoteRequest, credentials: Credentials) -> ApiResponse[Quote]:
        """Get latest quote for a symbol."""
        symbol = self.validate_symbol(request.symbol)
        data, rate_limit = await self._request_json("/quote", credentials, params={"symbol": symbol})

        if data.get("error"):
            raise ApiError(data["error"], ApiErrorCode.API_ERROR)

        # All-zero day range means Finnhub has nothing for this symbol
        if data.get("c") == 0 and data.get("h") == 0 and data.get("l") == 0:
            raise ApiError("No data available for symbol", ApiErrorCode.NO_DATA)
        if data.get("c") is None:
            raise ApiError("No data available for symbol", ApiErrorCode.NO_DATA)

        quote = Quote(
            symbol=symbol,
            price=float(data["c"]),
            change=float(data.get("d") or 0),
            change_percent=float(data.get("dp") or 0),
            high=data.get("h"),
            low=data.get("l"),
            open=data.get("o"),
            previous_close=data.get("pc"),
            timestamp=_from_epoch(data["t"]) if data.get("t") else utc_now(),
            currency="USD",
        )
        return ApiResponse.ok(quote, rate_limit)

    @operation("Failed to fetch historical data")
    async def get_historical_data(
        self,
        request: HistoricalDataRequest,
        credentials: Credentials,
    ) -> ApiResponse[list[HistoricalPoint]]:
        """Get historical candle data."""
        resolution = self._resolve_interval(request.interval)
        if resolution is None:
            return self._unsupported_interval(request.interval)

        to_date = as_utc(request.to_date) if request.to_date else utc_now()
        from_date = as_utc(request.from_date) if request.from_date else to_date - DEFAULT_HISTORY_WINDOW

        params = {
            "symbol": self.validate_symbol(request.symbol),
            "resolution": resolution,
            "from": int(from_date.timestamp()),
            "to": int(to_date.timestamp()),
        }
        data, rate_limit = await self._request_json("/stock/candle", credentials, params=params)

        status = data.get("s")
        if status == "no_data":
            raise ApiError("No historical data available", ApiErrorCode.NO_DATA)
        if status != "ok":
            raise ApiError("Failed to fetch data", ApiErrorCode.API_ERROR)

        points = [
            HistoricalPoint(
                timestamp=_from_epoch(ts),
                open=float(data["o"][i]),
                high=float(data["h"][i]),
                low=float(data["l"][i]),
                close=float(data["c"][i]),
                volume=int(data["v"][i]),
            )
            for i, ts in enumerate(data.get("t") or [])
        ]
        return ApiResponse.ok(finalize_history(points, request), rate_limit)

    @operation("Failed to fetch company profile")
    async def get_company_profile(self, symbol: str, credentials: Credentials) -> ApiResponse[CompanyProfile]:
        symbol = self.validate_symbol(symbol)
        data, rate_limit = await self._request_json("/stock/profile2", credentials, params={"symbol": symbol})

        if not data.get("name"):
            raise ApiError("No company data available", ApiErrorCode.NO_DATA)

        profile = CompanyProfile(
            symbol=symbol,
            name=data["name"],
            description=data.get("description") or "",
            # Finnhub exposes a single industry classification
            sector=data.get("finnhubIndustry") or "",
            industry=data.get("finnhubIndustry") or "",
            market_cap=data.get("marketCapitalization"),
            employees=data.get("employeeTotal"),
            website=data.get("weburl"),
            country=data.get("country"),
            exchange=data.get("exchange"),
        )
        return ApiResponse.ok(profile, rate_limit)

    @operation("Failed to fetch news")
    async def get_market_news(self, request: NewsRequest, credentials: Credentials) -> ApiResponse[list[NewsItem]]:
        """Company news for the first requested symbol, else general market news."""
        if request.symbols:
            to_date = as_utc(request.to_date) if request.to_date else utc_now()
            from_date = as_utc(request.from_date) if request.from_date else to_date - DEFAULT_NEWS_WINDOW
            endpoint = "/company-news"
            # Finnhub only supports one symbol per call
            params = {
                "symbol": self.validate_symbol(request.symbols[0]),
                "from": from_date.strftime("%Y-%m-%d"),
                "to": to_date.strftime("%Y-%m-%d"),
            }
        else:
            endpoint = "/news"
            params = {"category": "general", "minId": 0}

        articles, rate_limit = await self._request_json(endpoint, credentials, params=params)

        symbols = [self.validate_symbol(s) for s in request.symbols]
        news = [
            NewsItem(
                id=f"fh-{article.get('id')}",
                title=article.get("headline") or "",
                summary=article.get("summary") or "",
                url=article.get("url") or "",
                source=article.get("source") or "",
                published_at=_from_epoch(article["datetime"]) if article.get("datetime") else utc_now(),
                symbols=symbols,
                sentiment=_sentiment(article.get("sentiment")),
            )
            for article in (articles or [])[: request.limit or DEFAULT_NEWS_LIMIT]
        ]
        return ApiResponse.ok(news, rate_limit)

    @operation("Failed to search symbols")
    async def search_symbols(self, query: str, credentials: Credentials) -> ApiResponse[list[str]]:
        data, rate_limit = await self._request_json("/search", credentials, params={"q": query})
        symbols = [item["symbol"] for item in data.get("result") or [] if item.get("symbol")]
        return ApiResponse.ok(symbols, rate_limit)

    async def get_supported_symbols(self, credentials: Credentials) -> ApiResponse[list[str]]:
        # No listing endpoint; callers search for specific symbols instead
        return ApiResponse.ok([])


__all__ = ["FinnhubAdapter", "create_finnhub_provider", "FINNHUB_BASE_URL"]
