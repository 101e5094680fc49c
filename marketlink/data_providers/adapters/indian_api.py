"""
Indian API Adapter

NSE/BSE equity data from indianapi.in. Authenticates with a bearer
token; most endpoints wrap their payload as ``{"success": ..., "data": ...}``.

API Documentation: https://indianapi.in/documentation/indian-stock-market
"""
from typing import Optional

from loguru import logger

from marketlink.data_providers.adapters.base import (
    BaseAdapter,
    finalize_history,
    operation,
)
from marketlink.data_providers.field_mapper import parse_date, parse_float
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


INDIAN_API_BASE_URL = "https://indianapi.in"

DEFAULT_NEWS_LIMIT = 20
SEARCH_LIMIT = 50


def create_indian_api_provider(base_url: Optional[str] = None) -> Provider:
    """Create the provider descriptor for Indian API."""
    return Provider(
        id="indian-api",
        name="Indian API",
        description="Indian stock market data including NSE and BSE stocks",
        base_url=base_url or INDIAN_API_BASE_URL,
        requires_api_key=True,
        rate_limit_per_minute=100,
        supported_features=frozenset({
            ApiFeature.REAL_TIME_QUOTES,
            ApiFeature.HISTORICAL_DATA,
            ApiFeature.COMPANY_PROFILE,
            ApiFeature.INDIAN_STOCKS,
        }),
        documentation_url="https://indianapi.in/documentation/indian-stock-market",
    )


def _symbols(items) -> list[str]:
    if not isinstance(items, list):
        return []
    symbols = []
    for item in items:
        if isinstance(item, dict) and (item.get("symbol") or item.get("code")):
            symbols.append(item.get("symbol") or item.get("code"))
    return symbols


class IndianApiAdapter(BaseAdapter):
    """Indian API data provider adapter (prices in INR)."""

    TEST_SYMBOL = "RELIANCE"

    SUPPORTED_INTERVALS = {
        "1min": "1m",
        "5min": "5m",
        "15min": "15m",
        "30min": "30m",
        "1hour": "1h",
        "1day": "1d",
        "1week": "1w",
        "1month": "1M",
    }

    def __init__(self, provider: Optional[Provider] = None, timeout_seconds: float = 30.0):
        super().__init__(provider or create_indian_api_provider(), timeout_seconds)

    def _auth_headers(self, credentials: Credentials) -> dict[str, str]:
        return {"Authorization": f"Bearer {credentials.api_key}"}

    async def validate_credentials(self, credentials: Credentials) -> bool:
        try:
            data, _ = await self._request_json("/stock", credentials, params={"name": self.test_symbol})
            return isinstance(data, dict) and data.get("tickerId") is not None
        except Exception:
            return False

    # ==================== REST API Methods ====================

    @operation("Failed to fetch quote")
    async def get_quote(self, request: QuoteRequest, credentials: Credentials) -> ApiResponse[Quote]:
        """Get the latest NSE price, falling back to BSE."""
        symbol = self.validate_symbol(request.symbol)
        data, rate_limit = await self._request_json(
            "/stock", credentials, params={"name": symbol}, not_found_code=ApiErrorCode.INVALID_SYMBOL
        )

        if not data.get("tickerId"):
            raise ApiError("No data available for symbol", ApiErrorCode.NO_DATA)

        prices = data.get("currentPrice") or {}
        nse_price = parse_float(prices.get("NSE"))
        price = nse_price or parse_float(prices.get("BSE"))
        if not price:
            raise ApiError("No price data available", ApiErrorCode.NO_DATA)

        percent_change = parse_float(data.get("percentChange")) or 0.0
        quote = Quote(
            symbol=data.get("tickerId") or symbol,
            price=price,
            change=price * percent_change / 100,
            change_percent=percent_change,
            previous_close=price * (1 - percent_change / 100),
            timestamp=utc_now(),
            currency="INR",
            exchange="NSE" if nse_price else "BSE",
        )
        return ApiResponse.ok(quote, rate_limit)

    @operation("Failed to fetch historical data")
    async def get_historical_data(
        self,
        request: HistoricalDataRequest,
        credentials: Credentials,
    ) -> ApiResponse[list[HistoricalPoint]]:
        interval = self._resolve_interval(request.interval)
        if interval is None:
            return self._unsupported_interval(request.interval)

        params = {
            "symbol": self.validate_symbol(request.symbol),
            "interval": interval,
            "from": request.from_date.strftime("%Y-%m-%d") if request.from_date else None,
            "to": request.to_date.strftime("%Y-%m-%d") if request.to_date else None,
            "limit": request.limit,
        }
        data, rate_limit = await self._request_json("/historical", credentials, params=params)

        if not data.get("success"):
            raise ApiError(data.get("message") or "No historical data available", ApiErrorCode.NO_DATA)

        points = []
        for item in data.get("data") or []:
            timestamp = parse_date(item.get("date") or item.get("timestamp"))
            if timestamp is None:
                continue
            points.append(HistoricalPoint(
                timestamp=timestamp,
                open=parse_float(item.get("open")) or 0.0,
                high=parse_float(item.get("high")) or 0.0,
                low=parse_float(item.get("low")) or 0.0,
                close=parse_float(item.get("close")) or 0.0,
                volume=int(parse_float(item.get("volume")) or 0),
            ))
        return ApiResponse.ok(finalize_history(points, request), rate_limit)

    @operation("Failed to fetch company profile")
    async def get_company_profile(self, symbol: str, credentials: Credentials) -> ApiResponse[CompanyProfile]:
        symbol = self.validate_symbol(symbol)
        data, rate_limit = await self._request_json("/company", credentials, params={"symbol": symbol})

        company = data.get("data") if data.get("success") else None
        if not company:
            raise ApiError("No company data available", ApiErrorCode.NO_DATA)

        employees = parse_float(company.get("employees"))
        profile = CompanyProfile(
            symbol=symbol,
            name=company.get("companyName") or company.get("name") or "",
            description=company.get("description") or company.get("businessDescription") or "",
            sector=company.get("sector") or "",
            industry=company.get("industry") or "",
            market_cap=parse_float(company.get("marketCap")),
            employees=int(employees) if employees is not None else None,
            website=company.get("website"),
            country="India",
            exchange=company.get("exchange") or "NSE",
        )
        return ApiResponse.ok(profile, rate_limit)

    @operation("Failed to fetch news")
    async def get_market_news(self, request: NewsRequest, credentials: Credentials) -> ApiResponse[list[NewsItem]]:
        data, rate_limit = await self._request_json(
            "/news", credentials, params={"category": "market", "limit": request.limit or DEFAULT_NEWS_LIMIT}
        )
        if not data.get("success"):
            raise ApiError("Failed to fetch news", ApiErrorCode.API_ERROR)

        fetched_at = int(utc_now().timestamp())
        news = [
            NewsItem(
                id=f"ia-{index}-{fetched_at}",
                title=article.get("title") or article.get("headline") or "",
                summary=article.get("summary") or article.get("description") or "",
                url=article.get("url") or article.get("link") or "",
                source=article.get("source") or "Indian Market",
                published_at=parse_date(article.get("publishedAt") or article.get("date")) or utc_now(),
                symbols=list(article.get("symbols") or []),
                sentiment="neutral",
            )
            for index, article in enumerate(data.get("data") or [])
        ]
        return ApiResponse.ok(news, rate_limit)

    @operation("Failed to search symbols")
    async def search_symbols(self, query: str, credentials: Credentials) -> ApiResponse[list[str]]:
        data, rate_limit = await self._request_json("/search", credentials, params={"q": query, "limit": SEARCH_LIMIT})
        if not data.get("success"):
            raise ApiError("Search failed", ApiErrorCode.API_ERROR)
        return ApiResponse.ok(_symbols(data.get("data")), rate_limit)

    async def get_supported_symbols(self, credentials: Credentials) -> ApiResponse[list[str]]:
        """List symbols from ``/symbols``; any failure yields an empty list."""
        try:
            data, rate_limit = await self._request_json("/symbols", credentials)
            items = data.get("data") if isinstance(data, dict) else None
            return ApiResponse.ok(_symbols(items), rate_limit)
        except Exception as e:
            logger.debug(f"Indian API symbol listing unavailable: {e}")
            return ApiResponse.ok([])


__all__ = ["IndianApiAdapter", "create_indian_api_provider", "INDIAN_API_BASE_URL"]
