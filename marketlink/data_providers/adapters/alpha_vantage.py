"""
Alpha Vantage Adapter

Provides access to Alpha Vantage API for stock data, fundamentals and
news sentiment. Every call goes to ``/query`` with a ``function`` param.

API Documentation: https://www.alphavantage.co/documentation/
Free tier: 5 API calls/minute, 500 calls/day
"""
from datetime import datetime, timezone
from typing import Any, Optional

from marketlink.data_providers.adapters.base import (
    BaseAdapter,
    finalize_history,
    interval_value,
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


ALPHA_VANTAGE_BASE_URL = "https://www.alphavantage.co"
QUERY_PATH = "/query"

INTRADAY = "TIME_SERIES_INTRADAY"
DEFAULT_NEWS_LIMIT = 50
NEWS_TIME_FORMAT = "%Y%m%dT%H%M%S"
SENTIMENT_THRESHOLD = 0.1


def create_alpha_vantage_provider(base_url: Optional[str] = None) -> Provider:
    """Create the provider descriptor for Alpha Vantage."""
    return Provider(
        id="alpha-vantage",
        name="Alpha Vantage",
        description="Real-time and historical stock data, fundamentals, and news sentiment",
        base_url=base_url or ALPHA_VANTAGE_BASE_URL,
        requires_api_key=True,
        rate_limit_per_minute=5,  # Free tier limit
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
        documentation_url="https://www.alphavantage.co/documentation/",
    )


def _sentiment(score: Any) -> str:
    value = parse_float(score)
    if value is None:
        return "neutral"
    if value > SENTIMENT_THRESHOLD:
        return "positive"
    if value < -SENTIMENT_THRESHOLD:
        return "negative"
    return "neutral"


def _int(value: Any) -> int:
    parsed = parse_float(value)
    return int(parsed) if parsed is not None else 0


class AlphaVantageAdapter(BaseAdapter):
    """
    Alpha Vantage data provider adapter.

    Rate limiting and bad symbols are reported in the body of a 200
    response ("Note"/"Information" and "Error Message"), so each
    operation checks the payload before parsing it.
    """

    # Canonical interval -> (function, intraday interval)
    SERIES = {
        "1min": (INTRADAY, "1min"),
        "5min": (INTRADAY, "5min"),
        "15min": (INTRADAY, "15min"),
        "30min": (INTRADAY, "30min"),
        "1hour": (INTRADAY, "60min"),
        "1day": ("TIME_SERIES_DAILY", None),
        "1week": ("TIME_SERIES_WEEKLY", None),
        "1month": ("TIME_SERIES_MONTHLY", None),
    }
    SUPPORTED_INTERVALS = {key: function for key, (function, _) in SERIES.items()}

    def __init__(self, provider: Optional[Provider] = None, timeout_seconds: float = 30.0):
        super().__init__(provider or create_alpha_vantage_provider(), timeout_seconds)

    def _auth_params(self, credentials: Credentials) -> dict[str, str]:
        return {"apikey": credentials.api_key}

    async def _query(self, credentials: Credentials, error_code: ApiErrorCode, **params):
        data, rate_limit = await self._request_json(QUERY_PATH, credentials, params=params)
        if not isinstance(data, dict):
            raise ApiError("Unexpected response format", ApiErrorCode.INVALID_RESPONSE)
        if data.get("Error Message"):
            raise ApiError(data["Error Message"], error_code)
        if data.get("Note") or data.get("Information"):
            raise ApiError("API call frequency limit reached", ApiErrorCode.RATE_LIMIT_EXCEEDED)
        return data, rate_limit

    async def validate_credentials(self, credentials: Credentials) -> bool:
        try:
            data, _ = await self._query(
                credentials, ApiErrorCode.INVALID_SYMBOL, function="GLOBAL_QUOTE", symbol=self.test_symbol
            )
            return bool(data.get("Global Quote"))
        except Exception:
            return False

    # ==================== REST API Methods ====================

    @operation("Failed to fetch quote")
    async def get_quote(self, request: QuoteRequest, credentials: Credentials) -> ApiResponse[Quote]:
        """Get real-time quote for a symbol."""
        symbol = self.validate_symbol(request.symbol)
        data, rate_limit = await self._query(
            credentials, ApiErrorCode.INVALID_SYMBOL, function="GLOBAL_QUOTE", symbol=symbol
        )

        quote_data = data.get("Global Quote")
        if not quote_data or parse_float(quote_data.get("05. price")) is None:
            raise ApiError("No data available for symbol", ApiErrorCode.NO_DATA)

        quote = Quote(
            symbol=quote_data.get("01. symbol") or symbol,
            price=parse_float(quote_data["05. price"]),
            change=parse_float(quote_data.get("09. change")) or 0.0,
            change_percent=parse_float(str(quote_data.get("10. change percent", "0")).replace("%", "")) or 0.0,
            volume=_int(quote_data.get("06. volume")),
            high=parse_float(quote_data.get("03. high")),
            low=parse_float(quote_data.get("04. low")),
            open=parse_float(quote_data.get("02. open")),
            previous_close=parse_float(quote_data.get("08. previous close")),
            timestamp=parse_date(quote_data.get("07. latest trading day")) or utc_now(),
            currency="USD",
        )
        return ApiResponse.ok(quote, rate_limit)

    @operation("Failed to fetch historical data")
    async def get_historical_data(
        self,
        request: HistoricalDataRequest,
        credentials: Credentials,
    ) -> ApiResponse[list[HistoricalPoint]]:
        """Get historical OHLCV data."""
        function = self._resolve_interval(request.interval)
        if function is None:
            return self._unsupported_interval(request.interval)

        params = {"function": function, "symbol": self.validate_symbol(request.symbol)}
        if function == INTRADAY:
            params["interval"] = self.SERIES[interval_value(request.interval)][1]

        data, rate_limit = await self._query(credentials, ApiErrorCode.INVALID_SYMBOL, **params)

        # Key depends on the function, e.g. "Time Series (Daily)" or "Weekly Time Series"
        series_key = next((key for key in data if "Time Series" in key), None)
        if not series_key or not data.get(series_key):
            raise ApiError("No historical data available", ApiErrorCode.NO_DATA)

        points = []
        for timestamp, values in data[series_key].items():
            parsed = parse_date(timestamp)
            if parsed is None:
                continue
            points.append(HistoricalPoint(
                timestamp=parsed,
                open=parse_float(values.get("1. open")) or 0.0,
                high=parse_float(values.get("2. high")) or 0.0,
                low=parse_float(values.get("3. low")) or 0.0,
                close=parse_float(values.get("4. close")) or 0.0,
                volume=_int(values.get("5. volume")),
            ))
        return ApiResponse.ok(finalize_history(points, request), rate_limit)

    @operation("Failed to fetch company profile")
    async def get_company_profile(self, symbol: str, credentials: Credentials) -> ApiResponse[CompanyProfile]:
        data, rate_limit = await self._query(
            credentials, ApiErrorCode.INVALID_SYMBOL, function="OVERVIEW", symbol=self.validate_symbol(symbol)
        )

        if not data.get("Symbol"):
            raise ApiError("No company data available", ApiErrorCode.NO_DATA)

        market_cap = parse_float(data.get("MarketCapitalization"))
        employees = parse_float(data.get("FullTimeEmployees"))
        profile = CompanyProfile(
            symbol=data["Symbol"],
            name=data.get("Name") or "",
            description=data.get("Description") or "",
            sector=data.get("Sector") or "",
            industry=data.get("Industry") or "",
            market_cap=market_cap,
            employees=int(employees) if employees is not None else None,
            website=data.get("OfficialSite"),
            country=data.get("Country"),
            exchange=data.get("Exchange"),
        )
        return ApiResponse.ok(profile, rate_limit)

    @operation("Failed to fetch news")
    async def get_market_news(self, request: NewsRequest, credentials: Credentials) -> ApiResponse[list[NewsItem]]:
        """News with sentiment via NEWS_SENTIMENT."""
        tickers = ",".join(self.validate_symbol(s) for s in request.symbols) or None
        data, rate_limit = await self._query(
            credentials,
            ApiErrorCode.API_ERROR,
            function="NEWS_SENTIMENT",
            tickers=tickers,
            limit=request.limit or DEFAULT_NEWS_LIMIT,
        )

        fetched_at = int(utc_now().timestamp())
        news = []
        for index, article in enumerate(data.get("feed") or []):
            try:
                published = datetime.strptime(article.get("time_published", ""), NEWS_TIME_FORMAT)
                published = published.replace(tzinfo=timezone.utc)
            except ValueError:
                published = utc_now()
            news.append(NewsItem(
                id=f"av-{index}-{fetched_at}",
                title=article.get("title") or "",
                summary=article.get("summary") or "",
                url=article.get("url") or "",
                source=article.get("source") or "",
                published_at=published,
                symbols=[t["ticker"] for t in article.get("ticker_sentiment") or [] if t.get("ticker")],
                sentiment=_sentiment(article.get("overall_sentiment_score")),
            ))
        return ApiResponse.ok(news, rate_limit)

    @operation("Failed to search symbols")
    async def search_symbols(self, query: str, credentials: Credentials) -> ApiResponse[list[str]]:
        data, rate_limit = await self._query(
            credentials, ApiErrorCode.API_ERROR, function="SYMBOL_SEARCH", keywords=query
        )
        symbols = [m["1. symbol"] for m in data.get("bestMatches") or [] if m.get("1. symbol")]
        return ApiResponse.ok(symbols, rate_limit)

    async def get_supported_symbols(self, credentials: Credentials) -> ApiResponse[list[str]]:
        # No listing endpoint; callers search for specific symbols instead
        return ApiResponse.ok([])


__all__ = ["AlphaVantageAdapter", "create_alpha_vantage_provider", "ALPHA_VANTAGE_BASE_URL"]
