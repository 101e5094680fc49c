"""
Custom API Adapter

An adapter driven entirely by a CustomApiConfiguration: auth scheme,
endpoint templates and per-operation field mappings. Responses are run
through the field mapper to produce canonical entities.
"""
import base64
from typing import Any, Optional
from urllib.parse import quote as url_quote

from marketlink.data_providers import field_mapper
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
    AuthType,
    CompanyProfile,
    Credentials,
    CustomApiConfiguration,
    CustomApiEndpoint,
    HistoricalDataRequest,
    HistoricalPoint,
    NewsItem,
    NewsRequest,
    OperationKind,
    Provider,
    Quote,
    QuoteRequest,
    RateLimitInfo,
    utc_now,
)
from marketlink.utils.exceptions import ApiError, ApiErrorCode


ENDPOINT_FEATURES = {
    OperationKind.QUOTE: ApiFeature.REAL_TIME_QUOTES,
    OperationKind.HISTORICAL: ApiFeature.HISTORICAL_DATA,
    OperationKind.PROFILE: ApiFeature.COMPANY_PROFILE,
    OperationKind.NEWS: ApiFeature.MARKET_NEWS,
}

NOT_CONFIGURED = {
    OperationKind.QUOTE: "Quote endpoint not configured for this custom API",
    OperationKind.HISTORICAL: "Historical data endpoint not configured for this custom API",
    OperationKind.PROFILE: "Company profile endpoint not configured for this custom API",
    OperationKind.NEWS: "Market news endpoint not configured for this custom API",
    OperationKind.SEARCH: "Symbol search endpoint not configured for this custom API",
}


def create_custom_provider(config: CustomApiConfiguration) -> Provider:
    """Derive a provider descriptor from the configured endpoints."""
    return Provider(
        id=config.provider_id,
        name=config.name,
        description=config.description,
        base_url=config.base_url,
        requires_api_key=config.auth_type is not AuthType.NONE,
        rate_limit_per_minute=config.rate_limit_per_minute,
        supported_features=frozenset(
            feature for kind, feature in ENDPOINT_FEATURES.items() if kind in config.endpoints
        ),
        # No separate docs for user APIs
        documentation_url=config.base_url,
    )


def render_template(template: str, params: dict[str, Any]) -> str:
    """Substitute ``{name}`` placeholders with URL-encoded values; None values are skipped."""
    url = template
    for key, value in params.items():
        if value is not None:
            url = url.replace(f"{{{key}}}", url_quote(str(value), safe=""))
    return url


def _date_param(value) -> Optional[str]:
    return value.strftime("%Y-%m-%d") if value else None


def _int(value: Any) -> int:
    parsed = parse_float(value)
    return int(parsed) if parsed is not None else 0


class CustomApiAdapter(BaseAdapter):
    """
    Adapter for a user-described REST API.

    Operations without a configured endpoint fail immediately without a
    network call. Required mappings are checked before extraction, and a
    missing field raises an INVALID_RESPONSE ApiError naming it.
    """

    def __init__(
        self,
        config: CustomApiConfiguration,
        timeout_seconds: float = 30.0,
        default_currency: str = "USD",
    ):
        self.config = config
        self.default_currency = default_currency
        super().__init__(create_custom_provider(config), timeout_seconds)

    @property
    def test_symbol(self) -> str:
        return self.config.test_symbol

    # ==================== Auth ====================

    def _auth_headers(self, credentials: Credentials) -> dict[str, str]:
        auth = self.config.auth_config
        auth_type = self.config.auth_type

        if auth_type is AuthType.BEARER_TOKEN:
            return {"Authorization": f"{auth.get('header_prefix') or 'Bearer '}{credentials.api_key}"}
        if auth_type is AuthType.CUSTOM_HEADER and auth.get("header_name"):
            return {auth["header_name"]: f"{auth.get('header_prefix', '')}{credentials.api_key}"}
        if auth_type is AuthType.BASIC_AUTH:
            token = base64.b64encode(f"{auth.get('username', '')}:{credentials.api_key}".encode()).decode()
            return {"Authorization": f"Basic {token}"}
        return {}

    def _auth_params(self, credentials: Credentials) -> dict[str, str]:
        param = self.config.auth_config.get("api_key_param")
        if self.config.auth_type is AuthType.API_KEY and param:
            return {param: credentials.api_key}
        return {}

    # ==================== Request Pipeline ====================

    async def _call(
        self,
        endpoint: CustomApiEndpoint,
        credentials: Credentials,
        params: dict[str, Any],
    ) -> tuple[Any, Optional[RateLimitInfo]]:
        url = render_template(endpoint.url, params)
        return await self._request_json(
            url,
            credentials,
            params=dict(endpoint.query_params),
            headers=dict(endpoint.headers),
            method=endpoint.method.upper(),
        )

    def _mappings(self, kind: OperationKind):
        return self.config.field_mappings.get(kind, [])

    def _check_required(self, payload: Any, kind: OperationKind) -> None:
        errors = field_mapper.validate_response(payload, self._mappings(kind))
        if errors:
            raise ApiError(
                f"Invalid response structure: {errors[0].message}",
                ApiErrorCode.INVALID_RESPONSE,
                details={"field": errors[0].field},
            )

    def _items(self, raw: Any, endpoint: CustomApiEndpoint) -> list[Any]:
        """Locate the list of records: ``items_path``, a root array, or the root object."""
        items = raw
        if endpoint.items_path:
            items = field_mapper.extract_value(raw, endpoint.items_path)
            if items is None:
                raise ApiError(
                    f"Invalid response structure: items path '{endpoint.items_path}' not found",
                    ApiErrorCode.INVALID_RESPONSE,
                )
        if isinstance(items, list):
            return items
        return [items]

    def _map_items(self, raw: Any, endpoint: CustomApiEndpoint, kind: OperationKind) -> list[dict[str, Any]]:
        mapped = []
        for item in self._items(raw, endpoint):
            self._check_required(item, kind)
            mapped.append(field_mapper.transform(item, self._mappings(kind)))
        return mapped

    # ==================== Canonical Operations ====================

    @operation("Failed to fetch quote")
    async def get_quote(self, request: QuoteRequest, credentials: Credentials) -> ApiResponse[Quote]:
        endpoint = self.config.endpoints.get(OperationKind.QUOTE)
        if endpoint is None:
            return ApiResponse.fail(NOT_CONFIGURED[OperationKind.QUOTE])

        symbol = self.validate_symbol(request.symbol)
        raw, rate_limit = await self._call(endpoint, credentials, {"symbol": symbol})
        self._check_required(raw, OperationKind.QUOTE)
        mapped = field_mapper.transform(raw, self._mappings(OperationKind.QUOTE))

        price = parse_float(mapped.get("price"))
        if price is None:
            raise ApiError("No price data available", ApiErrorCode.NO_DATA)

        quote = Quote(
            symbol=str(mapped.get("symbol") or symbol),
            price=price,
            change=parse_float(mapped.get("change")) or 0.0,
            change_percent=parse_float(mapped.get("change_percent")) or 0.0,
            volume=_int(mapped.get("volume")),
            high=parse_float(mapped.get("high")),
            low=parse_float(mapped.get("low")),
            open=parse_float(mapped.get("open")),
            previous_close=parse_float(mapped.get("previous_close")),
            timestamp=parse_date(mapped.get("timestamp")) or utc_now(),
            currency=str(mapped.get("currency") or self.default_currency),
            exchange=mapped.get("exchange"),
        )
        return ApiResponse.ok(quote, rate_limit)

    @operation("Failed to fetch historical data")
    async def get_historical_data(
        self,
        request: HistoricalDataRequest,
        credentials: Credentials,
    ) -> ApiResponse[list[HistoricalPoint]]:
        endpoint = self.config.endpoints.get(OperationKind.HISTORICAL)
        if endpoint is None:
            return ApiResponse.fail(NOT_CONFIGURED[OperationKind.HISTORICAL])

        params = {
            "symbol": self.validate_symbol(request.symbol),
            "interval": interval_value(request.interval),
            "from": _date_param(request.from_date),
            "to": _date_param(request.to_date),
            "limit": request.limit,
        }
        raw, rate_limit = await self._call(endpoint, credentials, params)

        points = []
        for row in self._map_items(raw, endpoint, OperationKind.HISTORICAL):
            timestamp = parse_date(row.get("timestamp"))
            if timestamp is None:
                continue
            points.append(HistoricalPoint(
                timestamp=timestamp,
                open=parse_float(row.get("open")) or 0.0,
                high=parse_float(row.get("high")) or 0.0,
                low=parse_float(row.get("low")) or 0.0,
                close=parse_float(row.get("close")) or 0.0,
                volume=_int(row.get("volume")),
            ))
        return ApiResponse.ok(finalize_history(points, request), rate_limit)

    @operation("Failed to fetch company profile")
    async def get_company_profile(self, symbol: str, credentials: Credentials) -> ApiResponse[CompanyProfile]:
        endpoint = self.config.endpoints.get(OperationKind.PROFILE)
        if endpoint is None:
            return ApiResponse.fail(NOT_CONFIGURED[OperationKind.PROFILE])

        symbol = self.validate_symbol(symbol)
        raw, rate_limit = await self._call(endpoint, credentials, {"symbol": symbol})
        self._check_required(raw, OperationKind.PROFILE)
        mapped = field_mapper.transform(raw, self._mappings(OperationKind.PROFILE))

        employees = parse_float(mapped.get("employees"))
        profile = CompanyProfile(
            symbol=str(mapped.get("symbol") or symbol),
            name=str(mapped.get("name") or ""),
            description=str(mapped.get("description") or ""),
            sector=str(mapped.get("sector") or ""),
            industry=str(mapped.get("industry") or ""),
            market_cap=parse_float(mapped.get("market_cap")),
            employees=int(employees) if employees is not None else None,
            website=mapped.get("website"),
            country=mapped.get("country"),
            exchange=mapped.get("exchange"),
        )
        return ApiResponse.ok(profile, rate_limit)

    @operation("Failed to fetch news")
    async def get_market_news(self, request: NewsRequest, credentials: Credentials) -> ApiResponse[list[NewsItem]]:
        endpoint = self.config.endpoints.get(OperationKind.NEWS)
        if endpoint is None:
            return ApiResponse.fail(NOT_CONFIGURED[OperationKind.NEWS])

        params = {
            "symbols": ",".join(self.validate_symbol(s) for s in request.symbols) or None,
            "limit": request.limit,
            "from": _date_param(request.from_date),
            "to": _date_param(request.to_date),
        }
        raw, rate_limit = await self._call(endpoint, credentials, params)

        fetched_at = int(utc_now().timestamp())
        news = []
        for index, row in enumerate(self._map_items(raw, endpoint, OperationKind.NEWS)):
            symbols = row.get("symbols") or []
            news.append(NewsItem(
                id=str(row.get("id") or f"{self.provider.id}-{index}-{fetched_at}"),
                title=str(row.get("title") or ""),
                summary=str(row.get("summary") or ""),
                url=str(row.get("url") or ""),
                source=str(row.get("source") or self.config.name),
                published_at=parse_date(row.get("published_at")) or utc_now(),
                symbols=[symbols] if isinstance(symbols, str) else list(symbols),
                sentiment=row.get("sentiment"),
            ))
        if request.limit:
            news = news[: request.limit]
        return ApiResponse.ok(news, rate_limit)

    @operation("Failed to search symbols")
    async def search_symbols(self, query: str, credentials: Credentials) -> ApiResponse[list[str]]:
        endpoint = self.config.endpoints.get(OperationKind.SEARCH)
        if endpoint is None:
            return ApiResponse.fail(NOT_CONFIGURED[OperationKind.SEARCH])

        raw, rate_limit = await self._call(endpoint, credentials, {"query": query, "symbol": query})
        mappings = self._mappings(OperationKind.SEARCH)
        symbols = []
        for item in self._items(raw, endpoint):
            value = field_mapper.transform(item, mappings).get("symbol")
            if value:
                symbols.append(str(value))
        return ApiResponse.ok(symbols, rate_limit)

    async def get_supported_symbols(self, credentials: Credentials) -> ApiResponse[list[str]]:
        return ApiResponse.ok(list(self.config.supported_symbols))

    async def validate_credentials(self, credentials: Credentials) -> bool:
        """Quote the test symbol if possible, else call the first endpoint and expect a 2xx."""
        try:
            if OperationKind.QUOTE in self.config.endpoints:
                result = await self.get_quote(QuoteRequest(symbol=self.test_symbol), credentials)
                return result.success

            endpoint = next(iter(self.config.endpoints.values()), None)
            if endpoint is None:
                return False
            await self._call(endpoint, credentials, {"symbol": self.test_symbol, "query": self.test_symbol})
            return True
        except Exception:
            return False


__all__ = ["CustomApiAdapter", "create_custom_provider", "render_template"]
