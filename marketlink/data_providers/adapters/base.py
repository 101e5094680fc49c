"""
Base Provider Adapter Interface

Defines the abstract interface that all data provider adapters must implement.
Provides common functionality for HTTP status mapping, rate-limit surfacing,
request statistics and normalization of historical data.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import wraps
from typing import Any, Optional
import time

import aiohttp
from loguru import logger

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
    RateLimitInfo,
    utc_now,
)
from marketlink.utils.exceptions import (
    ApiError,
    ApiErrorCode,
    AuthenticationError,
    RateLimitError,
)


DEFAULT_RATE_LIMIT_RESET = timedelta(seconds=60)
UNHEALTHY_ERROR_COUNT = 5


@dataclass
class AdapterStats:
    """Request statistics for one adapter instance."""
    provider_id: str
    is_healthy: bool = True
    last_success: Optional[datetime] = None
    last_error: Optional[datetime] = None
    last_error_message: Optional[str] = None
    error_count: int = 0
    success_count: int = 0
    avg_latency_ms: float = 0.0


def join_url(base_url: str, endpoint: str) -> str:
    """Resolve ``endpoint`` against ``base_url`` unless it is already absolute."""
    if endpoint.startswith(("http://", "https://")):
        return endpoint
    return f"{base_url.rstrip('/')}/{endpoint.lstrip('/')}"


def interval_value(interval: Any) -> str:
    return interval.value if isinstance(interval, Enum) else str(interval)


def as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _epoch_header(headers: Any, name: str) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(int(headers.get(name)), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def extract_rate_limit_info(headers: Any) -> Optional[RateLimitInfo]:
    """Read X-RateLimit-Remaining / X-RateLimit-Reset (epoch seconds) if both are present."""
    remaining = headers.get("X-RateLimit-Remaining")
    reset_at = _epoch_header(headers, "X-RateLimit-Reset")
    if not remaining or reset_at is None:
        return None
    try:
        return RateLimitInfo(remaining=int(remaining), reset_at=reset_at)
    except (TypeError, ValueError):
        return None


def rate_limit_error(headers: Any) -> RateLimitError:
    """Build the 429 error; the reset defaults to one minute unless the headers carry one."""
    reset_at = _epoch_header(headers, "X-RateLimit-Reset") or utc_now() + DEFAULT_RATE_LIMIT_RESET
    try:
        remaining = int(headers.get("X-RateLimit-Remaining") or 0)
    except (TypeError, ValueError):
        remaining = 0
    return RateLimitError("Rate limit exceeded", reset_at=reset_at, remaining=remaining)


def finalize_history(
    points: list[HistoricalPoint],
    request: HistoricalDataRequest,
) -> list[HistoricalPoint]:
    """
    Sort bars ascending, then apply the request's from/to window and limit.

    ``limit`` keeps the most recent N bars after filtering.
    """
    points = sorted(points, key=lambda p: p.timestamp)
    if request.from_date:
        start = as_utc(request.from_date)
        points = [p for p in points if p.timestamp >= start]
    if request.to_date:
        end = as_utc(request.to_date)
        points = [p for p in points if p.timestamp <= end]
    if request.limit is not None and request.limit > 0:
        points = points[-request.limit:]
    return points


def operation(failure_message: str):
    """
    Operation boundary for adapter methods.

    Typed ApiErrors propagate so callers can branch on ``code``; any other
    exception becomes a failed ApiResponse.
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except ApiError:
                raise
            except Exception as e:
                logger.warning(f"{self.provider.id}.{func.__name__} failed: {e}")
                return ApiResponse.fail(str(e) or failure_message)
        return wrapper
    return decorator


class BaseAdapter(ABC):
    """
    Abstract base class for all data provider adapters.

    Each provider adapter must implement:
    - get_quote(): Latest quote for a symbol
    - get_historical_data(): OHLCV bars for a symbol and interval
    - get_company_profile(): Company fundamentals
    - get_market_news(): News articles, optionally per symbol
    - search_symbols(): Symbol lookup
    - get_supported_symbols(): Symbol listing (best effort)

    Credentials are passed per call; an adapter instance holds no secrets.
    """

    TEST_SYMBOL = "AAPL"

    # Canonical interval -> remote resolution code
    SUPPORTED_INTERVALS: dict[str, str] = {}

    def __init__(self, provider: Provider, timeout_seconds: float = 30.0):
        self.provider = provider
        self.timeout_seconds = timeout_seconds
        self._stats = AdapterStats(provider_id=provider.id)
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def capabilities(self) -> frozenset[ApiFeature]:
        return self.provider.supported_features

    @property
    def test_symbol(self) -> str:
        return self.TEST_SYMBOL

    @property
    def stats(self) -> AdapterStats:
        """Get current request statistics."""
        return self._stats

    # ==================== Canonical Operations ====================

    @abstractmethod
    async def get_quote(self, request: QuoteRequest, credentials: Credentials) -> ApiResponse[Quote]:
        """
        Get the latest quote for a single symbol.

        Raises:
            ApiError: NO_DATA when the provider has no price for the symbol
        """

    @abstractmethod
    async def get_historical_data(
        self,
        request: HistoricalDataRequest,
        credentials: Credentials,
    ) -> ApiResponse[list[HistoricalPoint]]:
        """Get OHLCV bars sorted by ascending timestamp."""

    @abstractmethod
    async def get_company_profile(self, symbol: str, credentials: Credentials) -> ApiResponse[CompanyProfile]:
        pass

    @abstractmethod
    async def get_market_news(self, request: NewsRequest, credentials: Credentials) -> ApiResponse[list[NewsItem]]:
        pass

    @abstractmethod
    async def search_symbols(self, query: str, credentials: Credentials) -> ApiResponse[list[str]]:
        pass

    @abstractmethod
    async def get_supported_symbols(self, credentials: Credentials) -> ApiResponse[list[str]]:
        pass

    async def validate_credentials(self, credentials: Credentials) -> bool:
        """Try one quote for the test symbol; any failure counts as invalid."""
        try:
            result = await self.get_quote(QuoteRequest(symbol=self.test_symbol), credentials)
            return result.success
        except Exception as e:
            logger.debug(f"{self.provider.id} credential check failed: {e}")
            return False

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    # ==================== Request Helpers ====================

    def _auth_headers(self, credentials: Credentials) -> dict[str, str]:
        return {}

    def _auth_params(self, credentials: Credentials) -> dict[str, str]:
        return {}

    def _base_url(self, credentials: Credentials) -> str:
        return (credentials.base_url or self.provider.base_url).rstrip("/")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def _request_json(
        self,
        endpoint: str,
        credentials: Credentials,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        method: str = "GET",
        not_found_code: Optional[ApiErrorCode] = None,
    ) -> tuple[Any, Optional[RateLimitInfo]]:
        """
        Perform one call and return the decoded JSON body plus rate-limit info.

        Raises:
            RateLimitError: on 429
            AuthenticationError: on 401/403
            ApiError: HTTP_ERROR on any other non-2xx, or ``not_found_code`` on 404
        """
        url = join_url(self._base_url(credentials), endpoint)
        query = {**self._auth_params(credentials), **(params or {})}
        query = {k: str(v) for k, v in query.items() if v is not None}
        request_headers = {
            "Content-Type": "application/json",
            **self._auth_headers(credentials),
            **(headers or {}),
        }

        session = await self._get_session()
        start_time = time.monotonic()
        try:
            async with session.request(method, url, params=query, headers=request_headers) as response:
                latency_ms = (time.monotonic() - start_time) * 1000
                status = response.status

                if status == 429:
                    raise rate_limit_error(response.headers)
                if status in (401, 403):
                    raise AuthenticationError()
                if status == 404 and not_found_code:
                    raise ApiError(f"Not found: {endpoint}", not_found_code, status_code=status)
                if not 200 <= status < 300:
                    raise ApiError(f"HTTP {status}: {response.reason}", ApiErrorCode.HTTP_ERROR, status_code=status)

                data = await response.json(content_type=None)
                rate_limit = extract_rate_limit_info(response.headers)
        except Exception as e:
            self._record_error(e)
            raise

        self._record_success(latency_ms)
        logger.debug(f"{self.provider.id} {method} {endpoint} -> {status} in {latency_ms:.0f}ms")
        return data, rate_limit

    def _resolve_interval(self, interval: Any) -> Optional[str]:
        return self.SUPPORTED_INTERVALS.get(interval_value(interval))

    def _unsupported_interval(self, interval: Any) -> ApiResponse:
        supported = ", ".join(self.SUPPORTED_INTERVALS)
        return ApiResponse.fail(
            f"Unsupported interval '{interval_value(interval)}' for {self.provider.name}. "
            f"Supported: {supported}"
        )

    @staticmethod
    def validate_symbol(symbol: str) -> str:
        return symbol.upper().strip()

    # ==================== Statistics ====================

    def _record_success(self, latency_ms: float) -> None:
        """Record a successful request."""
        self._stats.success_count += 1
        self._stats.last_success = utc_now()

        # Update average latency (exponential moving average)
        alpha = 0.1
        self._stats.avg_latency_ms = (
            alpha * latency_ms + (1 - alpha) * self._stats.avg_latency_ms
        )

        # Reset error count on success
        self._stats.error_count = 0
        self._stats.is_healthy = True

    def _record_error(self, error: Exception) -> None:
        """Record a failed request."""
        self._stats.error_count += 1
        self._stats.last_error = utc_now()
        self._stats.last_error_message = str(error)

        # Mark as unhealthy after too many consecutive errors
        if self._stats.error_count >= UNHEALTHY_ERROR_COUNT:
            self._stats.is_healthy = False
            logger.warning(
                f"Provider {self.provider.id} marked as unhealthy after {self._stats.error_count} errors"
            )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(provider={self.provider.id}, healthy={self._stats.is_healthy})>"
