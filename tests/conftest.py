"""
MarketLink - Test Configuration
Shared fixtures and fakes for the aiohttp and websocket seams.
"""
import asyncio
import os
import sys
from typing import Any, Optional

import pytest
from websockets.exceptions import ConnectionClosedError

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment
os.environ["APP_ENV"] = "testing"

from marketlink.data_providers.models import (  # noqa: E402
    Credentials,
    CustomApiConfiguration,
    CustomApiEndpoint,
    FieldMapping,
    FieldTransform,
    UserConfiguration,
)


# =========================
# HTTP Fakes
# =========================

class FakeResponse:
    """Canned aiohttp response usable as an async context manager."""

    def __init__(
        self,
        payload: Any = None,
        status: int = 200,
        reason: str = "OK",
        headers: Optional[dict] = None,
    ):
        self.payload = payload
        self.status = status
        self.reason = reason
        self.headers = headers or {}

    async def json(self, content_type=None):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class _Failing:
    def __init__(self, error: Exception):
        self.error = error

    async def __aenter__(self):
        raise self.error

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """
    Stand-in for aiohttp.ClientSession.

    Responses are served in order; the last one repeats once the list is
    exhausted. An Exception in the list is raised when the request is
    entered, as aiohttp does for transport errors.
    """

    def __init__(self, *responses):
        self.responses = list(responses) or [FakeResponse({})]
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def _next(self):
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]

    def request(self, method, url, params=None, headers=None):
        self.calls.append({"method": method, "url": url, "params": params or {}, "headers": headers or {}})
        outcome = self._next()
        if isinstance(outcome, Exception):
            return _Failing(outcome)
        return outcome

    def get(self, url, params=None, headers=None):
        return self.request("GET", url, params=params, headers=headers)

    async def close(self):
        self.closed = True


# =========================
# Websocket Fakes
# =========================

_CLOSED = object()


class FakeConnection:
    """Scripted websocket connection; frames are fed from the test."""

    def __init__(self):
        self.sent: list[str] = []
        self.close_code: Optional[int] = None
        self.closed = False
        self.fail_send = False
        # When set, send blocks until the test sets the event
        self.send_gate: Optional[asyncio.Event] = None
        self._queue: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.fail_send:
            raise ConnectionClosedError(None, None)
        self.sent.append(data)

    def feed(self, raw) -> None:
        self._queue.put_nowait(raw)

    def drop(self, code: int = 1006) -> None:
        """Simulate an abnormal close from the network."""
        self.close_code = code
        self._queue.put_nowait(ConnectionClosedError(None, None))

    def server_close(self, code: int = 1000) -> None:
        self.close_code = code
        self._queue.put_nowait(_CLOSED)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True
        self.close_code = code
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item


class FakeConnector:
    """Injected connect callable; returns (or raises) scripted outcomes in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeSleep:
    """Records backoff delays and blocks until the test releases them."""

    def __init__(self):
        self.delays: list[float] = []
        self._waiters: list[asyncio.Future] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        await waiter

    @property
    def pending(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    def release(self) -> None:
        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_result(None)
                return


async def settle(rounds: int = 10) -> None:
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# =========================
# Model Fixtures
# =========================

@pytest.fixture
def credentials() -> Credentials:
    return Credentials(api_key="test-key")


@pytest.fixture
def user_config(credentials) -> UserConfiguration:
    return UserConfiguration(id="cfg-1", provider_id="finnhub", name="My Finnhub", credentials=credentials)


@pytest.fixture
def custom_config() -> CustomApiConfiguration:
    """Custom API with quote, historical and news endpoints."""
    return CustomApiConfiguration(
        id="acme",
        name="Acme Data",
        base_url="https://api.acme.test/v2",
        auth_type="bearer_token",
        endpoints={
            "quote": CustomApiEndpoint(url="/quote/{symbol}", name="Quote"),
            "historical": CustomApiEndpoint(
                url="/bars/{symbol}?interval={interval}", name="Bars", items_path="data.bars"
            ),
            "news": CustomApiEndpoint(url="/news", name="News"),
        },
        field_mappings={
            "quote": [
                FieldMapping("ticker", "symbol", transform=FieldTransform.UPPERCASE, required=True),
                FieldMapping("last", "price", transform=FieldTransform.PARSE_FLOAT, required=True),
                FieldMapping("pct", "change_percent", transform=FieldTransform.MULTIPLY_100),
                FieldMapping("ts", "timestamp", transform=FieldTransform.PARSE_DATE),
                FieldMapping("ccy", "currency", default_value="EUR"),
            ],
            "historical": [
                FieldMapping("t", "timestamp", transform=FieldTransform.PARSE_DATE, required=True),
                FieldMapping("o", "open", required=True),
                FieldMapping("h", "high", required=True),
                FieldMapping("l", "low", required=True),
                FieldMapping("c", "close", required=True),
                FieldMapping("v", "volume"),
            ],
            "news": [
                FieldMapping("headline", "title", required=True),
                FieldMapping("published", "published_at", transform=FieldTransform.PARSE_DATE),
                FieldMapping("site", "source"),
            ],
        },
        test_symbol="ACME",
        supported_symbols=["ACME", "WIDG"],
    )
