"""
Realtime Wire Protocols

Per-provider JSON text-frame encoding and decoding. Each provider gets a
StreamProtocol of pure functions: auth frame, subscribe/unsubscribe
frames and inbound message parsing. Unknown providers use the generic
protocol.
"""
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from marketlink.data_providers.field_mapper import parse_date
from marketlink.data_providers.models import utc_now


class StreamMessageType(str, Enum):
    QUOTE = "quote"
    TRADE = "trade"
    NEWS = "news"
    ERROR = "error"


class SubscriptionAction(str, Enum):
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"


@dataclass
class StreamMessage:
    """Canonical realtime message delivered to handlers."""
    type: StreamMessageType
    data: Any
    symbol: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)


Frame = dict[str, Any]


@dataclass(frozen=True)
class StreamProtocol:
    build_auth_frame: Callable[[str], Frame]
    build_subscription_frames: Callable[[SubscriptionAction, list[str], str], list[Frame]]
    # Returns None for frames that carry nothing for handlers (pings, acks)
    parse_message: Callable[[Any], Optional[StreamMessage]]


DEFAULT_CHANNEL = "quotes"


# ==================== Finnhub ====================

def finnhub_auth(api_key: str) -> Frame:
    return {"type": "auth", "token": api_key}


def finnhub_subscription(action: SubscriptionAction, symbols: list[str], channel: str) -> list[Frame]:
    # One frame per symbol
    return [{"type": SubscriptionAction(action).value, "symbol": symbol} for symbol in symbols]


def parse_finnhub(message: Any) -> Optional[StreamMessage]:
    if not isinstance(message, dict):
        return StreamMessage(type=StreamMessageType.ERROR, data=message)

    if message.get("type") == "ping":
        return None

    if message.get("type") == "trade":
        trades = message.get("data")
        trade = trades[0] if isinstance(trades, list) and trades and isinstance(trades[0], dict) else {}
        symbol = trade.get("s")
        return StreamMessage(
            type=StreamMessageType.QUOTE,
            symbol=symbol,
            data={
                "symbol": symbol,
                "price": trade.get("p"),
                "timestamp": trade.get("t"),
                "volume": trade.get("v"),
            },
        )

    return StreamMessage(type=StreamMessageType.ERROR, data=message)


# ==================== Alpha Vantage ====================

def alpha_vantage_auth(api_key: str) -> Frame:
    return {"type": "authenticate", "apikey": api_key}


def alpha_vantage_subscription(action: SubscriptionAction, symbols: list[str], channel: str) -> list[Frame]:
    function = "SUBSCRIBE" if SubscriptionAction(action) is SubscriptionAction.SUBSCRIBE else "UNSUBSCRIBE"
    return [{"function": function, "symbols": ",".join(symbols)}]


def parse_alpha_vantage(message: Any) -> Optional[StreamMessage]:
    if not isinstance(message, dict):
        return StreamMessage(type=StreamMessageType.ERROR, data=message)
    symbol = message.get("symbol")
    return StreamMessage(
        type=StreamMessageType.QUOTE,
        symbol=symbol,
        data={
            "symbol": symbol,
            "price": message.get("price"),
            "change": message.get("change"),
            "change_percent": message.get("changePercent"),
            "timestamp": parse_date(message.get("timestamp")),
        },
    )


# ==================== Generic ====================

def generic_auth(api_key: str) -> Frame:
    return {"type": "auth", "apiKey": api_key}


def generic_subscription(action: SubscriptionAction, symbols: list[str], channel: str) -> list[Frame]:
    return [{
        "action": SubscriptionAction(action).value,
        "symbols": list(symbols),
        "channel": channel or DEFAULT_CHANNEL,
    }]


def parse_generic(message: Any) -> Optional[StreamMessage]:
    if not isinstance(message, dict):
        return StreamMessage(type=StreamMessageType.QUOTE, data=message)
    try:
        message_type = StreamMessageType(message.get("type") or StreamMessageType.QUOTE.value)
    except ValueError:
        # Heartbeats, acks and other control frames
        return None
    return StreamMessage(
        type=message_type,
        symbol=message.get("symbol"),
        data=message.get("data") or message,
    )


GENERIC_PROTOCOL = StreamProtocol(
    build_auth_frame=generic_auth,
    build_subscription_frames=generic_subscription,
    parse_message=parse_generic,
)

PROTOCOLS: dict[str, StreamProtocol] = {
    "finnhub": StreamProtocol(
        build_auth_frame=finnhub_auth,
        build_subscription_frames=finnhub_subscription,
        parse_message=parse_finnhub,
    ),
    "alpha-vantage": StreamProtocol(
        build_auth_frame=alpha_vantage_auth,
        build_subscription_frames=alpha_vantage_subscription,
        parse_message=parse_alpha_vantage,
    ),
}


def get_protocol(provider_id: str) -> StreamProtocol:
    return PROTOCOLS.get(provider_id, GENERIC_PROTOCOL)


def encode_frame(frame: Frame) -> str:
    return json.dumps(frame)


def decode_frame(raw: str | bytes, provider_id: str) -> Optional[StreamMessage]:
    """
    Decode one inbound text frame for ``provider_id``.

    Raises:
        ValueError: If the frame is not valid JSON
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return get_protocol(provider_id).parse_message(json.loads(raw))
