"""
Unit Tests - Realtime Wire Protocols
Each provider's framing functions are pure and tested in isolation.
"""
import json

import pytest

from marketlink.realtime.protocols import (
    GENERIC_PROTOCOL,
    StreamMessageType,
    SubscriptionAction,
    decode_frame,
    encode_frame,
    get_protocol,
)


class TestProtocolTable:

    def test_known_providers(self):
        assert get_protocol("finnhub") is not GENERIC_PROTOCOL
        assert get_protocol("alpha-vantage") is not GENERIC_PROTOCOL

    def test_unknown_provider_is_generic(self):
        assert get_protocol("custom-acme") is GENERIC_PROTOCOL


class TestFinnhub:
    """Finnhub uses one frame per symbol and wraps trades in a list."""

    protocol = get_protocol("finnhub")

    def test_auth_frame(self):
        assert self.protocol.build_auth_frame("k") == {"type": "auth", "token": "k"}

    def test_subscribe_frames(self):
        frames = self.protocol.build_subscription_frames(SubscriptionAction.SUBSCRIBE, ["AAPL", "MSFT"], "quotes")
        assert frames == [{"type": "subscribe", "symbol": "AAPL"}, {"type": "subscribe", "symbol": "MSFT"}]

    def test_unsubscribe_frames(self):
        frames = self.protocol.build_subscription_frames(SubscriptionAction.UNSUBSCRIBE, ["AAPL"], "quotes")
        assert frames == [{"type": "unsubscribe", "symbol": "AAPL"}]

    def test_trade_becomes_quote(self):
        message = self.protocol.parse_message({
            "type": "trade",
            "data": [{"s": "AAPL", "p": 187.3, "t": 1704412800000, "v": 100}],
        })
        assert message.type == StreamMessageType.QUOTE
        assert message.symbol == "AAPL"
        assert message.data == {"symbol": "AAPL", "price": 187.3, "timestamp": 1704412800000, "volume": 100}

    def test_empty_trade_list(self):
        message = self.protocol.parse_message({"type": "trade", "data": []})
        assert message.type == StreamMessageType.QUOTE
        assert message.symbol is None

    def test_ping_ignored(self):
        assert self.protocol.parse_message({"type": "ping"}) is None

    def test_other_frames_are_errors(self):
        message = self.protocol.parse_message({"type": "error", "msg": "Invalid symbol"})
        assert message.type == StreamMessageType.ERROR
        assert message.data["msg"] == "Invalid symbol"


class TestAlphaVantage:

    protocol = get_protocol("alpha-vantage")

    def test_auth_frame(self):
        assert self.protocol.build_auth_frame("k") == {"type": "authenticate", "apikey": "k"}

    def test_subscribe_frame_joins_symbols(self):
        frames = self.protocol.build_subscription_frames(SubscriptionAction.SUBSCRIBE, ["IBM", "MSFT"], "quotes")
        assert frames == [{"function": "SUBSCRIBE", "symbols": "IBM,MSFT"}]

    def test_quote(self):
        message = self.protocol.parse_message({
            "symbol": "IBM", "price": 161.2, "changePercent": 0.4, "timestamp": "2024-01-05T15:00:00Z",
        })
        assert message.type == StreamMessageType.QUOTE
        assert message.data["change_percent"] == 0.4
        assert message.data["timestamp"].hour == 15


class TestGeneric:

    protocol = GENERIC_PROTOCOL

    def test_frames(self):
        assert self.protocol.build_auth_frame("k") == {"type": "auth", "apiKey": "k"}
        assert self.protocol.build_subscription_frames(SubscriptionAction.SUBSCRIBE, ["A"], "trades") == [
            {"action": "subscribe", "symbols": ["A"], "channel": "trades"},
        ]

    def test_typed_message(self):
        message = self.protocol.parse_message({"type": "news", "symbol": "A", "data": {"title": "x"}})
        assert message.type == StreamMessageType.NEWS
        assert message.data == {"title": "x"}

    def test_untyped_message_defaults_to_quote(self):
        message = self.protocol.parse_message({"symbol": "A", "price": 1})
        assert message.type == StreamMessageType.QUOTE
        assert message.data == {"symbol": "A", "price": 1}

    def test_control_frames_dropped(self):
        assert self.protocol.parse_message({"type": "heartbeat"}) is None


class TestCodec:

    def test_encode(self):
        assert json.loads(encode_frame({"type": "auth", "token": "k"})) == {"type": "auth", "token": "k"}

    def test_decode_bytes(self):
        message = decode_frame(b'{"type":"trade","data":[{"s":"AAPL","p":1}]}', "finnhub")
        assert message.symbol == "AAPL"

    def test_decode_invalid_json(self):
        with pytest.raises(ValueError):
            decode_frame("not json", "finnhub")
