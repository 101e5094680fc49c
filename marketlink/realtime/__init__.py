"""
Realtime Package

Per-provider websocket connections, subscriptions and wire protocols.
"""
from marketlink.realtime.connection_manager import (
    ConnectionManager,
    ConnectionStatus,
    WebSocketConfig,
)
from marketlink.realtime.protocols import (
    StreamMessage,
    StreamMessageType,
    get_protocol,
)

__all__ = [
    "ConnectionManager",
    "ConnectionStatus",
    "WebSocketConfig",
    "StreamMessage",
    "StreamMessageType",
    "get_protocol",
]
