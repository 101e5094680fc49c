"""
Realtime Connection Manager

Owns one websocket per provider id, the symbol subscriptions for that
provider, handler fan-out, and reconnection with exponential backoff.

Subscriptions outlive the transport: they are recorded whether or not a
connection is open and are re-sent every time a connection opens.
"""
import asyncio
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from loguru import logger
from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from marketlink.data_providers.models import UserConfiguration
from marketlink.realtime.protocols import (
    DEFAULT_CHANNEL,
    StreamMessage,
    StreamMessageType,
    SubscriptionAction,
    decode_frame,
    encode_frame,
    get_protocol,
)


NORMAL_CLOSURE = 1000

MessageHandler = Callable[[StreamMessage], Union[None, Awaitable[None]]]
Connector = Callable[..., Awaitable[ClientConnection]]
Sleep = Callable[[float], Awaitable[Any]]


class ConnectionStatus(str, Enum):
    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"


@dataclass
class WebSocketConfig:
    """Per-provider stream endpoint and reconnect policy."""
    url: str
    protocols: list[str] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)
    reconnect_interval: float = 5.0  # seconds
    max_reconnect_attempts: int = 5
    channel: str = DEFAULT_CHANNEL


@dataclass(eq=False)
class ProviderConnection:
    """
    State of one provider's connection.

    A fresh object is created by every explicit ``connect``; background
    tasks hold a reference to the object they were started for and stop
    acting once it is no longer the tracked connection.
    """
    provider_id: str
    config: WebSocketConfig
    user_config: UserConfiguration
    status: ConnectionStatus = ConnectionStatus.CONNECTING
    websocket: Optional[ClientConnection] = None
    listener: Optional[asyncio.Task] = None
    reconnect_task: Optional[asyncio.Task] = None
    attempts: int = 0


class ConnectionManager:
    """
    Manages realtime connections for all providers.

    Usage:
        manager = ConnectionManager()
        manager.add_handler("finnhub", on_message)
        await manager.connect("finnhub", WebSocketConfig(url=...), user_config)
        await manager.subscribe("finnhub", ["AAPL", "MSFT"])
    """

    def __init__(self, connector: Optional[Connector] = None, sleep: Optional[Sleep] = None):
        self._connector = connector or ws_connect
        self._sleep = sleep or asyncio.sleep
        self._connections: dict[str, ProviderConnection] = {}
        self._subscriptions: dict[str, set[str]] = {}
        self._handlers: dict[str, list[MessageHandler]] = {}

    # ==================== Lifecycle ====================

    async def connect(
        self,
        provider_id: str,
        config: WebSocketConfig,
        user_config: UserConfiguration,
    ) -> bool:
        """
        Open a connection, replacing any existing one for the provider.

        Returns:
            True if the transport opened
        """
        if provider_id in self._connections:
            await self.disconnect(provider_id)

        connection = ProviderConnection(provider_id=provider_id, config=config, user_config=user_config)
        self._connections[provider_id] = connection
        return await self._open(connection)

    async def disconnect(self, provider_id: str) -> None:
        """Close with a normal code and cancel any pending reconnect."""
        connection = self._connections.pop(provider_id, None)
        if connection is None:
            return

        connection.status = ConnectionStatus.CLOSED
        connection.attempts = 0

        current = asyncio.current_task()
        pending = [
            task for task in (connection.reconnect_task, connection.listener)
            if task is not None and task is not current and not task.done()
        ]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        websocket, connection.websocket = connection.websocket, None
        if websocket is not None:
            try:
                await websocket.close(code=NORMAL_CLOSURE, reason="Client disconnect")
            except Exception as e:
                logger.warning(f"Error closing {provider_id} websocket: {e}")

        logger.info(f"Disconnected realtime stream for {provider_id}")

    async def cleanup(self) -> None:
        """Disconnect everything and forget all handlers and subscriptions."""
        for provider_id in list(self._connections):
            await self.disconnect(provider_id)
        self._handlers.clear()
        self._subscriptions.clear()

    # ==================== Subscriptions ====================

    async def subscribe(self, provider_id: str, symbols: list[str]) -> None:
        """Record symbols and send a subscribe frame if the connection is open."""
        symbols = [s.strip().upper() for s in symbols if s.strip()]
        self._subscriptions.setdefault(provider_id, set()).update(symbols)
        await self._send_subscription(provider_id, SubscriptionAction.SUBSCRIBE, symbols)

    async def unsubscribe(self, provider_id: str, symbols: list[str]) -> None:
        symbols = [s.strip().upper() for s in symbols if s.strip()]
        existing = self._subscriptions.get(provider_id)
        if existing is None:
            return
        existing.difference_update(symbols)
        await self._send_subscription(provider_id, SubscriptionAction.UNSUBSCRIBE, symbols)

    def get_subscriptions(self, provider_id: str) -> list[str]:
        return sorted(self._subscriptions.get(provider_id, ()))

    # ==================== Handlers ====================

    def add_handler(self, provider_id: str, handler: MessageHandler) -> None:
        handlers = self._handlers.setdefault(provider_id, [])
        if handler not in handlers:
            handlers.append(handler)

    def remove_handler(self, provider_id: str, handler: MessageHandler) -> None:
        handlers = self._handlers.get(provider_id)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def get_connection_status(self, provider_id: str) -> ConnectionStatus:
        connection = self._connections.get(provider_id)
        return connection.status if connection else ConnectionStatus.CLOSED

    # ==================== Internals ====================

    def _is_current(self, connection: ProviderConnection) -> bool:
        return self._connections.get(connection.provider_id) is connection

    async def _open(self, connection: ProviderConnection) -> bool:
        provider_id = connection.provider_id
        config = connection.config
        connection.status = ConnectionStatus.CONNECTING

        try:
            websocket = await self._connector(
                config.url,
                subprotocols=config.protocols or None,
                additional_headers=config.headers or None,
            )
        except Exception as e:
            if not self._is_current(connection):
                return False
            connection.status = ConnectionStatus.CLOSED
            logger.error(f"Failed to connect realtime stream for {provider_id}: {e}")
            await self._emit(provider_id, StreamMessage(
                type=StreamMessageType.ERROR,
                data={"error": "WebSocket connection error", "detail": str(e)},
            ))
            self._attempt_reconnect(connection)
            return False

        if not self._is_current(connection):
            # Superseded by disconnect/connect while the handshake was in flight
            await websocket.close(code=NORMAL_CLOSURE)
            return False

        # Tracked before the first send so a concurrent disconnect closes it
        connection.websocket = websocket
        connection.status = ConnectionStatus.OPEN
        connection.attempts = 0
        logger.info(f"Realtime stream connected: {provider_id}")

        protocol = get_protocol(provider_id)
        frames = [protocol.build_auth_frame(connection.user_config.credentials.api_key)]
        symbols = self.get_subscriptions(provider_id)
        if symbols:
            frames.extend(protocol.build_subscription_frames(
                SubscriptionAction.SUBSCRIBE, symbols, config.channel
            ))
        try:
            for frame in frames:
                if not self._is_current(connection):
                    break
                await websocket.send(encode_frame(frame))
        except Exception as e:
            # The listener sees the closed socket and schedules the reconnect
            logger.warning(f"Failed to initialize {provider_id} stream: {e}")

        if not self._is_current(connection):
            logger.debug(f"Realtime stream for {provider_id} disconnected while opening")
            return False

        connection.listener = asyncio.create_task(self._listen(connection, websocket))
        return True

    async def _listen(self, connection: ProviderConnection, websocket: ClientConnection) -> None:
        provider_id = connection.provider_id
        try:
            async for raw in websocket:
                if not self._is_current(connection):
                    return
                await self._handle_frame(provider_id, raw)
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as e:
            if not self._is_current(connection):
                return
            logger.warning(f"Realtime stream for {provider_id} closed abnormally: {e}")
            await self._emit(provider_id, StreamMessage(
                type=StreamMessageType.ERROR,
                data={"error": "WebSocket connection error", "detail": str(e)},
            ))

        if not self._is_current(connection) or connection.websocket is not websocket:
            return

        connection.websocket = None
        connection.status = ConnectionStatus.CLOSED
        close_code = websocket.close_code
        logger.info(f"Realtime stream closed: {provider_id} (code={close_code})")

        if close_code != NORMAL_CLOSURE:
            self._attempt_reconnect(connection)

    async def _handle_frame(self, provider_id: str, raw: Any) -> None:
        try:
            message = decode_frame(raw, provider_id)
        except Exception as e:
            logger.warning(f"Failed to parse realtime message from {provider_id}: {e}")
            return
        if message is not None:
            await self._emit(provider_id, message)

    async def _emit(self, provider_id: str, message: StreamMessage) -> None:
        for handler in list(self._handlers.get(provider_id, ())):
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in realtime handler for {provider_id}: {e}")

    async def _send_subscription(
        self,
        provider_id: str,
        action: SubscriptionAction,
        symbols: list[str],
    ) -> None:
        connection = self._connections.get(provider_id)
        if not symbols or connection is None or connection.status is not ConnectionStatus.OPEN:
            return

        websocket = connection.websocket
        frames = get_protocol(provider_id).build_subscription_frames(action, symbols, connection.config.channel)
        try:
            for frame in frames:
                await websocket.send(encode_frame(frame))
            logger.debug(f"{provider_id} {action.value}: {symbols}")
        except Exception as e:
            # Intent is recorded; the next open re-sends the full set
            logger.warning(f"{provider_id} {action.value} failed: {e}")

    def _attempt_reconnect(self, connection: ProviderConnection) -> None:
        max_attempts = connection.config.max_reconnect_attempts
        if connection.attempts >= max_attempts:
            logger.error(f"Max reconnection attempts reached for {connection.provider_id}")
            return

        delay = connection.config.reconnect_interval * (2 ** connection.attempts)
        logger.info(
            f"Reconnecting {connection.provider_id} in {delay:.1f}s "
            f"(attempt {connection.attempts + 1}/{max_attempts})"
        )
        connection.reconnect_task = asyncio.create_task(self._reconnect_after(connection, delay))

    async def _reconnect_after(self, connection: ProviderConnection, delay: float) -> None:
        await self._sleep(delay)
        if not self._is_current(connection):
            return
        # reconnect_task still points here while opening, so disconnect cancels it
        connection.attempts += 1
        await self._open(connection)
        if connection.reconnect_task is asyncio.current_task():
            connection.reconnect_task = None
