"""
Realtime Session
================

WebSocket session with the media server's realtime endpoint.

This module provides the SocketSession class which:
    - Connects to the server's /socket.io/ endpoint
    - Sends the namespace connect after a short grace delay
    - Answers keepalive pings immediately
    - Authenticates with the API token once the namespace is acknowledged
    - Forwards decoded events to a callback
    - Reconnects after a fixed backoff on any close or error

Design Rules:
    - At most one pending reconnect timer
    - Undecodable frames are logged and dropped
    - Outbound sends on a dead connection are logged, not raised
    - close() stops reconnecting and ends in DISCONNECTED
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedOK,
    WebSocketException,
)

from abs_companion.models.state import SessionState
from abs_companion.protocol.frames import (
    EngineKind,
    ProtocolDecodeError,
    SocketKind,
    decode_frame,
    decode_packet,
    encode_event,
    encode_namespace_connect,
    encode_namespace_disconnect,
    encode_pong,
)


logger = logging.getLogger(__name__)


EventCallback = Callable[[str, Any], None]
Connector = Callable[..., Awaitable[Any]]


class SessionMetrics:
    """Metrics for SocketSession observability."""

    __slots__ = (
        "frames_received",
        "events_received",
        "decode_errors",
        "reconnect_count",
    )

    def __init__(self) -> None:
        self.frames_received: int = 0
        self.events_received: int = 0
        self.decode_errors: int = 0
        self.reconnect_count: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "frames_received": self.frames_received,
            "events_received": self.events_received,
            "decode_errors": self.decode_errors,
            "reconnect_count": self.reconnect_count,
        }


class SocketSession:
    """
    Realtime session state machine.

    Attributes:
        url: WebSocket URL to connect to
        state: Current SessionState
        metrics: Operational metrics

    Example:
        session = SocketSession(
            url="ws://localhost:13378/socket.io/?EIO=4&transport=websocket",
            token="...",
            on_event=dispatcher.dispatch,
        )
        session.start()

        # Later
        await session.close()
    """

    def __init__(
        self,
        url: str,
        token: str,
        on_event: EventCallback,
        on_namespace_connected: Optional[Callable[[], None]] = None,
        handshake_delay: float = 1.0,
        reconnect_delay: float = 5.0,
        connector: Optional[Connector] = None,
    ) -> None:
        """
        Initialize the session.

        Args:
            url: Realtime endpoint URL
            token: API token sent in the auth event
            on_event: Called with (name, payload) for every decoded event
            on_namespace_connected: Called after each namespace connect ack
            handshake_delay: Seconds between socket open and namespace connect
            reconnect_delay: Backoff before reconnecting
            connector: WebSocket connect coroutine (defaults to websockets.connect)
        """
        self.url = url
        self.token = token
        self.handshake_delay = handshake_delay
        self.reconnect_delay = reconnect_delay

        self._on_event = on_event
        self._on_namespace_connected = on_namespace_connected
        self._connector = connector or websockets.connect

        # State
        self._state = SessionState.DISCONNECTED
        self._websocket: Optional[Any] = None
        self._closing: bool = False
        self._connection_task: Optional[asyncio.Task] = None
        self._handshake_task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None

        # Metrics
        self.metrics = SessionMetrics()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def connected(self) -> bool:
        """Whether a websocket is currently open."""
        return self._websocket is not None

    @property
    def authenticated(self) -> bool:
        return self._state is SessionState.AUTHENTICATED

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Open the connection in a background task."""
        self._closing = False
        self._open()

    async def close(self) -> None:
        """
        Stop the session.

        Cancels any pending reconnect, sends a namespace disconnect and closes
        the socket if it is open, otherwise aborts the connection attempt.
        """
        logger.info("Shutting down realtime session...")
        self._closing = True
        self._cancel_reconnect()

        websocket = self._websocket
        if websocket is not None:
            await self.send_raw(encode_namespace_disconnect())
            try:
                await websocket.close()
            except WebSocketException as e:
                logger.debug(f"Error closing websocket: {e}")

        task = self._connection_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._cancel_handshake()
        self._websocket = None
        self._state = SessionState.DISCONNECTED
        logger.info("Realtime session shut down")

    def _open(self) -> None:
        self._reconnect_handle = None
        if self._closing:
            return
        self._connection_task = asyncio.create_task(
            self._connect_and_consume(), name="socket_session"
        )

    def _schedule_reconnect(self) -> None:
        """Schedule one reconnect; no-op if one is already pending."""
        if self._closing or self._reconnect_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.reconnect_delay, self._open)
        logger.info(f"Reconnecting in {self.reconnect_delay:.1f}s")

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _cancel_handshake(self) -> None:
        if self._handshake_task is not None and not self._handshake_task.done():
            self._handshake_task.cancel()
        self._handshake_task = None

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    async def _connect_and_consume(self) -> None:
        """Connect and process frames until the connection ends."""
        self._state = SessionState.CONNECTING
        logger.info(f"Connecting to realtime endpoint: {self.url}")

        try:
            # Keepalive is handled at the engine frame level
            websocket = await self._connector(self.url, ping_interval=None, close_timeout=5)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.error(f"Connection error: {e}")
            self._handle_disconnect()
            return

        self._websocket = websocket
        self._state = SessionState.AWAITING_HANDSHAKE
        logger.info("WebSocket connection established, waiting for handshake")
        self._handshake_task = asyncio.create_task(
            self._send_namespace_connect(), name="socket_handshake"
        )

        try:
            async for message in websocket:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                await self._handle_message(message)
        except ConnectionClosedOK:
            logger.info("Connection closed normally")
        except ConnectionClosed as e:
            logger.warning(f"Connection closed with error: {e}")
        except (OSError, WebSocketException) as e:
            logger.error(f"Connection error: {e}")
        finally:
            self._handle_disconnect()

    def _handle_disconnect(self) -> None:
        self._cancel_handshake()
        self._websocket = None

        if self._closing:
            self._state = SessionState.DISCONNECTED
            return

        self._state = SessionState.DISCONNECTED_RETRYING
        self.metrics.reconnect_count += 1
        self._schedule_reconnect()

    async def _send_namespace_connect(self) -> None:
        await asyncio.sleep(self.handshake_delay)
        await self.send_raw(encode_namespace_connect())

    # -------------------------------------------------------------------------
    # Frames
    # -------------------------------------------------------------------------

    async def _handle_message(self, message: str) -> None:
        self.metrics.frames_received += 1

        try:
            frame = decode_frame(message)
        except ProtocolDecodeError as e:
            self.metrics.decode_errors += 1
            logger.warning(f"Dropping undecodable frame: {e}")
            return

        if frame.kind is EngineKind.PING:
            await self.send_raw(encode_pong())
            return

        if frame.kind is EngineKind.OPEN:
            logger.info(f"Engine handshake received: {frame.data}")
            return

        if frame.kind is EngineKind.PONG:
            return

        try:
            packet = decode_packet(frame.data)
        except ProtocolDecodeError as e:
            self.metrics.decode_errors += 1
            logger.error(f"Dropping undecodable message frame: {e} ({message[:80]})")
            return

        if packet.kind is SocketKind.CONNECT:
            await self._handle_namespace_connect()
        elif packet.kind is SocketKind.DISCONNECT:
            logger.warning("Server disconnected the namespace")
        else:
            self._handle_event(packet.event_name, packet.payload)

    async def _handle_namespace_connect(self) -> None:
        self._state = SessionState.NAMESPACE_CONNECTED
        logger.info("Namespace connected, authenticating")
        await self.send_event("auth", self.token)

        if self._on_namespace_connected is not None:
            self._on_namespace_connected()

    def _handle_event(self, event_name: str, payload: Any) -> None:
        self.metrics.events_received += 1

        if event_name == "auth_success":
            self._state = SessionState.AUTHENTICATED
        elif event_name == "auth_error" and self._state is SessionState.AUTHENTICATED:
            self._state = SessionState.NAMESPACE_CONNECTED

        self._on_event(event_name, payload)

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    async def send_raw(self, text: str) -> bool:
        """
        Send one frame.

        Returns:
            True if the frame was handed to the socket
        """
        websocket = self._websocket
        if websocket is None:
            logger.error("WebSocket is not open, cannot send frame")
            return False

        try:
            await websocket.send(text)
        except ConnectionClosed as e:
            logger.error(f"Send failed, connection closed: {e}")
            return False

        if text != encode_pong():
            logger.debug(f"Sent frame: {text[:40]}")
        return True

    async def send_event(self, event_name: str, payload: Any) -> bool:
        logger.info(f"Sending event: {event_name}")
        return await self.send_raw(encode_event(event_name, payload))
