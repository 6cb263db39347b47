"""
WebSocket streaming client for arm commands.

Handles:
- One persistent WebSocket connection to the board or relay gateway
- Periodic command pushes at the configured update frequency
- Fixed-delay reconnection after unexpected close or failed attempts
- Config replacement forcing a disconnect/reconnect cycle
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from .message import OUTPUT_FORMATS, encode_payload, heartbeat_message, parse_server_message
from .scheduling import ScheduledTask, call_every, call_later

logger = logging.getLogger(__name__)

MIN_UPDATE_HZ = 1
MAX_UPDATE_HZ = 30
DEFAULT_RECONNECT_DELAY = 3.0


class ConfigurationError(ValueError):
    """Raised synchronously for an unusable connection configuration."""


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECT_PENDING = "reconnect_pending"


@dataclass(frozen=True)
class ConnectionConfig:
    """
    Target and cadence of the command stream.

    Attributes:
        host: Board or relay host name / IP address
        port: WebSocket port
        update_frequency_hz: Command pushes per second (1-30)
        compression_enabled: Negotiate permessage-deflate
        path: Request path ("" for the board, "/ws" for the relay gateway)
        output_format: "json" or "csv" encoding of commands
    """
    host: str
    port: int = 8080
    update_frequency_hz: float = 10
    compression_enabled: bool = False
    path: str = ""
    output_format: str = "json"

    def __post_init__(self):
        if not self.host or not str(self.host).strip():
            raise ConfigurationError("target host is required")
        if not isinstance(self.port, int) or not 1 <= self.port <= 65535:
            raise ConfigurationError(f"port must be 1-65535, got {self.port!r}")
        if not MIN_UPDATE_HZ <= self.update_frequency_hz <= MAX_UPDATE_HZ:
            raise ConfigurationError(
                f"update frequency must be {MIN_UPDATE_HZ}-{MAX_UPDATE_HZ} Hz, "
                f"got {self.update_frequency_hz!r}"
            )
        if self.output_format not in OUTPUT_FORMATS:
            raise ConfigurationError(f"unknown output format {self.output_format!r}")
        if self.path and not self.path.startswith("/"):
            raise ConfigurationError(f"path must start with '/', got {self.path!r}")

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}{self.path}"

    @property
    def interval(self) -> float:
        """Seconds between pushes."""
        return 1.0 / self.update_frequency_hz


@dataclass
class ConnectionStats:
    """Statistics about the WebSocket connection."""
    connect_time: Optional[float] = None
    disconnect_time: Optional[float] = None
    reconnect_attempts: int = 0
    messages_sent: int = 0
    messages_failed: int = 0
    messages_skipped: int = 0
    replies_received: int = 0
    last_send_time: Optional[float] = None


class StreamingTransportClient:
    """
    Async WebSocket client streaming arm commands.

    State machine:
        DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED
        -> RECONNECT_PENDING -> CONNECTING -> ...

    Reconnection is indefinite with a fixed delay; the board either comes
    back quickly or not at all, so there is no backoff. Failures reach the
    caller through the on_connected / on_disconnected / on_error callbacks
    (plain or async callables) and never escape the streaming loop.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        heartbeat_interval: Optional[float] = None,
        open_timeout: float = 10.0,
        on_connected: Optional[Callable[[], Any]] = None,
        on_disconnected: Optional[Callable[[], Any]] = None,
        on_error: Optional[Callable[[Exception], Any]] = None,
    ):
        """
        Initialize the client. Nothing connects until connect() is awaited.

        Args:
            config: Target and cadence
            reconnect_delay: Seconds between reconnect attempts
            heartbeat_interval: Seconds between relay heartbeats (None = off)
            open_timeout: Seconds allowed for the opening handshake
            on_connected: Callback when a connection opens
            on_disconnected: Callback when an open connection is lost or closed
            on_error: Callback with the exception of a failed attempt
        """
        if not isinstance(config, ConnectionConfig):
            raise ConfigurationError("config must be a ConnectionConfig")
        self._config = config
        self.reconnect_delay = reconnect_delay
        self.heartbeat_interval = heartbeat_interval
        self.open_timeout = open_timeout
        self.on_connected = on_connected
        self.on_disconnected = on_disconnected
        self.on_error = on_error

        # Connection state
        self._ws: Optional[ClientConnection] = None
        self._state = ConnectionState.DISCONNECTED
        self._stopped = False
        self._session_id: Optional[str] = None
        # Bumped by every connect() and disconnect(); an attempt whose
        # generation is no longer current must not install its socket
        self._generation = 0

        # Tasks
        self._receive_task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[ScheduledTask] = None
        self._stream_handle: Optional[ScheduledTask] = None
        self._heartbeat_handle: Optional[ScheduledTask] = None

        # Statistics
        self.stats = ConnectionStats()

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        """Check if currently connected."""
        return self._state is ConnectionState.CONNECTED and self._ws is not None

    @property
    def streaming(self) -> bool:
        return self._stream_handle is not None and self._stream_handle.active

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None and self._reconnect_handle.active

    @property
    def session_id(self) -> Optional[str]:
        """Session id assigned by the relay gateway, if any."""
        return self._session_id

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Make one connection attempt to the current target.

        An already open socket is closed first and reported through
        on_disconnected. On failure the error is reported to on_error, a
        single reconnect is scheduled and the exception is re-raised.
        """
        self._stopped = False
        self._cancel_reconnect()
        self._generation += 1
        generation = self._generation
        if self._ws is not None:
            await self._close_socket()
            self.stats.disconnect_time = time.time()
            await self._notify(self.on_disconnected)

        config = self._config
        self._set_state(ConnectionState.CONNECTING)
        logger.info(f"Connecting to {config.url}...")

        try:
            ws = await ws_connect(
                config.url,
                compression="deflate" if config.compression_enabled else None,
                open_timeout=self.open_timeout,
                ping_interval=20,
                ping_timeout=10,
                close_timeout=5,
            )
        except asyncio.CancelledError:
            if generation == self._generation:
                self._set_state(ConnectionState.DISCONNECTED)
            raise
        except Exception as e:
            if generation != self._generation:
                # Superseded by disconnect() or a newer connect()
                raise
            logger.error(f"Connection to {config.url} failed: {e}")
            self._set_state(ConnectionState.DISCONNECTED)
            await self._notify(self.on_error, e)
            self._schedule_reconnect()
            raise

        if generation != self._generation:
            # disconnect() or another connect() ran while the handshake was in flight
            logger.debug(f"Discarding superseded connection to {config.url}")
            await ws.close()
            return

        self._ws = ws
        self._session_id = None
        self._set_state(ConnectionState.CONNECTED)
        self.stats.connect_time = time.time()
        logger.info(f"WebSocket connected to {config.url}")

        self._receive_task = asyncio.create_task(self._receive_loop(ws))
        if self.heartbeat_interval:
            self._heartbeat_handle = call_every(
                self.heartbeat_interval, self._send_heartbeat, name="heartbeat"
            )

        await self._notify(self.on_connected)

    async def disconnect(self) -> None:
        """Cancel any pending reconnect, stop streaming and close the socket."""
        self._stopped = True
        self._generation += 1
        self._cancel_reconnect()
        self.stop_streaming()

        was_connected = self._ws is not None
        await self._close_socket()
        self._set_state(ConnectionState.DISCONNECTED)

        if was_connected:
            self.stats.disconnect_time = time.time()
            logger.info("WebSocket client disconnected")
            await self._notify(self.on_disconnected)

    def set_config(self, config: ConnectionConfig) -> None:
        """
        Replace target and cadence.

        An active stream picks up the new cadence from its next tick. An open
        socket is not retargeted in place: it is closed and a reconnect to
        the new target is scheduled immediately.
        """
        if not isinstance(config, ConnectionConfig):
            raise ConfigurationError("config must be a ConnectionConfig")

        old, self._config = self._config, config
        logger.info(f"Config updated: {old.url} @ {old.update_frequency_hz} Hz -> "
                    f"{config.url} @ {config.update_frequency_hz} Hz")

        if self._ws is not None and not self._stopped:
            self._cancel_reconnect()
            self._schedule_reconnect(delay=0.0)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def start_streaming(self, source: Callable[[], Any]) -> None:
        """
        Push ``source()`` every 1/update_frequency_hz seconds.

        ``source`` takes no arguments and returns an ActuatorCommand, the
        NO_HAND sentinel, HandData, a dict or a pre-encoded string (or an
        awaitable of one). None results are not sent. Calling this while
        already streaming replaces the previous source.
        """
        self.stop_streaming()

        handle = call_every(
            lambda: self._config.interval,
            lambda: self._stream_tick(source, handle),
            name="stream",
        )
        self._stream_handle = handle
        logger.info(f"Streaming started at {self._config.update_frequency_hz} Hz")

    def stop_streaming(self) -> None:
        """Stop periodic pushes. No-op when not streaming."""
        if self._stream_handle is None:
            return
        self._stream_handle.cancel()
        self._stream_handle = None
        logger.info("Streaming stopped")

    async def send(self, payload: Any) -> bool:
        """
        Send one payload now.

        Returns:
            True if it was written to an open connection
        """
        return await self._push(payload)

    async def _stream_tick(self, source: Callable[[], Any], token: ScheduledTask) -> None:
        try:
            payload = source()
            if inspect.isawaitable(payload):
                payload = await payload
        except Exception as e:
            logger.error(f"Command source failed: {e}")
            return

        if payload is None:
            return
        await self._push(payload, token)

    async def _push(self, payload: Any, token: Optional[ScheduledTask] = None) -> bool:
        try:
            message = encode_payload(payload, self._config.output_format)
        except TypeError as e:
            self.stats.messages_failed += 1
            logger.error(f"Dropping payload: {e}")
            return False

        ws = self._ws
        if ws is None or self._state is not ConnectionState.CONNECTED:
            # Not connected, drop message
            self.stats.messages_skipped += 1
            return False

        if token is not None and token.cancelled:
            return False

        try:
            await ws.send(message)
        except (ConnectionClosed, WebSocketException, OSError) as e:
            self.stats.messages_failed += 1
            logger.warning(f"Send failed: {e}")
            return False

        self.stats.messages_sent += 1
        self.stats.last_send_time = time.time()
        logger.debug(f"Sent: {message}")
        return True

    async def _send_heartbeat(self) -> None:
        await self._push(heartbeat_message())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _receive_loop(self, ws: ClientConnection) -> None:
        """Read replies until the socket closes, then handle the loss."""
        try:
            async for message in ws:
                self._handle_server_message(message)
        except ConnectionClosed as e:
            logger.debug(f"Connection closed: {e}")
        except Exception as e:
            logger.error(f"Receive loop error: {e}")

        if ws is not self._ws or self._stopped:
            # Closed on purpose
            return

        self._ws = None
        self._receive_task = None
        self._stop_heartbeat()
        self._set_state(ConnectionState.DISCONNECTED)
        self.stats.disconnect_time = time.time()
        logger.warning(f"Connection to {self._config.url} lost")

        await self._notify(self.on_disconnected)
        self._schedule_reconnect()

    def _handle_server_message(self, message: Any) -> None:
        envelope = parse_server_message(message) if isinstance(message, str) else None
        if envelope is None:
            logger.debug(f"Received from server: {message!r}")
            return

        self.stats.replies_received += 1
        kind = envelope.get("type")
        if kind == "connection":
            self._session_id = envelope.get("clientId")
            logger.info(f"Relay assigned session id {self._session_id}")
        elif kind == "error":
            logger.warning(f"Server reported error: {envelope.get('message')}")
        else:
            logger.debug(f"Received {kind} reply: {envelope}")

    def _schedule_reconnect(self, delay: Optional[float] = None) -> None:
        """Schedule a single reconnect attempt unless one is already pending."""
        if self._stopped or self.reconnect_pending:
            return

        if delay is None:
            delay = self.reconnect_delay
        self._set_state(ConnectionState.RECONNECT_PENDING)
        logger.info(f"Reconnecting in {delay:.1f}s...")
        self._reconnect_handle = call_later(delay, self._reconnect, name="reconnect")

    async def _reconnect(self) -> None:
        self._reconnect_handle = None
        self.stats.reconnect_attempts += 1
        try:
            await self.connect()
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            # connect() has already reported it and scheduled the next attempt
            logger.debug(f"Reconnect attempt failed: {e}")

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _stop_heartbeat(self) -> None:
        if self._heartbeat_handle is not None:
            self._heartbeat_handle.cancel()
            self._heartbeat_handle = None

    async def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        self._stop_heartbeat()

        task, self._receive_task = self._receive_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.warning(f"Error closing WebSocket: {e}")

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug(f"State {self._state.value} -> {state.value}")
            self._state = state

    async def _notify(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Error in callback: {e}")

    def get_stats(self) -> dict:
        """Get connection statistics."""
        return {
            "state": self._state.value,
            "connected": self.connected,
            "streaming": self.streaming,
            "target": self._config.url,
            "session_id": self._session_id,
            "connect_time": self.stats.connect_time,
            "disconnect_time": self.stats.disconnect_time,
            "reconnect_attempts": self.stats.reconnect_attempts,
            "messages_sent": self.stats.messages_sent,
            "messages_failed": self.stats.messages_failed,
            "messages_skipped": self.stats.messages_skipped,
            "replies_received": self.stats.replies_received,
            "last_send_time": self.stats.last_send_time,
        }
