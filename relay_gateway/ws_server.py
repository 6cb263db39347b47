"""
WebSocket relay server for arm control clients.

Handles:
- FastAPI WebSocket endpoint at /ws
- Session registry with per-session heartbeat tracking
- Periodic liveness sweep evicting silent sessions
- Acknowledgements, heartbeat replies and error replies
- Optional relaying of commands (callback and rebroadcast)
- Status endpoint at /api/status
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.websockets import WebSocketState

from .protocol import (
    CommandMessage,
    HandDataMessage,
    HeartbeatMessage,
    InboundMessage,
    MessageFormatError,
    NoHandMessage,
    ack_reply,
    connection_reply,
    error_reply,
    heartbeat_reply,
    parse_message,
)

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL = 10.0
DEFAULT_SESSION_TIMEOUT = 30.0

# Close code sent to evicted sessions (going away)
EVICTION_CLOSE_CODE = 1001


@dataclass
class ClientSession:
    """State of one connected client."""
    id: str
    websocket: Any
    connected_at: float
    last_heartbeat: float
    message_count: int = 0


class RelayServer:
    """
    WebSocket relay server.

    Sessions are owned exclusively by the registry. Every mutation happens
    within a single event-loop turn of the connect, message, close or sweep
    handler, so no lock is needed.
    """

    def __init__(
        self,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        session_timeout: float = DEFAULT_SESSION_TIMEOUT,
        rebroadcast: bool = False,
        on_command: Optional[Callable[[str, CommandMessage], Awaitable[None]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize relay server.

        Args:
            sweep_interval: Seconds between liveness sweeps
            session_timeout: Seconds of silence before a session is evicted
            rebroadcast: Re-send received commands to every other session
            on_command: Callback for received commands (session id, command)
            clock: Monotonic clock for heartbeats and uptime
        """
        self.sweep_interval = sweep_interval
        self.session_timeout = session_timeout
        self.rebroadcast = rebroadcast
        self.on_command = on_command
        self._clock = clock

        # Session registry
        self.sessions: Dict[str, ClientSession] = {}
        self._client_counter = 0
        self._started_at = clock()
        self._sweep_task: Optional[asyncio.Task] = None

        # Statistics
        self._total_messages = 0
        self._invalid_messages = 0
        self._evicted_sessions = 0
        self._relayed_commands = 0

        # FastAPI app
        self.app = FastAPI(title="Hand Tracking Robot Arm Relay", lifespan=self._lifespan)

        # Add CORS middleware
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        # Register routes
        self._setup_routes()

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        self.start_sweeper()
        try:
            yield
        finally:
            await self.stop_sweeper()

    def _setup_routes(self):
        """Set up FastAPI routes."""

        @self.app.get("/api/status")
        async def status():
            """Session count and uptime."""
            return self.get_status()

        @self.app.websocket("/ws")
        async def websocket_relay(websocket: WebSocket):
            """WebSocket endpoint for control clients."""
            await self._handle_websocket(websocket)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def _handle_websocket(self, websocket: WebSocket) -> None:
        """Handle incoming WebSocket connection."""
        await websocket.accept()
        session = self._open_session(websocket)

        try:
            await websocket.send_json(connection_reply(session.id))
            await self._receive_messages(session)
        except WebSocketDisconnect:
            logger.info(f"Client {session.id} disconnected")
        except Exception as e:
            logger.error(f"Error handling client {session.id}: {e}")
        finally:
            self._close_session(session.id)

    def _open_session(self, websocket: WebSocket) -> ClientSession:
        self._client_counter += 1
        now = self._clock()
        session = ClientSession(
            id=f"client_{self._client_counter}",
            websocket=websocket,
            connected_at=now,
            last_heartbeat=now,
        )
        self.sessions[session.id] = session
        logger.info(
            f"Client {session.id} connected from {websocket.client}. "
            f"Total clients: {len(self.sessions)}"
        )
        return session

    def _close_session(self, session_id: str) -> None:
        if self.sessions.pop(session_id, None) is not None:
            logger.info(f"Client {session_id} removed. Remaining clients: {len(self.sessions)}")

    async def _receive_messages(self, session: ClientSession) -> None:
        """Receive and process messages from a client."""
        websocket = session.websocket
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            # Any traffic counts as a heartbeat
            session.last_heartbeat = self._clock()
            session.message_count += 1
            self._total_messages += 1

            data = message.get("text")
            if data is None:
                data = (message.get("bytes") or b"").decode("utf-8", errors="replace")

            try:
                msg = parse_message(data)
            except MessageFormatError as e:
                self._invalid_messages += 1
                logger.warning(f"Invalid message from {session.id}: {e}")
                await websocket.send_json(error_reply())
                continue

            await self._dispatch(session, msg)

    async def _dispatch(self, session: ClientSession, msg: InboundMessage) -> None:
        websocket = session.websocket
        if isinstance(msg, HeartbeatMessage):
            await websocket.send_json(heartbeat_reply())
        elif isinstance(msg, (HandDataMessage, NoHandMessage)):
            await websocket.send_json(ack_reply())
        elif isinstance(msg, CommandMessage):
            await websocket.send_json(ack_reply())
            await self._relay_command(session, msg)
        else:
            logger.debug(f"Ignoring message from {session.id}: {msg}")

    async def _relay_command(self, session: ClientSession, msg: CommandMessage) -> None:
        """Forward a command to the callback and, if enabled, to other sessions."""
        self._relayed_commands += 1
        logger.debug(f"Command from {session.id}: {msg.to_dict()}")

        if self.on_command:
            try:
                await self.on_command(session.id, msg)
            except Exception as e:
                logger.error(f"Error in command callback: {e}")

        if not self.rebroadcast:
            return

        payload = msg.to_json()
        for other in list(self.sessions.values()):
            if other.id == session.id:
                continue
            try:
                await other.websocket.send_text(payload)
            except Exception as e:
                logger.warning(f"Rebroadcast to {other.id} failed: {e}")

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    async def sweep(self, now: Optional[float] = None) -> List[str]:
        """
        Evict sessions silent for longer than session_timeout.

        Stale sessions leave the registry before any socket is closed.

        Returns:
            Ids of evicted sessions
        """
        if now is None:
            now = self._clock()

        stale = [
            s for s in self.sessions.values()
            if now - s.last_heartbeat > self.session_timeout
        ]
        for session in stale:
            del self.sessions[session.id]
            self._evicted_sessions += 1
            logger.info(f"Client {session.id} timed out")

        for session in stale:
            await self._close_socket(session)

        return [s.id for s in stale]

    async def _close_socket(self, session: ClientSession) -> None:
        websocket = session.websocket
        if websocket.application_state != WebSocketState.CONNECTED:
            return
        try:
            await websocket.close(code=EVICTION_CLOSE_CODE)
        except Exception as e:
            logger.debug(f"Closing {session.id} failed: {e}")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Liveness sweep failed: {e}")

    def start_sweeper(self) -> None:
        """Start the periodic liveness sweep."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(
            f"Liveness sweep every {self.sweep_interval:.0f}s, "
            f"timeout {self.session_timeout:.0f}s"
        )

    async def stop_sweeper(self) -> None:
        """Stop the periodic liveness sweep."""
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> dict:
        """Read-only status: session count and uptime in seconds."""
        return {
            "status": "ok",
            "clients": len(self.sessions),
            "uptime": round(self._clock() - self._started_at, 3),
        }

    def get_stats(self) -> dict:
        """Get server statistics."""
        return {
            "connected_clients": len(self.sessions),
            "total_messages": self._total_messages,
            "invalid_messages": self._invalid_messages,
            "evicted_sessions": self._evicted_sessions,
            "relayed_commands": self._relayed_commands,
        }
