"""
FastAPI WebSocket gateway for interview-room sessions.

Provides SessionGateway, the single ingress/egress point: it binds each
connection to one participant, dispatches inbound events to the
registry, the document sync engine, the presence coordinator and the
chat relay, and multiplexes their outbound events back to connections.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRouter
from pydantic import ValidationError

from .chat import ChatRelay
from .config import Settings, get_settings
from .errors import (
    AlreadyJoinedError,
    NotJoinedError,
    ResumeRejectedError,
    SessionError,
    UnknownParticipantError,
)
from .ot import Operation
from .presence import PresenceCoordinator, SignalingEnvelope
from .protocol import (
    ChatSendMessage,
    ConnectionState,
    EditMessage,
    ErrorCode,
    ErrorMessage,
    JoinRoomMessage,
    LeaveRoomMessage,
    PingMessage,
    PongMessage,
    ResumeSessionMessage,
    RoomJoinedMessage,
    RoomLeftMessage,
    SessionResumedMessage,
    SignalMessage,
    SyncRequestMessage,
    parse_client_message,
)
from .registry import Participant, ParticipantInfo, SessionRegistry
from .sync import CatchUp, operation_message

logger = logging.getLogger(__name__)


class TokenBucket:
    """Simple token bucket rate limiter for one connection."""

    def __init__(self, rate: float, window: float = 1.0):
        self.rate = rate
        self.window = window
        self._tokens = rate
        self._last_update = time.monotonic()

    def is_allowed(self) -> bool:
        """Check if a message is allowed and consume a token."""
        now = time.monotonic()
        elapsed = now - self._last_update
        self._last_update = now

        self._tokens = min(self.rate, self._tokens + elapsed * (self.rate / self.window))

        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False


class Connection:
    """
    One WebSocket with a bounded outbound queue.

    ``send`` never blocks: messages are queued and written by a dedicated
    task, so callers inside a room's critical section never wait on the
    network and every connection sees its messages in queue order.
    """

    def __init__(self, websocket: WebSocket, max_pending: int = 1024, rate_limit: float = 100.0):
        self.id = uuid.uuid4().hex[:12]
        self.websocket = websocket
        self.rate_limiter = TokenBucket(rate_limit)
        self._queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue(maxsize=max_pending)
        self._writer: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Start the writer task."""
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain())

    def send(self, data: Dict[str, Any]) -> bool:
        """Queue a message; returns False if the connection is closed or overflowed."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(data)
        except asyncio.QueueFull:
            logger.warning(f"Outbound queue full on connection {self.id}; closing it")
            self.abort(code=1013)
            return False
        return True

    async def _drain(self) -> None:
        while True:
            data = await self._queue.get()
            try:
                await self.websocket.send_json(data)
            except Exception as exc:
                logger.debug(f"Send failed on connection {self.id}: {exc}")
                self._closed = True
                return

    def close(self) -> None:
        """Stop writing; queued messages are discarded."""
        self._closed = True
        if self._writer is not None:
            self._writer.cancel()
            self._writer = None

    def abort(self, code: int = 1000) -> None:
        """Close and also close the underlying WebSocket."""
        self.close()
        asyncio.create_task(self._close_socket(code))

    async def _close_socket(self, code: int) -> None:
        try:
            await self.websocket.close(code=code)
        except Exception as exc:
            logger.debug(f"Closing connection {self.id} failed: {exc}")


class SessionGateway:
    """
    FastAPI WebSocket server for interview rooms.

    Handles:
    - WebSocket connections and event routing
    - Join/leave and session resumption within a grace window
    - Editor operations (via each room's DocumentSyncEngine)
    - Presence broadcasts and WebRTC signaling relay
    - Chat
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[SessionRegistry] = None,
    ):
        self._settings = settings or get_settings()
        self._registry = registry or SessionRegistry.from_settings(self._settings)
        self._presence = PresenceCoordinator(self._registry)
        self._chat = ChatRelay(self._registry, max_length=self._settings.max_chat_length)

        self._router = APIRouter()
        self._app: Optional[FastAPI] = None

        # Connection -> participant id, for joined connections only
        self._bindings: Dict[Connection, str] = {}
        # participant id -> pending eviction after a dropped connection
        self._evictions: Dict[str, asyncio.Task] = {}

        self._handlers = {
            "join-room": self._handle_join,
            "resume-session": self._handle_resume,
            "leave-room": self._handle_leave,
            "edit": self._handle_edit,
            "signal": self._handle_signal,
            "chat-send": self._handle_chat,
            "sync-request": self._handle_sync_request,
            "ping": self._handle_ping,
        }

        self._setup_routes()

    @property
    def app(self) -> FastAPI:
        """Get the FastAPI application with routes configured."""
        if self._app is None:
            self._app = FastAPI(title=self._settings.app_name, lifespan=self._lifespan)
            self._app.add_middleware(
                CORSMiddleware,
                allow_origins=self._settings.cors_origins,
                allow_credentials=True,
                allow_methods=["*"],
                allow_headers=["*"],
            )
            self._app.include_router(self._router)
        return self._app

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        """Lifespan handler: cancel pending evictions on shutdown."""
        yield
        await self.shutdown()

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def presence(self) -> PresenceCoordinator:
        return self._presence

    @property
    def chat(self) -> ChatRelay:
        return self._chat

    def mount(self, app: FastAPI, prefix: str = "") -> None:
        """Mount the gateway routes on an existing FastAPI application."""
        self._app = app
        app.include_router(self._router, prefix=prefix)

    def _setup_routes(self) -> None:
        """Setup WebSocket and HTTP routes."""

        @self._router.websocket(self._settings.ws_path)
        async def websocket_endpoint(websocket: WebSocket):
            await self._handle_connection(websocket)

        @self._router.get("/api/health")
        async def health() -> Dict[str, Any]:
            return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

        @self._router.get("/api/rooms/{room_code}")
        async def room_detail(room_code: str) -> Dict[str, Any]:
            room = self._registry.room(room_code)
            if room is None:
                raise HTTPException(status_code=404, detail=f"Room '{room_code}' not found.")
            return {
                "roomCode": room.code,
                "revision": room.engine.revision,
                "participants": [p.view().to_wire() for p in room.participants],
            }

    async def _handle_connection(self, websocket: WebSocket) -> None:
        """Handle a new WebSocket connection."""
        await websocket.accept()

        connection = Connection(
            websocket,
            max_pending=self._settings.outbox_size,
            rate_limit=self._settings.rate_limit,
        )
        connection.start()

        try:
            while not connection.closed:
                try:
                    frame = await asyncio.wait_for(
                        websocket.receive(), timeout=self._settings.message_timeout
                    )
                except asyncio.TimeoutError:
                    # Ping the client; the writer marks it closed on failure
                    connection.send(PingMessage(timestamp=time.time()).to_wire())
                    continue

                if frame["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(frame.get("code", 1000), frame.get("reason"))

                raw_data = frame.get("text")
                if raw_data is None:
                    self._send_error(connection, ErrorCode.INVALID_MESSAGE, "Binary frames are not supported.")
                    continue

                if not connection.rate_limiter.is_allowed():
                    self._send_error(connection, ErrorCode.RATE_LIMITED, "Rate limit exceeded.")
                    continue

                if len(raw_data) > self._settings.max_message_size:
                    self._send_error(connection, ErrorCode.INVALID_MESSAGE, "Message too large.")
                    continue

                try:
                    data = json.loads(raw_data)
                except json.JSONDecodeError:
                    self._send_error(connection, ErrorCode.INVALID_MESSAGE, "Invalid JSON.")
                    continue

                await self._handle_message(connection, data)

        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception(f"WebSocket error on connection {connection.id}")
        finally:
            # Must not await: this also runs when the handler task is cancelled
            self._connection_lost(connection)
            connection.close()

    async def _handle_message(self, connection: Connection, data: Any) -> None:
        """Handle an incoming message."""
        try:
            message = parse_client_message(data)
        except (ValueError, ValidationError):
            self._send_error(connection, ErrorCode.INVALID_MESSAGE, "Invalid message format.")
            return

        handler = self._handlers[message.type]
        try:
            await handler(connection, message)
        except SessionError as exc:
            logger.debug(f"{message.type} rejected on connection {connection.id}: {exc.code.value}")
            connection.send(exc.to_message().to_wire())
        except Exception:
            logger.exception(f"Failed to handle {message.type} on connection {connection.id}")
            self._send_error(connection, ErrorCode.INTERNAL_ERROR, "Internal error.")

    def _require_participant(self, connection: Connection) -> Participant:
        participant_id = self._bindings.get(connection)
        participant = self._registry.find(participant_id) if participant_id else None
        if participant is None:
            raise NotJoinedError("Join a room before sending room events.")
        return participant

    async def _handle_join(self, connection: Connection, message: JoinRoomMessage) -> None:
        """Handle join room request."""
        if connection in self._bindings:
            raise AlreadyJoinedError("This connection has already joined a room.")

        participant, snapshot = self._registry.join(
            message.room_code,
            ParticipantInfo(display_name=message.display_name, role=message.role),
            connection,
        )
        self._bindings[connection] = participant.id

        response = RoomJoinedMessage(
            room_code=snapshot.room_code,
            participant_id=participant.id,
            resume_token=participant.resume_token,
            role=participant.role,
            document_snapshot=snapshot.document,
            revision=snapshot.revision,
            participants=snapshot.participants,
            chat_history=[m.to_broadcast(snapshot.room_code) for m in snapshot.chat_history],
        )
        connection.send(response.to_wire())

    async def _handle_resume(self, connection: Connection, message: ResumeSessionMessage) -> None:
        """Handle a reconnecting client resuming its participant."""
        if connection in self._bindings:
            raise AlreadyJoinedError("This connection has already joined a room.")

        participant = self._registry.find(message.participant_id)
        if participant is None or not secrets.compare_digest(
            participant.resume_token, message.resume_token
        ):
            raise ResumeRejectedError(
                "Session cannot be resumed; join the room again.",
                {"participantId": message.participant_id},
            )

        room = self._registry.room(participant.room_code)
        self._cancel_eviction(participant.id)

        def reattach(catch_up: CatchUp) -> None:
            if self._registry.find(participant.id) is None:
                raise ResumeRejectedError("Session ended before it could be resumed.")

            previous = participant.connection
            if previous is not None and previous is not connection:
                # Half-open old socket: the new connection takes over
                self._bindings.pop(previous, None)
                if isinstance(previous, Connection):
                    previous.abort()

            self._registry.mark_resumed(participant.id, connection)
            self._bindings[connection] = participant.id

            response = SessionResumedMessage(
                room_code=room.code,
                participant_id=participant.id,
                revision=catch_up.revision,
                operations=(
                    [operation_message(op) for op in catch_up.operations]
                    if catch_up.operations is not None
                    else None
                ),
                document_snapshot=catch_up.content,
                participants=[p.view() for p in room.participants],
                chat_history=[
                    m.to_broadcast(room.code) for m in room.chat.since(message.last_chat_sequence)
                ],
            )
            connection.send(response.to_wire())

        await room.engine.resume(participant.id, reattach, since=message.last_revision)

    async def _handle_leave(self, connection: Connection, message: LeaveRoomMessage) -> None:
        """Handle leave room request."""
        participant_id = self._bindings.pop(connection, None)
        if participant_id is None:
            return

        participant = self._registry.leave(participant_id)
        if participant is not None:
            connection.send(RoomLeftMessage(room_code=participant.room_code).to_wire())

    async def _handle_edit(self, connection: Connection, message: EditMessage) -> None:
        """Handle an editor operation."""
        participant = self._require_participant(connection)
        room = self._registry.room(participant.room_code)

        start, end = message.range
        operation = Operation(
            start=start,
            end=end,
            text=message.inserted_text,
            base_revision=message.base_revision,
            participant_id=participant.id,
        )
        await room.engine.submit(operation)

    async def _handle_signal(self, connection: Connection, message: SignalMessage) -> None:
        """Relay a WebRTC signaling payload; undeliverable signals are dropped."""
        participant = self._require_participant(connection)

        envelope = SignalingEnvelope(
            from_id=participant.id,
            to_id=message.to,
            kind=message.kind,
            payload=message.payload,
        )
        try:
            self._presence.relay_signal(envelope)
        except UnknownParticipantError:
            logger.debug(f"Dropped {message.kind.value} from {participant.id} to unknown {message.to}")

    async def _handle_chat(self, connection: Connection, message: ChatSendMessage) -> None:
        """Handle chat message."""
        participant = self._require_participant(connection)
        self._chat.send(participant.room_code, participant.id, message.text)

    async def _handle_sync_request(self, connection: Connection, message: SyncRequestMessage) -> None:
        """Handle an explicit resync request."""
        participant = self._require_participant(connection)
        room = self._registry.room(participant.room_code)
        await room.engine.resync(participant.id, "requested")

    async def _handle_ping(self, connection: Connection, message: PingMessage) -> None:
        """Handle ping message."""
        connection.send(PongMessage(timestamp=time.time()).to_wire())

    def _connection_lost(self, connection: Connection) -> None:
        """Start the rejoin grace period for the participant bound to a lost connection."""
        participant_id = self._bindings.pop(connection, None)
        if participant_id is None:
            return

        participant = self._registry.find(participant_id)
        if participant is None or participant.connection is not connection:
            return

        grace = self._settings.rejoin_grace_seconds
        if grace <= 0:
            self._registry.leave(participant_id)
            return

        self._registry.mark_disconnected(participant_id)
        self._evictions[participant_id] = asyncio.create_task(
            self._evict_after(participant_id, grace)
        )

    async def _evict_after(self, participant_id: str, delay: float) -> None:
        """Remove a participant that did not resume within ``delay`` seconds."""
        await asyncio.sleep(delay)
        self._evictions.pop(participant_id, None)

        participant = self._registry.find(participant_id)
        if participant is None or participant.state is not ConnectionState.DISCONNECTED_PENDING_REJOIN:
            return

        logger.info(f"Evicting {participant_id} from room {participant.room_code} after {delay:.1f}s")
        self._registry.leave(participant_id)

    def _cancel_eviction(self, participant_id: str) -> None:
        task = self._evictions.pop(participant_id, None)
        if task is not None:
            task.cancel()

    def _send_error(
        self,
        connection: Connection,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Send an error message to a connection."""
        connection.send(ErrorMessage(code=code.value, message=message, details=details).to_wire())

    async def shutdown(self) -> None:
        """Cancel pending evictions."""
        tasks = list(self._evictions.values())
        self._evictions.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = [
    "TokenBucket",
    "Connection",
    "SessionGateway",
]
