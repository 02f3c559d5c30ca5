"""
Session registry for interview rooms.

Provides the Participant and Room records and the SessionRegistry that
exclusively owns their lifecycle: rooms are created on first join and
discarded, document and chat included, when the last participant leaves.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Protocol

from .chat import ChatLog, ChatMessage
from .errors import RoomFullError
from .protocol import (
    ConnectionState,
    ParticipantRole,
    ParticipantView,
    WireModel,
)
from .sync import DocumentSyncEngine

logger = logging.getLogger(__name__)

DEFAULT_MAX_PARTICIPANTS = 8


class Outbox(Protocol):
    """Anything that can queue a wire message for one connection."""

    def send(self, data: dict[str, Any]) -> bool:
        ...


@dataclass
class ParticipantInfo:
    """What a client announces when joining."""

    display_name: str
    role: ParticipantRole | None = None


class Participant:
    """
    A member of a room, keyed by an opaque session id.

    Connection state machine:
        connected -> disconnected-pending-rejoin -> connected (resumed)
                                                 -> removed (evicted)
    """

    def __init__(
        self,
        participant_id: str,
        room_code: str,
        display_name: str,
        role: ParticipantRole,
        connection: Outbox | None,
        resume_token: str,
    ):
        self.id = participant_id
        self.room_code = room_code
        self.display_name = display_name
        self.role = role
        self.resume_token = resume_token
        self.connection = connection
        self.state = ConnectionState.CONNECTED
        self.joined_at = time.time()
        self.disconnected_at: float | None = None

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def disconnect(self) -> None:
        """Mark the connection as lost; the participant keeps its seat."""
        if self.state is not ConnectionState.CONNECTED:
            raise RuntimeError(f"Participant {self.id} is not connected")
        self.state = ConnectionState.DISCONNECTED_PENDING_REJOIN
        self.connection = None
        self.disconnected_at = time.time()

    def resume(self, connection: Outbox) -> None:
        """Attach a new connection (also replaces a stale connected one)."""
        self.connection = connection
        self.state = ConnectionState.CONNECTED
        self.disconnected_at = None

    def deliver(self, data: dict[str, Any]) -> bool:
        """Queue a wire message; dropped while disconnected."""
        if self.connection is None:
            logger.debug(f"Dropping {data.get('type')} for disconnected participant {self.id}")
            return False
        return self.connection.send(data)

    def view(self) -> ParticipantView:
        """Public view for presence events and snapshots."""
        return ParticipantView(
            participant_id=self.id,
            display_name=self.display_name,
            role=self.role,
            state=self.state,
        )


class Room:
    """
    A room identified by an opaque code.

    Owns its participants, one DocumentSyncEngine (and through it the
    document) and the chat log.
    """

    def __init__(
        self,
        code: str,
        history_limit: int | None = None,
        chat_history_limit: int | None = None,
        max_document_length: int | None = None,
    ):
        self.code = code
        self._participants: dict[str, Participant] = {}
        self.engine = DocumentSyncEngine(
            code,
            broadcast=self.broadcast,
            send_to=self.send_to,
            history_limit=history_limit,
            max_length=max_document_length,
        )
        self.chat = ChatLog(chat_history_limit)
        self.created_at = time.time()

    @property
    def participants(self) -> list[Participant]:
        """Participants in join order."""
        return list(self._participants.values())

    @property
    def participant_count(self) -> int:
        return len(self._participants)

    @property
    def is_empty(self) -> bool:
        return not self._participants

    def get(self, participant_id: str) -> Participant | None:
        return self._participants.get(participant_id)

    def has(self, participant_id: str) -> bool:
        return participant_id in self._participants

    def broadcast(self, message: WireModel, exclude: str | None = None) -> int:
        """
        Queue a message for every connected participant.

        Args:
            message: The event to send.
            exclude: Optional participant ID to skip.

        Returns:
            Number of participants the message was queued for.
        """
        data = message.to_wire()
        delivered = 0
        for participant in self._participants.values():
            if participant.id != exclude and participant.deliver(data):
                delivered += 1
        return delivered

    def send_to(self, participant_id: str, message: WireModel) -> bool:
        """Queue a message for one participant."""
        participant = self._participants.get(participant_id)
        if participant is None:
            return False
        return participant.deliver(message.to_wire())

    def _add(self, participant: Participant) -> None:
        self._participants[participant.id] = participant

    def _remove(self, participant_id: str) -> Participant | None:
        participant = self._participants.pop(participant_id, None)
        if participant is not None:
            self.engine.forget(participant_id)
        return participant

    def _discard(self) -> None:
        self._participants.clear()
        self.chat.clear()


@dataclass
class RoomSnapshot:
    """State handed to a participant right after joining."""

    room_code: str
    participant_id: str
    document: str
    revision: int
    participants: list[ParticipantView]
    chat_history: list[ChatMessage] = field(default_factory=list)


@dataclass
class PresenceEvent:
    """Membership change emitted by the registry."""

    kind: Literal["joined", "left", "state"]
    room_code: str
    participant: ParticipantView


PresenceListener = Callable[[PresenceEvent], None]


class SessionRegistry:
    """
    Tracks which participants belong to which room.

    The registry is the only writer of membership. Other components read
    it and subscribe to presence events with :meth:`on_presence`.
    """

    def __init__(
        self,
        max_participants: int = DEFAULT_MAX_PARTICIPANTS,
        history_limit: int | None = None,
        chat_history_limit: int | None = None,
        max_document_length: int | None = None,
    ):
        """
        Initialize the registry.

        Args:
            max_participants: Room capacity (bounds signaling fan-out).
            history_limit: Operations each room retains for transformation.
            chat_history_limit: Chat messages each room retains.
            max_document_length: Maximum document length per room.
        """
        if max_participants < 1:
            raise ValueError("max_participants must be at least 1")

        self._max_participants = max_participants
        self._history_limit = history_limit
        self._chat_history_limit = chat_history_limit
        self._max_document_length = max_document_length

        self._rooms: dict[str, Room] = {}
        # participant_id -> room_code
        self._index: dict[str, str] = {}
        self._listeners: list[PresenceListener] = []

    @classmethod
    def from_settings(cls, settings: Any) -> "SessionRegistry":
        """Build a registry from :class:`mockroom.config.Settings`."""
        return cls(
            max_participants=settings.max_participants,
            history_limit=settings.history_limit,
            chat_history_limit=settings.chat_history_limit,
            max_document_length=settings.max_document_length,
        )

    @property
    def max_participants(self) -> int:
        return self._max_participants

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    @property
    def participant_count(self) -> int:
        return len(self._index)

    @property
    def room_codes(self) -> list[str]:
        return list(self._rooms.keys())

    def on_presence(self, listener: PresenceListener) -> None:
        """Register a listener for join, leave and state-change events."""
        self._listeners.append(listener)

    def join(
        self,
        room_code: str,
        info: ParticipantInfo,
        connection: Outbox | None = None,
    ) -> tuple[Participant, RoomSnapshot]:
        """
        Add a participant to a room, creating the room if needed.

        The first participant of a new room defaults to the host role.

        Raises:
            RoomFullError: The room is at capacity.
        """
        room = self._rooms.get(room_code)
        created = room is None

        if room is not None and room.participant_count >= self._max_participants:
            raise RoomFullError(
                f"Room '{room_code}' is full.",
                {"roomCode": room_code, "maxParticipants": self._max_participants},
            )

        if room is None:
            room = Room(
                room_code,
                history_limit=self._history_limit,
                chat_history_limit=self._chat_history_limit,
                max_document_length=self._max_document_length,
            )
            self._rooms[room_code] = room
            logger.info(f"Room {room_code} created")

        role = info.role or (ParticipantRole.HOST if created else ParticipantRole.CANDIDATE)
        participant = Participant(
            participant_id=self._new_participant_id(),
            room_code=room_code,
            display_name=info.display_name,
            role=role,
            connection=connection,
            resume_token=secrets.token_urlsafe(24),
        )
        room._add(participant)
        self._index[participant.id] = room_code

        content, revision = room.engine.snapshot(participant.id)
        snapshot = RoomSnapshot(
            room_code=room_code,
            participant_id=participant.id,
            document=content,
            revision=revision,
            participants=[p.view() for p in room.participants],
            chat_history=room.chat.since(0),
        )

        logger.info(
            f"{participant.display_name} ({participant.id}) joined room {room_code} "
            f"as {role.value} [{room.participant_count}/{self._max_participants}]"
        )
        self._emit(PresenceEvent("joined", room_code, participant.view()))
        return participant, snapshot

    def leave(self, participant_id: str) -> Participant | None:
        """
        Remove a participant. Leaving twice is a no-op.

        Returns:
            The removed participant, or None if it was not present.
        """
        room_code = self._index.pop(participant_id, None)
        if room_code is None:
            return None

        room = self._rooms[room_code]
        participant = room._remove(participant_id)
        if participant is None:
            return None

        logger.info(f"{participant.display_name} ({participant.id}) left room {room_code}")
        self._emit(PresenceEvent("left", room_code, participant.view()))

        if room.is_empty:
            del self._rooms[room_code]
            room._discard()
            logger.info(f"Room {room_code} is empty; discarded")

        return participant

    def get(self, room_code: str) -> list[Participant]:
        """Participants of a room (empty if the room does not exist)."""
        room = self._rooms.get(room_code)
        return room.participants if room else []

    def room(self, room_code: str) -> Room | None:
        return self._rooms.get(room_code)

    def has_room(self, room_code: str) -> bool:
        return room_code in self._rooms

    def room_of(self, participant_id: str) -> str | None:
        """Room code of a participant."""
        return self._index.get(participant_id)

    def find(self, participant_id: str) -> Participant | None:
        """Look up a participant by id."""
        room_code = self._index.get(participant_id)
        if room_code is None:
            return None
        return self._rooms[room_code].get(participant_id)

    def mark_disconnected(self, participant_id: str) -> Participant | None:
        """Move a participant to disconnected-pending-rejoin."""
        participant = self.find(participant_id)
        if participant is None or not participant.is_connected:
            return participant

        participant.disconnect()
        logger.info(f"{participant.id} disconnected from room {participant.room_code}; awaiting rejoin")
        self._emit(PresenceEvent("state", participant.room_code, participant.view()))
        return participant

    def mark_resumed(self, participant_id: str, connection: Outbox) -> Participant | None:
        """Reattach a participant to a new connection."""
        participant = self.find(participant_id)
        if participant is None:
            return None

        was_connected = participant.is_connected
        participant.resume(connection)
        logger.info(f"{participant.id} resumed in room {participant.room_code}")
        if not was_connected:
            self._emit(PresenceEvent("state", participant.room_code, participant.view()))
        return participant

    def _emit(self, event: PresenceEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Presence listener failed for {event.kind} in room {event.room_code}")

    def _new_participant_id(self) -> str:
        while True:
            participant_id = f"p-{secrets.token_hex(8)}"
            if participant_id not in self._index:
                return participant_id


__all__ = [
    "DEFAULT_MAX_PARTICIPANTS",
    "Outbox",
    "ParticipantInfo",
    "Participant",
    "Room",
    "RoomSnapshot",
    "PresenceEvent",
    "PresenceListener",
    "SessionRegistry",
]
