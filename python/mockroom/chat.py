"""
Chat relay for interview rooms.

Every message gets a strictly increasing, gapless per-room sequence
number and is broadcast to all participants, the sender included, so
everyone renders chat from the same authoritative order.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .errors import InvalidMessageError, NotJoinedError
from .protocol import ChatMessageBroadcast

if TYPE_CHECKING:
    from .registry import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatMessage:
    """An immutable entry of a room's chat log."""

    sequence: int
    participant_id: str
    display_name: str
    text: str
    timestamp: float = field(default_factory=time.time)

    def to_broadcast(self, room_code: str) -> ChatMessageBroadcast:
        """Build the ``chat-message`` event for this entry."""
        return ChatMessageBroadcast(
            room_code=room_code,
            sequence=self.sequence,
            participant_id=self.participant_id,
            display_name=self.display_name,
            text=self.text,
            timestamp=self.timestamp,
        )


class ChatLog:
    """
    Ordered chat log of one room.

    Sequence numbers start at 1. Only the newest ``limit`` messages are
    retained; numbering continues regardless of retention.
    """

    def __init__(self, limit: int | None = None):
        self._messages: deque[ChatMessage] = deque(maxlen=limit)
        self._last_sequence = 0

    @property
    def last_sequence(self) -> int:
        return self._last_sequence

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, participant_id: str, display_name: str, text: str) -> ChatMessage:
        """Append a message and assign it the next sequence number."""
        self._last_sequence += 1
        message = ChatMessage(
            sequence=self._last_sequence,
            participant_id=participant_id,
            display_name=display_name,
            text=text,
        )
        self._messages.append(message)
        return message

    def since(self, sequence: int = 0) -> list[ChatMessage]:
        """Retained messages with a sequence number greater than ``sequence``."""
        return [m for m in self._messages if m.sequence > sequence]

    def clear(self) -> None:
        self._messages.clear()


class ChatRelay:
    """Orders and fans out chat messages within a room."""

    def __init__(self, registry: "SessionRegistry", max_length: int | None = None):
        """
        Initialize the relay.

        Args:
            registry: Membership source (read-only).
            max_length: Maximum chat message length in characters.
        """
        self._registry = registry
        self._max_length = max_length

    def send(self, room_code: str, sender_id: str, text: str) -> int:
        """
        Append a message to the room's log and broadcast it to everyone.

        Returns:
            The assigned sequence number.

        Raises:
            NotJoinedError: The sender is not a member of the room.
            InvalidMessageError: The text is blank or too long.
        """
        room = self._registry.room(room_code)
        sender = room.get(sender_id) if room else None
        if room is None or sender is None:
            raise NotJoinedError("Join a room before sending chat messages.")

        if not text.strip():
            raise InvalidMessageError("Chat message must not be blank.")
        if self._max_length is not None and len(text) > self._max_length:
            raise InvalidMessageError(
                f"Chat message exceeds {self._max_length} characters.",
                {"maxLength": self._max_length},
            )

        message = room.chat.append(sender.id, sender.display_name, text)
        room.broadcast(message.to_broadcast(room_code))
        return message.sequence


__all__ = [
    "ChatMessage",
    "ChatLog",
    "ChatRelay",
]
