"""
Presence and signaling for interview rooms.

Pushes join/leave/state-change notifications to the other members of a
room and relays WebRTC negotiation payloads between two participants.
Relaying is best-effort: the negotiation state machine on each client
retries on its own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .errors import NotJoinedError, UnknownParticipantError
from .protocol import (
    PresenceJoinedMessage,
    PresenceLeftMessage,
    PresenceStateMessage,
    ParticipantView,
    SignalKind,
    SignalReceivedMessage,
)
from .registry import PresenceEvent, SessionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignalingEnvelope:
    """A signaling payload addressed from one participant to another."""

    from_id: str
    to_id: str
    kind: SignalKind
    payload: Any = None


class PresenceCoordinator:
    """
    Broadcasts presence changes and relays signaling envelopes.

    Participants are addressed by id through the registry; the coordinator
    keeps no references to them.

    Ordering: envelopes from A to B are queued on B's connection in the
    order A's connection delivered them, so each directed pair is FIFO.
    """

    def __init__(self, registry: SessionRegistry):
        self._registry = registry
        registry.on_presence(self._on_presence)

    def _on_presence(self, event: PresenceEvent) -> None:
        self.broadcast_presence(event.room_code, event.kind, event.participant)

    def broadcast_presence(self, room_code: str, event: str, participant: ParticipantView) -> int:
        """
        Push a presence change to every other current member.

        Args:
            room_code: The room.
            event: ``joined``, ``left`` or ``state``.
            participant: The participant the change is about.

        Returns:
            Number of members notified.
        """
        room = self._registry.room(room_code)
        if room is None:
            return 0

        if event == "joined":
            message = PresenceJoinedMessage(room_code=room_code, participant=participant)
        elif event == "left":
            message = PresenceLeftMessage(room_code=room_code, participant_id=participant.participant_id)
        elif event == "state":
            message = PresenceStateMessage(
                room_code=room_code,
                participant_id=participant.participant_id,
                state=participant.state,
            )
        else:
            raise ValueError(f"Unknown presence event: {event}")

        return room.broadcast(message, exclude=participant.participant_id)

    def relay_signal(self, envelope: SignalingEnvelope) -> bool:
        """
        Forward a signaling payload verbatim to its target.

        Returns:
            True if queued for the target, False if dropped because the
            target is disconnected.

        Raises:
            NotJoinedError: The sender is not in a room.
            UnknownParticipantError: The target is not in the sender's room.
        """
        room_code = self._registry.room_of(envelope.from_id)
        if room_code is None:
            raise NotJoinedError("Join a room before signaling.")

        room = self._registry.room(room_code)
        target = room.get(envelope.to_id) if room else None
        if target is None:
            raise UnknownParticipantError(
                f"Participant '{envelope.to_id}' is not in room '{room_code}'.",
                {"participantId": envelope.to_id},
            )

        message = SignalReceivedMessage(
            from_participant=envelope.from_id,
            kind=envelope.kind,
            payload=envelope.payload,
        )
        delivered = target.deliver(message.to_wire())
        if not delivered:
            logger.debug(
                f"Dropped {SignalKind(envelope.kind).value} from {envelope.from_id} to {envelope.to_id} "
                f"in room {room_code}"
            )
        return delivered


__all__ = [
    "SignalingEnvelope",
    "PresenceCoordinator",
]
