"""
Document synchronization engine.

One engine per room owns that room's document. Operations are accepted
one at a time behind a lock scoped to the room, so every room has a total
order of edits while unrelated rooms never contend with each other.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from .errors import HistoryTooOldError
from .ot import Document, Operation
from .protocol import (
    DocumentSnapshotMessage,
    EditAckMessage,
    OperationAppliedMessage,
    WireModel,
)

logger = logging.getLogger(__name__)


# Fan-out callbacks provided by the owning room
BroadcastCallback = Callable[..., int]
SendCallback = Callable[[str, WireModel], bool]


def operation_message(op: Operation) -> OperationAppliedMessage:
    """Build the ``operation-applied`` event for an accepted operation."""
    return OperationAppliedMessage(
        revision=op.revision,
        participant_id=op.participant_id,
        range=(op.start, op.end),
        inserted_text=op.text,
    )


@dataclass
class CatchUp:
    """What a resuming participant needs to reach the current revision.

    Exactly one of ``operations`` and ``content`` is set.
    """

    revision: int
    operations: list[Operation] | None = None
    content: str | None = None


class DocumentSyncEngine:
    """
    Serializes edits for one room.

    Accepting an operation, broadcasting it to the other participants and
    acknowledging it to its author all happen inside the room's critical
    section, so every participant observes operations in revision order.
    Sends are non-blocking enqueues; nothing inside the critical section
    waits on I/O.
    """

    def __init__(
        self,
        room_code: str,
        *,
        broadcast: BroadcastCallback,
        send_to: SendCallback,
        history_limit: int | None = None,
        max_length: int | None = None,
        initial_content: str = "",
    ):
        """
        Initialize the engine.

        Args:
            room_code: The owning room.
            broadcast: ``broadcast(message, exclude=participant_id)`` fan-out.
            send_to: ``send_to(participant_id, message)`` unicast.
            history_limit: Operations retained for transforming stale edits.
            max_length: Maximum document length in characters.
            initial_content: Document text at revision 0.
        """
        self.room_code = room_code
        self._document = Document(initial_content, history_limit, max_length)
        self._lock = asyncio.Lock()
        self._broadcast = broadcast
        self._send_to = send_to

    @property
    def revision(self) -> int:
        return self._document.revision

    @property
    def content(self) -> str:
        return self._document.content

    @property
    def document(self) -> Document:
        return self._document

    def snapshot(self, participant_id: str | None = None) -> tuple[str, int]:
        """
        Get the current content and revision.

        If ``participant_id`` is given, the participant is recorded as
        having observed the current revision.
        """
        revision = self._document.revision
        if participant_id is not None:
            self._document.acknowledge(participant_id, revision)
        return self._document.content, revision

    async def submit(self, op: Operation) -> Operation:
        """
        Accept an operation from a participant.

        Returns:
            The accepted (possibly transformed) operation.

        Raises:
            HistoryTooOldError: After sending the author a fresh snapshot.
            MalformedOperationError: The operation does not fit the document.
        """
        author = op.participant_id

        async with self._lock:
            try:
                accepted = self._document.accept(op)
            except HistoryTooOldError:
                logger.info(
                    f"Resyncing {author} in room {self.room_code}: "
                    f"base revision {op.base_revision} < {self._document.oldest_revision}"
                )
                if author is not None:
                    self._send_snapshot(author, "history_too_old")
                raise

            self._broadcast(operation_message(accepted), exclude=author)
            if author is not None:
                self._send_to(author, EditAckMessage(accepted_revision=accepted.revision))

        if accepted.base_revision != op.base_revision:
            logger.debug(
                f"Room {self.room_code}: transformed edit from {author} "
                f"(base {op.base_revision}) to revision {accepted.revision}"
            )
        return accepted

    async def resync(self, participant_id: str, reason: str = "requested") -> int:
        """Send a participant the full document; returns the snapshot revision."""
        async with self._lock:
            return self._send_snapshot(participant_id, reason)

    async def resume(
        self,
        participant_id: str,
        reattach: Callable[[CatchUp], None] | None = None,
        since: int | None = None,
    ) -> CatchUp:
        """
        Compute what a resuming participant missed.

        ``since`` is the last revision the client applied, as reported by
        the client. Acknowledgements recorded on the server only mean an
        ack was queued, and queued messages die with the socket, so they
        are not used here. The catch-up includes the participant's own
        operations; the client treats those as acknowledgements. Without
        ``since``, or when it is outside the retained window, the catch-up
        is a snapshot.

        ``reattach`` runs inside the critical section, so the participant
        can be reconnected before any later operation is broadcast.
        """
        async with self._lock:
            catch_up = self._catch_up(participant_id, since)
            if reattach is not None:
                reattach(catch_up)
            return catch_up

    def forget(self, participant_id: str) -> None:
        """Drop a departed participant's acknowledgement state."""
        self._document.forget(participant_id)

    def _catch_up(self, participant_id: str, since: int | None) -> CatchUp:
        if since is None:
            content, revision = self.snapshot(participant_id)
            return CatchUp(revision=revision, content=content)

        try:
            operations = self._document.operations_since(since)
        except HistoryTooOldError:
            content, revision = self.snapshot(participant_id)
            return CatchUp(revision=revision, content=content)

        self._document.acknowledge(participant_id, self._document.revision)
        return CatchUp(revision=self._document.revision, operations=operations)

    def _send_snapshot(self, participant_id: str, reason: str) -> int:
        content, revision = self.snapshot(participant_id)
        self._send_to(
            participant_id,
            DocumentSnapshotMessage(document_snapshot=content, revision=revision, reason=reason),
        )
        return revision


__all__ = [
    "CatchUp",
    "DocumentSyncEngine",
    "operation_message",
]
