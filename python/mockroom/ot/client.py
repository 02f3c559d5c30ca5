"""
Client-side reconciliation for the edit protocol.

A client keeps at most one operation in flight. Local edits made while
waiting for its acknowledgement are buffered and sent one at a time.
Incoming server operations are transformed past the in-flight and
buffered edits before being applied locally, so every client converges
on the server's history.
"""

from __future__ import annotations

from dataclasses import replace

from .operation import Operation


class DocumentClient:
    """
    Local copy of a room document.

    Example:
        client = DocumentClient("p-1", content="", revision=0)
        op = client.edit(0, 0, "let x=1;")   # send op to the server
        client.acknowledge(1)                # on edit-ack
    """

    def __init__(self, participant_id: str, content: str = "", revision: int = 0):
        self.participant_id = participant_id
        self.content = content
        self.revision = revision
        self._pending: Operation | None = None
        self._buffer: list[Operation] = []

    @property
    def pending(self) -> Operation | None:
        """The operation awaiting acknowledgement, if any."""
        return self._pending

    @property
    def buffered(self) -> list[Operation]:
        """Local edits not sent yet."""
        return list(self._buffer)

    @property
    def synchronized(self) -> bool:
        return self._pending is None and not self._buffer

    def edit(self, start: int, end: int, text: str) -> Operation | None:
        """
        Apply a local edit.

        Returns:
            The operation to send now, or None if it was buffered behind
            an operation still awaiting acknowledgement.
        """
        op = Operation(
            start=start,
            end=end,
            text=text,
            base_revision=self.revision,
            participant_id=self.participant_id,
        )
        self.content = op.apply(self.content)

        if self._pending is None:
            self._pending = op
            return op

        self._buffer.append(op)
        return None

    def acknowledge(self, revision: int) -> Operation | None:
        """
        Handle the acknowledgement of the in-flight operation.

        Returns:
            The next buffered operation to send, rebased on ``revision``.
        """
        if self._pending is None:
            raise RuntimeError("No operation is awaiting acknowledgement")

        self.revision = revision
        self._pending = None

        if not self._buffer:
            return None

        self._pending = replace(self._buffer.pop(0), base_revision=revision)
        return self._pending

    def receive(self, op: Operation) -> Operation | None:
        """
        Apply an operation accepted by the server for another participant.

        Returns:
            The operation as applied to the local copy, or None if it was
            already reflected (e.g. replayed during a session resume).
        """
        if op.revision is not None and op.revision <= self.revision:
            return None

        incoming = op
        if self._pending is not None:
            # Server accepted ``op`` first, so it keeps position priority
            self._pending, incoming = (
                self._pending.transform(incoming, wins=False),
                incoming.transform(self._pending, wins=True),
            )

        rebased = []
        for local in self._buffer:
            rebased.append(local.transform(incoming, wins=False))
            incoming = incoming.transform(local, wins=True)
        self._buffer = rebased

        self.content = incoming.apply(self.content)
        self.revision = op.revision if op.revision is not None else self.revision + 1
        return incoming

    def resume(
        self,
        revision: int,
        operations: list[Operation] | None = None,
        content: str | None = None,
    ) -> Operation | None:
        """
        Apply the catch-up of a resumed session.

        Operations authored by this client acknowledge the in-flight edit;
        the others are received as usual. A snapshot replaces the local
        copy instead.

        Returns:
            The in-flight operation to send again, rebased on the resumed
            revision, or None if nothing is waiting.
        """
        if content is not None:
            self.reset(content, revision)
            return None

        for op in operations or []:
            if op.revision is not None and op.revision <= self.revision:
                continue
            if self._pending is not None and op.participant_id == self.participant_id:
                self.acknowledge(op.revision)
            else:
                self.receive(op)

        if self._pending is None:
            return None

        # Never reached the server: it has been transformed past everything received
        self._pending = replace(self._pending, base_revision=self.revision)
        return self._pending

    def reset(self, content: str, revision: int) -> None:
        """Resynchronize from a snapshot, discarding unsent local edits."""
        self.content = content
        self.revision = revision
        self._pending = None
        self._buffer = []


__all__ = ["DocumentClient"]
