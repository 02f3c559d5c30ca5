"""
Revisioned shared document.

The document is fully determined by its operation log: replaying the
retained operations on top of the compaction checkpoint reproduces the
current content exactly.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import replace
from itertools import islice

from ..errors import HistoryTooOldError, MalformedOperationError
from .operation import Operation

logger = logging.getLogger(__name__)


class Document:
    """
    A text document mutated only through :meth:`accept`.

    Accepted operations get consecutive revision numbers. Operations
    composed against an older revision are transformed against every
    operation accepted since, as long as that revision is still inside
    the retained history window.
    """

    def __init__(
        self,
        content: str = "",
        history_limit: int | None = None,
        max_length: int | None = None,
    ):
        """
        Initialize a document.

        Args:
            content: Initial text at revision 0.
            history_limit: Number of accepted operations to retain for
                transformation (None keeps everything).
            max_length: Maximum document length in characters.
        """
        if history_limit is not None and history_limit < 1:
            raise ValueError("history_limit must be at least 1")

        self._content = content
        self._revision = 0
        self._log: deque[Operation] = deque()
        self._history_limit = history_limit
        self._max_length = max_length

        # Content and revision the retained log starts from
        self._checkpoint_content = content
        self._checkpoint_revision = 0

        # participant_id -> last revision the participant is known to have
        self._acknowledged: dict[str, int] = {}

    @property
    def content(self) -> str:
        return self._content

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def oldest_revision(self) -> int:
        """Oldest base revision an incoming operation may still reference."""
        return self._checkpoint_revision

    @property
    def history(self) -> list[Operation]:
        """Retained accepted operations, oldest first."""
        return list(self._log)

    def accept(self, op: Operation) -> Operation:
        """
        Accept an operation and return it as applied.

        The returned operation carries the assigned ``revision`` and is
        expressed against ``revision - 1``.

        Raises:
            HistoryTooOldError: The base revision is no longer retained.
            MalformedOperationError: The base revision is in the future,
                or the range does not fit the document.
        """
        if op.base_revision > self._revision:
            raise MalformedOperationError(
                f"Base revision {op.base_revision} is ahead of the document.",
                {"baseRevision": op.base_revision, "revision": self._revision},
            )
        if op.base_revision < self.oldest_revision:
            raise HistoryTooOldError(
                f"Base revision {op.base_revision} is older than the retained history.",
                {
                    "baseRevision": op.base_revision,
                    "oldestRevision": self.oldest_revision,
                    "revision": self._revision,
                },
            )
        if op.start < 0 or op.end < op.start:
            raise MalformedOperationError(
                f"Invalid range [{op.start}, {op.end}).",
                {"range": [op.start, op.end]},
            )

        transformed = op
        for applied in self._operations_after(op.base_revision):
            transformed = transformed.transform(applied)

        if transformed.end > len(self._content):
            raise MalformedOperationError(
                f"Range [{op.start}, {op.end}) is outside the document.",
                {"range": [op.start, op.end], "length": len(self._content)},
            )

        content = transformed.apply(self._content)
        if self._max_length is not None and len(content) > self._max_length:
            raise MalformedOperationError(
                f"Document would exceed {self._max_length} characters.",
                {"maxLength": self._max_length},
            )

        self._revision += 1
        accepted = replace(transformed, base_revision=self._revision - 1, revision=self._revision)
        self._content = content
        self._log.append(accepted)
        self._compact()

        if accepted.participant_id is not None:
            self.acknowledge(accepted.participant_id, accepted.revision)

        return accepted

    def operations_since(self, revision: int) -> list[Operation]:
        """
        Get accepted operations with a revision greater than ``revision``.

        Raises:
            HistoryTooOldError: Some of those operations are no longer retained.
        """
        if revision < self.oldest_revision:
            raise HistoryTooOldError(
                f"Revision {revision} is older than the retained history.",
                {"revision": revision, "oldestRevision": self.oldest_revision},
            )
        return list(self._operations_after(min(revision, self._revision)))

    def acknowledge(self, participant_id: str, revision: int) -> None:
        """Record that a participant has observed ``revision``."""
        revision = min(revision, self._revision)
        current = self._acknowledged.get(participant_id, 0)
        self._acknowledged[participant_id] = max(current, revision)

    def last_acknowledged(self, participant_id: str) -> int:
        """Last revision the participant is known to have (0 if unknown)."""
        return self._acknowledged.get(participant_id, 0)

    def forget(self, participant_id: str) -> None:
        """Drop acknowledgement state for a participant."""
        self._acknowledged.pop(participant_id, None)

    def replay(self) -> str:
        """Rebuild the content from the checkpoint and the retained log."""
        content = self._checkpoint_content
        for op in self._log:
            content = op.apply(content)
        return content

    def _operations_after(self, revision: int):
        return islice(self._log, revision - self._checkpoint_revision, None)

    def _compact(self) -> None:
        """Fold operations beyond the history window into the checkpoint."""
        if self._history_limit is None or len(self._log) <= self._history_limit:
            return
        while len(self._log) > self._history_limit:
            op = self._log.popleft()
            self._checkpoint_content = op.apply(self._checkpoint_content)
            self._checkpoint_revision = op.revision
        logger.debug(f"History window now starts at revision {self._checkpoint_revision}")


__all__ = ["Document"]
