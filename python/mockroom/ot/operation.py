"""
Text operations and their transformation rules.

An operation replaces the range ``[start, end)`` of a document with
``text``. Pure insertions have ``start == end``; pure deletions have an
empty ``text``. Two operations composed against the same document can be
rewritten so that either applies after the other (operational transform):

    applied . transform(op, applied, w) == op . transform(applied, op, not w)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any


@dataclass(frozen=True)
class Operation:
    """
    A single edit to the shared document.

    Operations are immutable. ``base_revision`` is the revision the edit
    was composed against; ``revision`` is assigned when the server
    accepts it and stays ``None`` until then.
    """
    start: int
    end: int
    text: str = ""
    base_revision: int = 0
    participant_id: str | None = None
    revision: int | None = None

    @property
    def is_insert(self) -> bool:
        """True if the operation deletes nothing."""
        return self.start == self.end

    @property
    def delta(self) -> int:
        """Change in document length caused by this operation."""
        return len(self.text) - (self.end - self.start)

    def apply(self, content: str) -> str:
        """Apply the operation to ``content`` and return the new text."""
        if self.start < 0 or self.end < self.start or self.end > len(content):
            raise ValueError(
                f"Range [{self.start}, {self.end}) outside document of length {len(content)}"
            )
        return content[: self.start] + self.text + content[self.end :]

    def transform(self, applied: "Operation", wins: bool = False) -> "Operation":
        """Rewrite this operation to apply after ``applied``. See :func:`transform`."""
        return transform(self, applied, wins)

    def to_dict(self) -> dict[str, Any]:
        """Serialize operation to dictionary."""
        return {
            "start": self.start,
            "end": self.end,
            "text": self.text,
            "base_revision": self.base_revision,
            "participant_id": self.participant_id,
            "revision": self.revision,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Operation":
        """Deserialize operation from dictionary."""
        return cls(
            start=data["start"],
            end=data["end"],
            text=data.get("text", ""),
            base_revision=data.get("base_revision", 0),
            participant_id=data.get("participant_id"),
            revision=data.get("revision"),
        )


def transform(op: Operation, applied: Operation, wins: bool = False) -> Operation:
    """
    Rewrite ``op`` so it applies to the document after ``applied``.

    Both operations must have been composed against the same document.
    ``wins`` decides which inserted text comes first when the two
    operations start at the same offset; the server always passes
    ``False`` because the already-accepted operation has priority.

    Rules:
    - two insertions at one offset: the winner's text goes first
    - ``op`` ends at or before ``applied`` starts: unchanged (an insertion
      at the start of a replaced range stays in front of it)
    - ``op`` starts at or after ``applied`` ends: shifted by ``applied.delta``
    - overlapping ranges: the union of both ranges is deleted and both
      inserted texts survive, the earlier-starting one first
    """
    xs, xe = op.start, op.end
    ys, ye, yt = applied.start, applied.end, applied.text

    if xs == xe == ys == ye:
        if wins:
            return op
        return replace(op, start=xs + len(yt), end=xe + len(yt))

    if xe <= ys:
        return op

    if xs >= ye:
        return replace(op, start=xs + applied.delta, end=xe + applied.delta)

    op_first = xs < ys or (xs == ys and wins)
    if not op_first:
        # applied's text leads the merged region; delete whatever of op's
        # range survives past applied's end
        start = ys + len(yt)
        return replace(op, start=start, end=start + max(0, xe - ye))

    if xe <= ye:
        return replace(op, start=xs, end=ys)

    # op strictly covers applied: one contiguous range cannot delete the
    # text on both sides of applied's insert, so re-insert it
    return replace(op, start=xs, end=xe + applied.delta, text=op.text + yt)


__all__ = ["Operation", "transform"]
