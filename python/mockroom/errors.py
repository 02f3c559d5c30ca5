"""
Error taxonomy for interview-room sessions.

Every error here is recoverable: the gateway reports it to the originating
connection as an ``error`` event and keeps the connection open.
"""

from __future__ import annotations

from typing import Any

from .protocol import ErrorCode, ErrorMessage


class SessionError(Exception):
    """Base class for errors reported back to a client."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_message(self) -> ErrorMessage:
        """Convert to the wire error event."""
        return ErrorMessage(code=self.code.value, message=self.message, details=self.details)


class RoomFullError(SessionError):
    """The room already holds the configured maximum of participants."""

    code = ErrorCode.ROOM_FULL


class NotJoinedError(SessionError):
    """A room-scoped event arrived on a connection that has not joined a room."""

    code = ErrorCode.NOT_JOINED


class AlreadyJoinedError(SessionError):
    """The connection is already bound to a participant."""

    code = ErrorCode.ALREADY_JOINED


class HistoryTooOldError(SessionError):
    """The operation's base revision is older than the retained history window."""

    code = ErrorCode.HISTORY_TOO_OLD


class UnknownParticipantError(SessionError):
    """The referenced participant is not a member of the room."""

    code = ErrorCode.UNKNOWN_PARTICIPANT


class MalformedOperationError(SessionError):
    """The operation's range or base revision does not fit the document."""

    code = ErrorCode.MALFORMED_OPERATION


class ResumeRejectedError(SessionError):
    """The session cannot be resumed (evicted, unknown, or bad token)."""

    code = ErrorCode.RESUME_REJECTED


class InvalidMessageError(SessionError):
    """A well-formed event whose content breaks a configured limit."""

    code = ErrorCode.INVALID_MESSAGE


__all__ = [
    "SessionError",
    "RoomFullError",
    "NotJoinedError",
    "AlreadyJoinedError",
    "HistoryTooOldError",
    "UnknownParticipantError",
    "MalformedOperationError",
    "ResumeRejectedError",
    "InvalidMessageError",
]
