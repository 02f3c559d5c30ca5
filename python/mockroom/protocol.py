"""
WebSocket protocol message types for interview-room sessions.

Defines all client and server events using Pydantic models for
validation and serialization. Python attributes are snake_case; the
wire format is camelCase and both spellings are accepted on input.
"""

from __future__ import annotations

import json as _json
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Maximum lengths for string fields to prevent DoS
MAX_ID_LENGTH = 256
MAX_ROOM_CODE_LENGTH = 64
MAX_NAME_LENGTH = 128
MAX_INSERT_LENGTH = 1024 * 256  # 256KB of text per edit
MAX_CHAT_LENGTH = 1024 * 16
MAX_PAYLOAD_DEPTH = 5
MAX_SIGNAL_PAYLOAD_SIZE = 1024 * 64  # SDP blobs can be large


def _estimate_size(v: Any) -> int:
    """Estimate the serialized size of a value."""
    try:
        return len(_json.dumps(v))
    except (TypeError, ValueError):
        return 0


def _validate_payload(
    v: Any, field_name: str = "payload", depth: int = 0, max_size: int = MAX_SIGNAL_PAYLOAD_SIZE
) -> Any:
    """Recursively check nesting depth, key types and total size of an opaque payload."""
    if depth > MAX_PAYLOAD_DEPTH:
        raise ValueError(f"Maximum nesting depth ({MAX_PAYLOAD_DEPTH}) exceeded in {field_name}")

    # Check size at top level only to avoid repeated serialization
    if depth == 0 and max_size > 0:
        size = _estimate_size(v)
        if size > max_size:
            raise ValueError(f"Value too large ({size} bytes, max {max_size}) in {field_name}")

    # Payloads are forwarded verbatim to browsers
    DANGEROUS_KEYS = {"__proto__", "constructor", "prototype"}

    if isinstance(v, dict):
        for key in v.keys():
            if not isinstance(key, str):
                raise ValueError(f"Non-string key not allowed in {field_name}")
            if key in DANGEROUS_KEYS:
                raise ValueError(f"Dangerous key '{key}' not allowed in {field_name}")
            _validate_payload(v[key], f"{field_name}.{key}", depth + 1, max_size=0)
    elif isinstance(v, list):
        for i, item in enumerate(v):
            _validate_payload(item, f"{field_name}[{i}]", depth + 1, max_size=0)
    return v


class WireModel(BaseModel):
    """Base model with camelCase wire names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Dump to a JSON-ready dict using wire (camelCase) names."""
        return self.model_dump(by_alias=True, mode="json")


# =============================================================================
# Shared enums and views
# =============================================================================


class ParticipantRole(str, Enum):
    """Informational role of a participant; not an access-control boundary."""

    HOST = "host"
    CANDIDATE = "candidate"


class ConnectionState(str, Enum):
    """Connection state of a participant."""

    CONNECTED = "connected"
    DISCONNECTED_PENDING_REJOIN = "disconnected-pending-rejoin"


class SignalKind(str, Enum):
    """WebRTC negotiation payload kinds."""

    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"


class ParticipantView(WireModel):
    """Public view of a participant as seen by other room members."""

    participant_id: str
    display_name: str
    role: ParticipantRole
    state: ConnectionState


# =============================================================================
# Client Message Types
# =============================================================================


class JoinRoomMessage(WireModel):
    """Client asks to join (or create) a room."""

    type: Literal["join-room"] = "join-room"
    room_code: str = Field(..., min_length=1, max_length=MAX_ROOM_CODE_LENGTH)
    display_name: str = Field(..., min_length=1, max_length=MAX_NAME_LENGTH)
    role: Optional[ParticipantRole] = None

    @field_validator("room_code", "display_name")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Value must not be blank")
        return v


class ResumeSessionMessage(WireModel):
    """Client reconnects and asks to resume a participant inside the grace window."""

    type: Literal["resume-session"] = "resume-session"
    participant_id: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)
    resume_token: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)
    last_chat_sequence: int = Field(0, ge=0)
    # Last document revision the client applied; without it the client gets a snapshot
    last_revision: Optional[int] = Field(None, ge=0)


class LeaveRoomMessage(WireModel):
    """Client leaves its room."""

    type: Literal["leave-room"] = "leave-room"


class EditMessage(WireModel):
    """Client submits an editor operation composed against ``base_revision``."""

    type: Literal["edit"] = "edit"
    base_revision: int = Field(..., ge=0)
    range: Tuple[int, int]
    inserted_text: str = Field("", max_length=MAX_INSERT_LENGTH)


class SignalMessage(WireModel):
    """Client sends a WebRTC signaling payload to one peer."""

    type: Literal["signal"] = "signal"
    to: str = Field(..., min_length=1, max_length=MAX_ID_LENGTH)
    kind: SignalKind
    payload: Any = None

    @field_validator("payload")
    @classmethod
    def validate_signal_payload(cls, v: Any) -> Any:
        return _validate_payload(v, "payload")


class ChatSendMessage(WireModel):
    """Client posts a chat message to its room."""

    type: Literal["chat-send"] = "chat-send"
    text: str = Field(..., min_length=1, max_length=MAX_CHAT_LENGTH)

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Chat message must not be blank")
        return v


class SyncRequestMessage(WireModel):
    """Client asks for a fresh document snapshot."""

    type: Literal["sync-request"] = "sync-request"


class PingMessage(WireModel):
    """Keepalive ping (sent by either side)."""

    type: Literal["ping"] = "ping"
    timestamp: Optional[float] = None


# Union of all client message types
ClientMessage = Union[
    JoinRoomMessage,
    ResumeSessionMessage,
    LeaveRoomMessage,
    EditMessage,
    SignalMessage,
    ChatSendMessage,
    SyncRequestMessage,
    PingMessage,
]


# =============================================================================
# Server Message Types
# =============================================================================


class OperationAppliedMessage(WireModel):
    """Server broadcasts an accepted operation with its assigned revision."""

    type: Literal["operation-applied"] = "operation-applied"
    revision: int
    participant_id: Optional[str] = None
    range: Tuple[int, int]
    inserted_text: str


class ChatMessageBroadcast(WireModel):
    """Server fans out a chat message with its room sequence number."""

    type: Literal["chat-message"] = "chat-message"
    room_code: str
    sequence: int
    participant_id: str
    display_name: str
    text: str
    timestamp: float


class RoomJoinedMessage(WireModel):
    """Server acknowledges a join with the room snapshot."""

    type: Literal["room-joined"] = "room-joined"
    room_code: str
    participant_id: str
    resume_token: str
    role: ParticipantRole
    document_snapshot: str
    revision: int
    participants: List[ParticipantView]
    chat_history: List[ChatMessageBroadcast] = Field(default_factory=list)


class SessionResumedMessage(WireModel):
    """Server acknowledges a resumed session.

    Carries either the operations since the revision the client reported
    or, when it reported none or those are no longer retained, a full
    document snapshot.
    """

    type: Literal["session-resumed"] = "session-resumed"
    room_code: str
    participant_id: str
    revision: int
    operations: Optional[List[OperationAppliedMessage]] = None
    document_snapshot: Optional[str] = None
    participants: List[ParticipantView]
    chat_history: List[ChatMessageBroadcast] = Field(default_factory=list)


class RoomLeftMessage(WireModel):
    """Server acknowledges an explicit leave."""

    type: Literal["room-left"] = "room-left"
    room_code: str


class PresenceJoinedMessage(WireModel):
    """Server notifies that a participant joined the room."""

    type: Literal["presence-joined"] = "presence-joined"
    room_code: str
    participant: ParticipantView


class PresenceLeftMessage(WireModel):
    """Server notifies that a participant left the room."""

    type: Literal["presence-left"] = "presence-left"
    room_code: str
    participant_id: str


class PresenceStateMessage(WireModel):
    """Server notifies that a participant's connection state changed."""

    type: Literal["presence-state"] = "presence-state"
    room_code: str
    participant_id: str
    state: ConnectionState


class EditAckMessage(WireModel):
    """Server acknowledges the author's edit with its final revision."""

    type: Literal["edit-ack"] = "edit-ack"
    accepted_revision: int


class DocumentSnapshotMessage(WireModel):
    """Server sends the full document; the client discards its local buffer."""

    type: Literal["document-snapshot"] = "document-snapshot"
    document_snapshot: str
    revision: int
    reason: Literal["requested", "history_too_old"] = "requested"


class SignalReceivedMessage(WireModel):
    """Server forwards a signaling payload verbatim to its target."""

    type: Literal["signal-received"] = "signal-received"
    from_participant: str = Field(..., alias="from")
    kind: SignalKind
    payload: Any = None


class ErrorMessage(WireModel):
    """Server reports a recoverable error to the originating connection."""

    type: Literal["error"] = "error"
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class PongMessage(WireModel):
    """Server responds to ping."""

    type: Literal["pong"] = "pong"
    timestamp: float


# Union of all server message types
ServerMessage = Union[
    RoomJoinedMessage,
    SessionResumedMessage,
    RoomLeftMessage,
    PresenceJoinedMessage,
    PresenceLeftMessage,
    PresenceStateMessage,
    EditAckMessage,
    OperationAppliedMessage,
    DocumentSnapshotMessage,
    SignalReceivedMessage,
    ChatMessageBroadcast,
    ErrorMessage,
    PongMessage,
    PingMessage,
]


# =============================================================================
# Error Codes
# =============================================================================


class ErrorCode(str, Enum):
    """Standard error codes for the protocol."""

    ROOM_FULL = "room_full"
    NOT_JOINED = "not_joined"
    ALREADY_JOINED = "already_joined"
    HISTORY_TOO_OLD = "history_too_old"
    UNKNOWN_PARTICIPANT = "unknown_participant"
    MALFORMED_OPERATION = "malformed_operation"
    RESUME_REJECTED = "resume_rejected"
    INVALID_MESSAGE = "invalid_message"
    RATE_LIMITED = "rate_limited"
    INTERNAL_ERROR = "internal_error"


# =============================================================================
# Message Parsing
# =============================================================================


_CLIENT_TYPES: Dict[str, type] = {
    "join-room": JoinRoomMessage,
    "resume-session": ResumeSessionMessage,
    "leave-room": LeaveRoomMessage,
    "edit": EditMessage,
    "signal": SignalMessage,
    "chat-send": ChatSendMessage,
    "sync-request": SyncRequestMessage,
    "ping": PingMessage,
}

_SERVER_TYPES: Dict[str, type] = {
    "room-joined": RoomJoinedMessage,
    "session-resumed": SessionResumedMessage,
    "room-left": RoomLeftMessage,
    "presence-joined": PresenceJoinedMessage,
    "presence-left": PresenceLeftMessage,
    "presence-state": PresenceStateMessage,
    "edit-ack": EditAckMessage,
    "operation-applied": OperationAppliedMessage,
    "document-snapshot": DocumentSnapshotMessage,
    "signal-received": SignalReceivedMessage,
    "chat-message": ChatMessageBroadcast,
    "error": ErrorMessage,
    "pong": PongMessage,
    "ping": PingMessage,
}


def parse_client_message(data: Dict[str, Any]) -> ClientMessage:
    """
    Parse a raw dictionary into a typed client message.

    Raises:
        ValueError: If the message type is unknown or invalid.
    """
    if not isinstance(data, dict):
        raise ValueError("Message must be a JSON object")

    msg_type = data.get("type")
    if msg_type not in _CLIENT_TYPES:
        raise ValueError(f"Unknown message type: {msg_type}")

    return _CLIENT_TYPES[msg_type].model_validate(data)


def parse_server_message(data: Dict[str, Any]) -> ServerMessage:
    """
    Parse a raw dictionary into a typed server message.

    Raises:
        ValueError: If the message type is unknown or invalid.
    """
    msg_type = data.get("type")
    if msg_type not in _SERVER_TYPES:
        raise ValueError(f"Unknown message type: {msg_type}")

    return _SERVER_TYPES[msg_type].model_validate(data)


__all__ = [
    "WireModel",
    # Enums and views
    "ParticipantRole",
    "ConnectionState",
    "SignalKind",
    "ParticipantView",
    # Client messages
    "JoinRoomMessage",
    "ResumeSessionMessage",
    "LeaveRoomMessage",
    "EditMessage",
    "SignalMessage",
    "ChatSendMessage",
    "SyncRequestMessage",
    "PingMessage",
    "ClientMessage",
    # Server messages
    "RoomJoinedMessage",
    "SessionResumedMessage",
    "RoomLeftMessage",
    "PresenceJoinedMessage",
    "PresenceLeftMessage",
    "PresenceStateMessage",
    "EditAckMessage",
    "OperationAppliedMessage",
    "DocumentSnapshotMessage",
    "SignalReceivedMessage",
    "ChatMessageBroadcast",
    "ErrorMessage",
    "PongMessage",
    "ServerMessage",
    # Error codes
    "ErrorCode",
    # Parsing functions
    "parse_client_message",
    "parse_server_message",
]
