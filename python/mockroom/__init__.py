"""
Mockroom - Real-time session layer for collaborative interview rooms.
"""

from mockroom.ot import Operation, Document, DocumentClient, transform
from mockroom.errors import (
    SessionError,
    RoomFullError,
    NotJoinedError,
    AlreadyJoinedError,
    HistoryTooOldError,
    UnknownParticipantError,
    MalformedOperationError,
    ResumeRejectedError,
    InvalidMessageError,
)
from mockroom.config import Settings, get_settings

# Protocol message types
from mockroom.protocol import (
    ParticipantRole,
    ConnectionState,
    SignalKind,
    ParticipantView,
    # Client messages
    JoinRoomMessage,
    ResumeSessionMessage,
    LeaveRoomMessage,
    EditMessage,
    SignalMessage,
    ChatSendMessage,
    SyncRequestMessage,
    PingMessage,
    ClientMessage,
    # Server messages
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
    ServerMessage,
    ErrorCode,
    parse_client_message,
    parse_server_message,
)

# Sessions
from mockroom.registry import (
    Participant,
    ParticipantInfo,
    Room,
    RoomSnapshot,
    SessionRegistry,
)
from mockroom.sync import DocumentSyncEngine
from mockroom.presence import PresenceCoordinator, SignalingEnvelope
from mockroom.chat import ChatLog, ChatMessage, ChatRelay

# Gateway
from mockroom.gateway import SessionGateway

__version__ = "0.1.0"

__all__ = [
    # Operational transform
    "Operation",
    "Document",
    "DocumentClient",
    "transform",
    # Errors
    "SessionError",
    "RoomFullError",
    "NotJoinedError",
    "AlreadyJoinedError",
    "HistoryTooOldError",
    "UnknownParticipantError",
    "MalformedOperationError",
    "ResumeRejectedError",
    "InvalidMessageError",
    # Configuration
    "Settings",
    "get_settings",
    # Protocol - shared
    "ParticipantRole",
    "ConnectionState",
    "SignalKind",
    "ParticipantView",
    # Protocol - Client messages
    "JoinRoomMessage",
    "ResumeSessionMessage",
    "LeaveRoomMessage",
    "EditMessage",
    "SignalMessage",
    "ChatSendMessage",
    "SyncRequestMessage",
    "PingMessage",
    "ClientMessage",
    # Protocol - Server messages
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
    "ErrorCode",
    # Protocol - Parsing
    "parse_client_message",
    "parse_server_message",
    # Sessions
    "Participant",
    "ParticipantInfo",
    "Room",
    "RoomSnapshot",
    "SessionRegistry",
    "DocumentSyncEngine",
    "PresenceCoordinator",
    "SignalingEnvelope",
    "ChatLog",
    "ChatMessage",
    "ChatRelay",
    # Gateway
    "SessionGateway",
]
