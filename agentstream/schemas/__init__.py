from agentstream.schemas.approval import ApprovalRequest, ApprovalStatus, ToolCategory
from agentstream.schemas.chat import ChatMessage, PersistedMessage, SessionEvent, ToolCommand, ToolStatus
from agentstream.schemas.frames import OutputKind, ServerFrame, SessionStatus
from agentstream.schemas.session import (
    ConnectionState,
    Session,
    SessionResumeMode,
    StartSessionRequest,
    StartSessionResponse,
)

__all__ = [
    "ApprovalRequest",
    "ApprovalStatus",
    "ChatMessage",
    "ConnectionState",
    "OutputKind",
    "PersistedMessage",
    "ServerFrame",
    "Session",
    "SessionEvent",
    "SessionResumeMode",
    "SessionStatus",
    "StartSessionRequest",
    "StartSessionResponse",
    "ToolCategory",
    "ToolCommand",
    "ToolStatus",
]
