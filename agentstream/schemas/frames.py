"""Wire frames exchanged over the session socket.

Inbound frames form a union discriminated on ``type``; the ``output`` frame
carries its own sub-kind in ``data.type``. Field names are snake_case in
Python and camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agentstream.schemas.approval import ToolCategory


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SessionStatus(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED)


class OutputKind(StrEnum):
    TEXT = "text"
    MESSAGE = "message"
    TOOL_USE = "tool_use"
    DELTA = "delta"
    STREAMING_BUFFER = "streaming_buffer"
    USER_MESSAGE_SAVED = "user_message_saved"
    TOOL_BLOCKED = "tool_blocked"
    MESSAGE_COMPLETE = "message_complete"
    STREAM_EVENT = "stream_event"
    # Forwarded to observers, no transcript effect
    TOOL_RESULT = "tool_result"
    THINKING = "thinking"
    USAGE = "usage"
    RESULT = "result"
    SYSTEM = "system"


# ── Server → client ──────────────────────────────────────────────────


class OutputData(WireModel):
    """Inner payload of an ``output`` frame.

    Every field past ``type`` is optional; which ones are present depends on
    the sub-kind, and the agent process adds keys of its own.
    """

    model_config = ConfigDict(extra="allow")

    type: str = ""
    content: Any = None
    tool: dict[str, Any] | None = None
    message_id: str | None = None
    text: str | None = None
    offset: int | None = None
    status: str | None = None
    role: str | None = None
    model: str | None = None
    timestamp: Any = None
    # tool_blocked
    tool_name: str | None = None
    reason: str | None = None
    severity: str | None = None


class OutputFrame(WireModel):
    type: Literal["output"] = "output"
    data: OutputData | list[Any]


class StatusFrame(WireModel):
    type: Literal["status"] = "status"
    status: SessionStatus


class ApprovalRequiredData(WireModel):
    request_id: str
    tool_name: str
    tool_input: dict[str, Any] = Field(default_factory=dict)
    category: ToolCategory = ToolCategory.REQUIRES_APPROVAL
    timeout_at: datetime


class ApprovalRequiredFrame(WireModel):
    type: Literal["approval_required"] = "approval_required"
    data: ApprovalRequiredData


class DiffPreviewData(WireModel):
    id: str
    file_path: str
    operation: Literal["edit", "write", "delete"]
    content: str = ""


class DiffPreviewFrame(WireModel):
    type: Literal["diff_preview"] = "diff_preview"
    data: DiffPreviewData


class ErrorFrame(WireModel):
    type: Literal["error"] = "error"
    message: str = ""


ServerFrame = Annotated[
    OutputFrame | StatusFrame | ApprovalRequiredFrame | DiffPreviewFrame | ErrorFrame,
    Field(discriminator="type"),
]

SERVER_FRAME_TYPES = frozenset(
    {"output", "status", "approval_required", "diff_preview", "error"}
)


# ── Client → server ──────────────────────────────────────────────────


PermissionMode = Literal["default", "acceptEdits", "bypassPermissions"]


class UserInputCommand(WireModel):
    type: Literal["user_input"] = "user_input"
    content: str
    model: str | None = None
    permission_mode: PermissionMode | None = None
    files: list[str] | None = None
    disable_web_tools: bool | None = None


class CancelCommand(WireModel):
    type: Literal["cancel"] = "cancel"


class ApprovalResponseCommand(WireModel):
    type: Literal["approval_response"] = "approval_response"
    request_id: str
    approved: bool


ClientCommand = UserInputCommand | CancelCommand | ApprovalResponseCommand


def encode_command(command: ClientCommand) -> str:
    """Serialise an outbound command to its JSON wire form."""
    return command.model_dump_json(by_alias=True, exclude_none=True)
