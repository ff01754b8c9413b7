"""Transcript schemas — chat messages, tool commands and session events."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agentstream.schemas.approval import ApprovalRequest


class ToolStatus(StrEnum):
    SUCCESS = "success"
    ERROR = "error"


class ToolCommand(BaseModel):
    """One tool invocation surfaced inline in a message."""
    name: str
    status: ToolStatus = ToolStatus.SUCCESS
    input: dict[str, Any] | None = None


class ChatMessage(BaseModel):
    """A transcript entry.

    ``provisional`` marks entries whose id was generated locally (optimistic
    user prompts, assistant text that arrived without a server id). They are
    reconciled by content once the authoritative entry shows up.
    """

    id: str
    role: Literal["user", "assistant"]
    content: str = ""
    timestamp: datetime | None = None
    commands: list[ToolCommand] | None = None
    provisional: bool = False


class PersistedMessage(BaseModel):
    """A message as returned by the history endpoints."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str
    session_id: str | None = None
    role: Literal["user", "assistant", "system"]
    blocks: list[Any] = Field(default_factory=list)
    timestamp: datetime | None = None
    tool_name: str | None = None
    tool_input: Any = None
    tool_result: str | None = None


class SessionEvent(BaseModel):
    """Outbound event to observers of a session connection."""
    type: str  # connection | output | delta | message | user_message | tool_use | tool_blocked | status | approval_required | diff_preview | error
    content: str = ""
    session_id: str | None = None
    message_id: str | None = None
    message: ChatMessage | None = None
    approval: ApprovalRequest | None = None
    metadata: dict[str, Any] | None = None
