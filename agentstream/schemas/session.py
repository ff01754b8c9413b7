"""Session lifecycle schemas."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from agentstream.schemas.frames import PermissionMode, SessionStatus


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class SessionResumeMode(StrEnum):
    """How a session is continued."""

    RETRY = "retry"  # resume the same conversation
    RENEW = "renew"  # fresh conversation
    FORK = "fork"  # branch with carried context


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Session(_ApiModel):
    id: str
    task_id: str | None = None
    status: SessionStatus = SessionStatus.QUEUED
    provider_session_id: str | None = None
    resume_mode: SessionResumeMode | None = None  # None on the first attempt
    resumed_from_session_id: str | None = None
    attempt_number: int = 1


class StartSessionRequest(_ApiModel):
    task_id: str
    mode: SessionResumeMode | None = None
    initial_prompt: str | None = None
    agent_id: str | None = None
    permission_mode: PermissionMode | None = None
    model: str | None = None
    files: list[str] | None = None
    disable_web_tools: bool | None = None


class StartSessionResponse(_ApiModel):
    session: Session
    ws_url: str | None = None
