"""Approval request schemas."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class ToolCategory(StrEnum):
    SAFE = "safe"
    REQUIRES_APPROVAL = "requires-approval"
    DANGEROUS = "dangerous"


class ApprovalStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalRequest(BaseModel):
    """A gated tool invocation awaiting an explicit decision."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str
    session_id: str
    tool_name: str
    tool_input: dict[str, Any] = Field(default_factory=dict)
    category: ToolCategory = ToolCategory.REQUIRES_APPROVAL
    status: ApprovalStatus = ApprovalStatus.PENDING
    timeout_at: datetime
    decided_at: datetime | None = None
    decided_by: str | None = None
    created_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_api_shape(cls, data: Any) -> Any:
        # REST returns {payload: {toolName, toolInput}, toolCategory}
        if not isinstance(data, dict):
            return data
        payload = data.get("payload")
        if isinstance(payload, dict):
            data = {**data}
            data.setdefault("toolName", payload.get("toolName", ""))
            data.setdefault("toolInput", payload.get("toolInput") or {})
        if "toolCategory" in data and "category" not in data:
            data = {**data, "category": data["toolCategory"]}
        return data

    @property
    def is_terminal(self) -> bool:
        return self.status != ApprovalStatus.PENDING
