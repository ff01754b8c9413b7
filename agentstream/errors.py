"""Exception types raised across the session client."""

from __future__ import annotations

from typing import Any

GIT_INIT_REQUIRED = "GIT_INIT_REQUIRED"


class AgentStreamError(Exception):
    """Base class for every error this package raises."""


class ApiError(AgentStreamError):
    """A REST call returned a non-2xx response or never reached the server.

    ``status_code`` is 0 for transport failures. ``details`` keeps the parsed
    error body so callers can inspect its ``warnings`` array.
    """

    def __init__(self, status_code: int, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.details = details

    @property
    def warnings(self) -> list[dict[str, Any]]:
        if isinstance(self.details, dict):
            raw = self.details.get("warnings")
            if isinstance(raw, list):
                return [w for w in raw if isinstance(w, dict)]
        return []


class GitInitRequiredError(ApiError):
    """Session start refused until the task's working directory is a git repo."""


class ApprovalDecisionError(AgentStreamError):
    """Both delivery paths for an approval decision failed.

    The request has been put back into the pending set.
    """

    def __init__(self, request_id: str, approved: bool, cause: Exception) -> None:
        verb = "approve" if approved else "reject"
        super().__init__(f"Failed to {verb} {request_id}: {cause}")
        self.request_id = request_id
        self.approved = approved
        self.cause = cause
