"""REST client for the session backend.

Covers the calls the session core needs: starting a session, fetching
persisted history, listing sessions for the renew chain, and the approval
endpoints used as the fallback decision path.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from agentstream.config import settings
from agentstream.errors import GIT_INIT_REQUIRED, ApiError, GitInitRequiredError
from agentstream.schemas.approval import ApprovalRequest
from agentstream.schemas.chat import PersistedMessage
from agentstream.schemas.session import Session, StartSessionRequest, StartSessionResponse

logger = logging.getLogger(__name__)


def _error_from_response(resp: httpx.Response) -> ApiError:
    try:
        body = resp.json()
    except ValueError:
        body = {"error": "Request failed"}
    message = "Request failed"
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        message = body["error"]

    error = ApiError(resp.status_code, message, body)
    if any(w.get("code") == GIT_INIT_REQUIRED for w in error.warnings):
        return GitInitRequiredError(resp.status_code, message, body)
    return error


class ApiClient:
    """Async HTTP client for the backend REST API."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout if timeout is not None else settings.request_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── Core request ─────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> dict[str, Any]:
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        try:
            resp = await self._http.request(method, path, params=params, json=json)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise ApiError(0, str(exc) or type(exc).__name__) from exc

        if resp.is_error:
            raise _error_from_response(resp)
        if resp.status_code == 204 or not resp.content:
            return {}
        return resp.json()

    # ── Sessions ─────────────────────────────────────────────────────

    async def start_session(self, request: StartSessionRequest) -> StartSessionResponse:
        body = request.model_dump(by_alias=True, exclude_none=True, mode="json")
        data = await self._request("POST", "/api/sessions", json=body)
        return StartSessionResponse.model_validate(data)

    async def list_sessions(self, task_id: str, *, limit: int | None = None) -> list[Session]:
        data = await self._request("GET", "/api/sessions", params={"taskId": task_id, "limit": limit})
        return [Session.model_validate(s) for s in data.get("sessions", [])]

    # ── Messages ─────────────────────────────────────────────────────

    async def get_task_messages(
        self,
        task_id: str,
        *,
        session_ids: list[str] | None = None,
        limit: int | None = None,
    ) -> list[PersistedMessage]:
        """Cumulative history for a task, optionally limited to a session chain."""
        params: dict[str, Any] = {"limit": limit or settings.message_fetch_limit}
        if session_ids:
            params["sessionIds"] = ",".join(session_ids)
        data = await self._request("GET", f"/api/tasks/{task_id}/messages", params=params)
        return [PersistedMessage.model_validate(m) for m in data.get("messages", [])]

    async def get_session_messages(self, session_id: str, *, limit: int | None = None) -> list[PersistedMessage]:
        data = await self._request(
            "GET",
            f"/api/sessions/{session_id}/messages",
            params={"limit": limit or settings.message_fetch_limit},
        )
        return [PersistedMessage.model_validate(m) for m in data.get("messages", [])]

    # ── Approvals ────────────────────────────────────────────────────

    async def get_pending_approvals(self, session_id: str) -> list[ApprovalRequest]:
        data = await self._request("GET", f"/api/approvals/session/{session_id}/pending")
        return [ApprovalRequest.model_validate(a) for a in data.get("approvals", [])]

    async def approve_request(self, request_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/api/approvals/{request_id}/approve", json={"decidedBy": "user"})

    async def reject_request(self, request_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/api/approvals/{request_id}/reject", json={"decidedBy": "user"})
