"""Approval service — track and resolve gated tool requests for a session."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from agentstream.adapters.api_client import ApiClient
from agentstream.adapters.base import SessionTransport
from agentstream.config import settings
from agentstream.errors import ApiError, ApprovalDecisionError
from agentstream.schemas.approval import ApprovalRequest, ApprovalStatus

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class ApprovalFlowManager:
    """Pending approval requests, their deadlines and decision delivery.

    Requests move only from pending to approved/rejected. Decided requests
    are remembered so a replayed ``approval_required`` frame cannot revive
    them.
    """

    def __init__(
        self,
        transport: SessionTransport,
        api: ApiClient,
        *,
        is_session_live: Callable[[], bool] | None = None,
    ) -> None:
        self._transport = transport
        self._api = api
        self._is_session_live = is_session_live or (lambda: True)
        self._pending: dict[str, ApprovalRequest] = {}
        self._decided: dict[str, ApprovalRequest] = {}
        # Popped from pending while a decision is on the wire
        self._deciding: dict[str, ApprovalRequest] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    @property
    def pending(self) -> list[ApprovalRequest]:
        return list(self._pending.values())

    def get(self, request_id: str) -> ApprovalRequest | None:
        return (
            self._pending.get(request_id)
            or self._deciding.get(request_id)
            or self._decided.get(request_id)
        )

    # ── Intake ───────────────────────────────────────────────────────

    def register(self, request: ApprovalRequest) -> ApprovalRequest | None:
        """Track a new request. Returns None for one already known."""
        if request.id in self._decided:
            logger.debug("Ignoring approval %s: already %s", request.id, self._decided[request.id].status)
            return None
        if request.id in self._pending:
            return None
        if request.id in self._deciding:
            logger.debug("Ignoring approval %s: decision in flight", request.id)
            return None
        if request.is_terminal:
            self._decided[request.id] = request
            return None

        self._pending[request.id] = request
        self._arm_timer(request)
        logger.info("Approval %s pending for %s (deadline %s)", request.id, request.tool_name, request.timeout_at)
        return request

    async def load_pending(self, session_id: str) -> list[ApprovalRequest]:
        """Pull requests raised before this client connected."""
        requests = await self._api.get_pending_approvals(session_id)
        return [r for r in map(self.register, requests) if r is not None]

    # ── Decisions ────────────────────────────────────────────────────

    async def decide(self, request_id: str, approved: bool) -> ApprovalRequest | None:
        request = self._pending.pop(request_id, None)
        if request is None:
            return None
        self._cancel_timer(request_id)
        self._deciding[request_id] = request
        try:
            await self._deliver(request, approved)
        finally:
            self._deciding.pop(request_id, None)
        return self._resolve(request, approved, decided_by="user")

    async def _deliver(self, request: ApprovalRequest, approved: bool) -> None:
        sent = False
        same_session = not request.session_id or request.session_id == self._transport.session_id
        if self._transport.is_connected and same_session and self._is_session_live():
            sent = await self._transport.send_approval_response(request.id, approved)
        if sent:
            return

        try:
            if approved:
                await self._api.approve_request(request.id)
            else:
                await self._api.reject_request(request.id)
        except ApiError as exc:
            logger.warning("Approval %s fallback failed: %s", request.id, exc)
            self._pending[request.id] = request
            self._arm_timer(request)
            raise ApprovalDecisionError(request.id, approved, exc) from exc

    async def approve(self, request_id: str) -> ApprovalRequest | None:
        return await self.decide(request_id, True)

    async def reject(self, request_id: str) -> ApprovalRequest | None:
        return await self.decide(request_id, False)

    def _resolve(
        self, request: ApprovalRequest, approved: bool, *, decided_by: str, now: datetime | None = None,
    ) -> ApprovalRequest:
        decided = request.model_copy(update={
            "status": ApprovalStatus.APPROVED if approved else ApprovalStatus.REJECTED,
            "decided_at": now or datetime.now(UTC),
            "decided_by": decided_by,
        })
        self._pending.pop(request.id, None)
        self._cancel_timer(request.id)
        self._decided[request.id] = decided
        return decided

    # ── Deadlines ────────────────────────────────────────────────────

    def expire_overdue(self, now: datetime | None = None) -> list[ApprovalRequest]:
        """Resolve every pending request whose deadline has passed.

        The outcome follows ``settings.approval_timeout_action``. Nothing is
        sent; the server gate applies the same deadline on its side.
        """
        now = now or datetime.now(UTC)
        approved = settings.approval_timeout_action == "approve"
        expired = []
        for request_id, request in list(self._pending.items()):
            if _as_utc(request.timeout_at) > now:
                continue
            del self._pending[request_id]
            self._cancel_timer(request_id)
            expired.append(self._resolve(request, approved, decided_by="timeout", now=now))
            logger.info("Approval %s timed out, treated as %s", request_id, settings.approval_timeout_action)
        return expired

    def _arm_timer(self, request: ApprovalRequest) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; approval %s expires on the next poll", request.id)
            return
        delay = (_as_utc(request.timeout_at) - datetime.now(UTC)).total_seconds()
        self._cancel_timer(request.id)
        self._timers[request.id] = loop.call_at(
            loop.time() + max(delay, 0.0), self._on_deadline, request.id,
        )

    def _on_deadline(self, request_id: str) -> None:
        self._timers.pop(request_id, None)
        request = self._pending.get(request_id)
        if request is not None:
            # Loop clock and wall clock may disagree by a few ms
            self.expire_overdue(max(datetime.now(UTC), _as_utc(request.timeout_at)))

    def _cancel_timer(self, request_id: str) -> None:
        handle = self._timers.pop(request_id, None)
        if handle is not None:
            handle.cancel()

    def clear(self) -> None:
        """Forget every request, pending or decided."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._pending.clear()
        self._deciding.clear()
        self._decided.clear()
