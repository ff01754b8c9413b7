"""Session client — wires the socket, approvals and mode switches for one task."""

from __future__ import annotations

import logging
from typing import Any

from agentstream.adapters.api_client import ApiClient
from agentstream.adapters.session_socket import ConnectFactory, SessionConnectionManager
from agentstream.schemas.approval import ApprovalRequest
from agentstream.schemas.chat import ChatMessage
from agentstream.schemas.session import SessionResumeMode, StartSessionResponse
from agentstream.services.approval_service import ApprovalFlowManager
from agentstream.services.mode_switch import ModeSwitchReconciler
from agentstream.services.scroll import ScrollTracker, ScrollViewport
from agentstream.services.transcript import Transcript

logger = logging.getLogger(__name__)


class SessionClient:
    def __init__(
        self,
        task_id: str,
        *,
        api: ApiClient | None = None,
        connect_factory: ConnectFactory | None = None,
        viewport: ScrollViewport | None = None,
    ) -> None:
        self.task_id = task_id
        self.api = api or ApiClient()
        self.connection = SessionConnectionManager(connect_factory=connect_factory)
        self.approvals = ApprovalFlowManager(
            self.connection,
            self.api,
            is_session_live=lambda: self.connection.session_state.is_live,
        )
        self.connection.on_approval_required = self.approvals.register
        self.scroll = ScrollTracker(viewport)
        self.modes = ModeSwitchReconciler(
            api=self.api,
            connection=self.connection,
            approvals=self.approvals,
            scroll=self.scroll,
        )

    async def __aenter__(self) -> SessionClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def transcript(self) -> Transcript:
        return self.connection.transcript

    @property
    def messages(self) -> list[ChatMessage]:
        return self.transcript.messages

    # ── Lifecycle ────────────────────────────────────────────────────

    async def attach(self, session_id: str, ws_url: str | None = None) -> None:
        """Load history and pending approvals for an existing session, then connect."""
        sessions = await self.api.list_sessions(self.task_id)
        current = next((s for s in sessions if s.id == session_id), None)
        if current is None:
            logger.warning("Session %s not listed for task %s; showing full history", session_id, self.task_id)
        await self.modes.refresh_history(self.task_id, current)
        await self.connection.connect(session_id, ws_url)
        await self.approvals.load_pending(session_id)

    async def start(
        self, mode: SessionResumeMode, prompt: str | None = None, **options: Any,
    ) -> StartSessionResponse:
        return await self.modes.switch(self.task_id, mode, prompt, **options)

    async def close(self) -> None:
        await self.connection.disconnect()
        self.approvals.clear()
        await self.api.aclose()

    # ── Conversation ─────────────────────────────────────────────────

    async def send(self, prompt: str, **options: Any) -> bool:
        """Send a follow-up prompt, echoing it until the server confirms it."""
        echo = self.transcript.add_optimistic_user(prompt)
        sent = await self.connection.send_user_input(prompt, **options)
        if not sent:
            self.transcript.remove(echo.id)
        return sent

    async def cancel(self) -> bool:
        return await self.connection.cancel()

    async def approve(self, request_id: str) -> ApprovalRequest | None:
        return await self.approvals.approve(request_id)

    async def reject(self, request_id: str) -> ApprovalRequest | None:
        return await self.approvals.reject(request_id)
