"""Mode-switch reconciler — retry, renew and fork a task's session.

Each mode clears a different slice of local state before the new session
starts:

  renew  fresh conversation; transcript, dedup registry, buffers, approvals
         and scroll tracking all reset
  retry  same conversation; rendered transcript and dedup state kept, only
         the streaming buffer dropped, scroll offset saved and restored once
         refetched history is tall enough
  fork   fresh live stream; persisted history replaced by caller-supplied
         context, or kept as-is when none is given
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from agentstream.adapters.api_client import ApiClient
from agentstream.adapters.session_socket import SessionConnectionManager
from agentstream.errors import ApiError, GitInitRequiredError
from agentstream.schemas.chat import ChatMessage
from agentstream.schemas.session import Session, SessionResumeMode, StartSessionRequest, StartSessionResponse
from agentstream.services.approval_service import ApprovalFlowManager
from agentstream.services.payload_normalizer import persisted_to_chat
from agentstream.services.scroll import ScrollTracker
from agentstream.services.transcript import Transcript
from agentstream.utils.session_chain import get_filtered_session_ids

logger = logging.getLogger(__name__)


class ModeSwitchReconciler:
    def __init__(
        self,
        *,
        api: ApiClient,
        connection: SessionConnectionManager,
        approvals: ApprovalFlowManager,
        scroll: ScrollTracker,
    ) -> None:
        self.api = api
        self.connection = connection
        self.approvals = approvals
        self.scroll = scroll

    @property
    def transcript(self) -> Transcript:
        return self.connection.transcript

    # ── History ──────────────────────────────────────────────────────

    async def refresh_history(self, task_id: str, current: Session | None = None) -> list[ChatMessage]:
        """Refetch persisted history, limited to the renew chain of *current*."""
        session_ids = None
        if current is not None:
            sessions = await self.api.list_sessions(task_id)
            if all(s.id != current.id for s in sessions):
                sessions.append(current)
            session_ids = get_filtered_session_ids(current, sessions)

        persisted = await self.api.get_task_messages(task_id, session_ids=session_ids)
        messages = [persisted_to_chat(m) for m in persisted]
        self.transcript.set_persisted(messages)
        return messages

    # ── Clearing ─────────────────────────────────────────────────────

    def _clear_stream(self) -> None:
        self.connection.reassembler.clear()
        state = self.connection.session_state
        state.current_tool_use = None
        state.session_status = None

    def _prepare(self, mode: SessionResumeMode, fork_context: Sequence[ChatMessage] | None) -> None:
        match mode:
            case SessionResumeMode.RENEW:
                self.scroll.reset()
                self.transcript.reset()
                self.approvals.clear()
                self._clear_stream()
            case SessionResumeMode.RETRY:
                self.scroll.save_position()
                self._clear_stream()
            case SessionResumeMode.FORK:
                self.scroll.reset()
                self.transcript.clear_live()
                self.approvals.clear()
                self._clear_stream()
                if fork_context is not None:
                    self.transcript.set_persisted(fork_context)

    # ── Switch ───────────────────────────────────────────────────────

    async def switch(
        self,
        task_id: str,
        mode: SessionResumeMode,
        prompt: str | None = None,
        *,
        fork_context: Sequence[ChatMessage] | None = None,
        **start_options: Any,
    ) -> StartSessionResponse:
        """Start a continuation of *task_id* in *mode* and attach to it.

        Raises ``GitInitRequiredError`` when the backend needs the working
        directory initialised first, ``ApiError`` for any other start failure.
        """
        # Close out the old stream before clearing so nothing stale lands after
        await self.connection.disconnect()
        self._prepare(mode, fork_context)

        if prompt:
            self.transcript.add_optimistic_user(prompt)
        state = self.connection.session_state
        state.waiting_for_response = True

        try:
            response = await self.api.start_session(StartSessionRequest(
                task_id=task_id,
                mode=mode,
                initial_prompt=prompt or None,
                **start_options,
            ))
        except GitInitRequiredError:
            state.waiting_for_response = False
            self.scroll.cancel_restore()
            logger.info("Task %s needs git init before a %s session can start", task_id, mode.value)
            raise
        except ApiError as exc:
            state.waiting_for_response = False
            self.scroll.cancel_restore()
            logger.warning("Failed to start %s session for task %s: %s", mode.value, task_id, exc)
            raise

        session = response.session
        logger.info("Started %s session %s for task %s", mode.value, session.id, task_id)
        await self.connection.connect(session.id, response.ws_url)

        if mode != SessionResumeMode.FORK:
            try:
                await self.refresh_history(task_id, session)
            except ApiError as exc:
                logger.warning("History refresh after %s failed: %s", mode.value, exc)
        if mode == SessionResumeMode.RETRY:
            await self.scroll.restore_when_ready()
        return response
