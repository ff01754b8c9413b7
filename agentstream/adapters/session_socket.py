"""Session socket adapter — one live websocket per agent session.

Owns the connection lifecycle and the in-flight streaming buffer:
  - connect / disconnect with a generation counter guarding stale handshakes
  - outbound commands (user_input, cancel, approval_response)
  - inbound frames decoded, reassembled and committed to the transcript
  - observer events fanned out to subscriber queues
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection

from agentstream.adapters.base import SessionTransport
from agentstream.config import settings
from agentstream.schemas.approval import ApprovalRequest
from agentstream.schemas.chat import ChatMessage, SessionEvent, ToolCommand, ToolStatus
from agentstream.schemas.frames import (
    ApprovalRequiredFrame,
    ApprovalResponseCommand,
    CancelCommand,
    ClientCommand,
    DiffPreviewFrame,
    ErrorFrame,
    OutputData,
    OutputFrame,
    OutputKind,
    PermissionMode,
    ServerFrame,
    SessionStatus,
    StatusFrame,
    UserInputCommand,
    encode_command,
)
from agentstream.schemas.session import ConnectionState
from agentstream.services.frame_decoder import decode_frame
from agentstream.services.payload_normalizer import NormalizedPayload, normalize_content, normalize_output
from agentstream.services.reassembler import DeltaReassembler
from agentstream.services.transcript import Transcript

logger = logging.getLogger(__name__)

ConnectFactory = Callable[[str], Awaitable[ClientConnection]]
ApprovalHandler = Callable[[ApprovalRequest], ApprovalRequest | None]


@dataclass
class SessionState:
    """Per-session flags shared by the socket, approvals and mode switches."""

    waiting_for_response: bool = False
    session_status: SessionStatus | None = None
    current_tool_use: str | None = None

    @property
    def is_live(self) -> bool:
        return self.session_status is None or not self.session_status.is_terminal


class SessionConnectionManager(SessionTransport):
    """Websocket client for a single agent session."""

    def __init__(
        self,
        *,
        transcript: Transcript | None = None,
        reassembler: DeltaReassembler | None = None,
        state: SessionState | None = None,
        connect_factory: ConnectFactory | None = None,
    ) -> None:
        self.transcript = transcript or Transcript()
        self.reassembler = reassembler or DeltaReassembler()
        self.session_state = state or SessionState()
        self.on_approval_required: ApprovalHandler | None = None

        self._connect_factory: ConnectFactory = connect_factory or websockets.connect
        self._ws: ClientConnection | None = None
        self._state = ConnectionState.DISCONNECTED
        self._session_id: str | None = None
        self._generation = 0
        self._listener_task: asyncio.Task | None = None
        self._event_queues: dict[str, asyncio.Queue[SessionEvent]] = {}

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session_id(self) -> str | None:
        return self._session_id

    # ── Connection lifecycle ─────────────────────────────────────────

    async def connect(self, session_id: str, ws_url: str | None = None) -> None:
        if self._session_id == session_id and self._state in (
            ConnectionState.CONNECTING, ConnectionState.CONNECTED,
        ):
            return

        # Switching sessions tears the previous socket down first
        if self._ws is not None or self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            await self.disconnect()

        self._generation += 1
        generation = self._generation
        self._session_id = session_id
        self.session_state.session_status = None
        url = settings.resolve_ws_url(ws_url, session_id)
        self._set_state(ConnectionState.CONNECTING)
        logger.info("Connecting to session %s at %s", session_id, url)

        try:
            ws = await self._connect_factory(url)
        except (OSError, TimeoutError, websockets.WebSocketException) as exc:
            if generation != self._generation:
                return
            logger.warning("Session %s connection failed: %s", session_id, exc)
            self._set_state(ConnectionState.ERROR, str(exc))
            self._emit(SessionEvent(type="error", content=f"Connection failed: {exc}"))
            return

        if generation != self._generation:
            # Superseded by another connect/disconnect during the handshake
            await ws.close()
            return

        self._ws = ws
        self._set_state(ConnectionState.CONNECTED)
        self._listener_task = asyncio.create_task(self._listen(ws, generation))

    async def disconnect(self) -> None:
        self._generation += 1
        task, self._listener_task = self._listener_task, None
        ws, self._ws = self._ws, None

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if ws is not None:
            await ws.close()

        self._finalize()
        self.session_state.waiting_for_response = False
        if self._state != ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)

    async def _listen(self, ws: ClientConnection, generation: int) -> None:
        """Background loop: feed every inbound frame through the pipeline."""
        error: Exception | None = None
        try:
            async for raw in ws:
                self.handle_raw(raw)
        except websockets.ConnectionClosed as exc:
            logger.warning("Session %s socket closed: %s", self._session_id, exc)
            error = exc
        except Exception as exc:
            logger.exception("Session %s listener failed", self._session_id)
            error = exc
            if generation == self._generation:
                await ws.close()

        if generation != self._generation:
            return
        self._ws = None
        self._listener_task = None
        # Keep whatever streamed before the drop
        self._finalize()
        self.session_state.waiting_for_response = False
        if error is not None:
            self._set_state(ConnectionState.ERROR, str(error))
            self._emit(SessionEvent(type="error", content=f"Connection lost: {error}"))
        else:
            self._set_state(ConnectionState.DISCONNECTED)

    def _set_state(self, state: ConnectionState, detail: str = "") -> None:
        self._state = state
        logger.info("Session %s connection %s", self._session_id, state.value)
        self._emit(SessionEvent(
            type="connection",
            content=state.value,
            metadata={"detail": detail} if detail else None,
        ))

    # ── Outbound commands ────────────────────────────────────────────

    async def _send(self, command: ClientCommand) -> bool:
        if self._ws is None or self._state != ConnectionState.CONNECTED:
            logger.warning("Not sending %s: session socket is %s", command.type, self._state.value)
            return False
        try:
            await self._ws.send(encode_command(command))
        except websockets.ConnectionClosed as exc:
            logger.warning("Not sending %s: socket closed (%s)", command.type, exc)
            return False
        return True

    async def send_user_input(
        self,
        content: str,
        *,
        model: str | None = None,
        permission_mode: PermissionMode | None = None,
        files: list[str] | None = None,
        disable_web_tools: bool | None = None,
    ) -> bool:
        sent = await self._send(UserInputCommand(
            content=content,
            model=model,
            permission_mode=permission_mode,
            files=files,
            disable_web_tools=disable_web_tools,
        ))
        if sent:
            self.session_state.waiting_for_response = True
        return sent

    async def send_cancel(self) -> bool:
        return await self._send(CancelCommand())

    async def cancel(self) -> bool:
        """Stop the agent and close out the partial message without waiting for an ack."""
        sent = await self.send_cancel()
        self._finalize()
        self.session_state.waiting_for_response = False
        return sent

    async def send_approval_response(self, request_id: str, approved: bool) -> bool:
        return await self._send(ApprovalResponseCommand(request_id=request_id, approved=approved))

    # ── Inbound routing ──────────────────────────────────────────────

    def handle_raw(self, raw: str | bytes) -> None:
        frame = decode_frame(raw)
        if frame is not None:
            self.handle_frame(frame)

    def handle_frame(self, frame: ServerFrame) -> None:
        match frame:
            case OutputFrame():
                self._on_output(frame.data)
            case StatusFrame():
                self._on_status(frame.status)
            case ApprovalRequiredFrame():
                self._on_approval_required(frame)
            case DiffPreviewFrame():
                self._emit(SessionEvent(
                    type="diff_preview",
                    content=frame.data.file_path,
                    metadata=frame.data.model_dump(by_alias=True),
                ))
            case ErrorFrame():
                self.session_state.waiting_for_response = False
                self._emit(SessionEvent(type="error", content=frame.message))

    def _on_status(self, status: SessionStatus) -> None:
        self.session_state.session_status = status
        if status == SessionStatus.RUNNING:
            # No-op when a buffer is already open
            self.reassembler.open()
        elif status.is_terminal:
            self._finalize()
            self.session_state.waiting_for_response = False
        self._emit(SessionEvent(type="status", content=status.value))

    def _on_approval_required(self, frame: ApprovalRequiredFrame) -> None:
        data = frame.data
        request = ApprovalRequest(
            id=data.request_id,
            session_id=self._session_id or "",
            tool_name=data.tool_name,
            tool_input=data.tool_input,
            category=data.category,
            timeout_at=data.timeout_at,
        )
        if self.on_approval_required is not None:
            request = self.on_approval_required(request)
            if request is None:
                return
        self._emit(SessionEvent(type="approval_required", content=data.tool_name, approval=request))

    def _on_output(self, data: OutputData | list[Any]) -> None:
        if isinstance(data, list):
            self._append(normalize_output(data), None)
            return

        match data.type:
            case OutputKind.DELTA:
                self._on_delta(data)
            case OutputKind.STREAMING_BUFFER:
                self._on_streaming_buffer(data)
            case OutputKind.USER_MESSAGE_SAVED:
                self._on_user_message_saved(data)
            case OutputKind.TOOL_BLOCKED:
                self._on_tool_blocked(data)
            case OutputKind.MESSAGE_COMPLETE:
                self._finalize(data.message_id)
            case OutputKind.TEXT:
                if not data.content and not data.text:
                    # Zero-length text is the legacy end-of-message signal
                    self._finalize(data.message_id)
                else:
                    self._append(normalize_output(data), data.message_id)
            case OutputKind.MESSAGE:
                self._on_message(data)
            case OutputKind.TOOL_USE:
                payload = normalize_output(data)
                self._append(payload, data.message_id)
                for tool in payload.tools:
                    self._emit(SessionEvent(
                        type="tool_use",
                        content=tool.name,
                        message_id=data.message_id,
                        metadata={"input": tool.input},
                    ))
            case OutputKind.STREAM_EVENT:
                self._append(normalize_output(data), data.message_id)
            case _:
                self._emit(SessionEvent(
                    type="output",
                    content="",
                    message_id=data.message_id,
                    metadata=data.model_dump(by_alias=True, exclude_none=True),
                ))

    def _on_delta(self, data: OutputData) -> None:
        text = data.text if data.text is not None else data.content
        if not isinstance(text, str):
            return
        if not data.message_id:
            self._append(NormalizedPayload(text=text), None)
            return
        self.session_state.waiting_for_response = False
        self._commit(self.reassembler.apply_delta(data.message_id, text, data.offset or 0))
        self._emit(SessionEvent(type="delta", content=text, message_id=data.message_id))

    def _on_streaming_buffer(self, data: OutputData) -> None:
        if not data.message_id:
            return
        content = data.content if isinstance(data.content, str) else normalize_content(data.content).text
        self._commit(self.reassembler.apply_snapshot(data.message_id, content))
        self._emit(SessionEvent(
            type="delta",
            content=content,
            message_id=data.message_id,
            metadata={"snapshot": True, "offset": data.offset},
        ))

    def _on_user_message_saved(self, data: OutputData) -> None:
        if not data.message_id:
            return
        content = data.content if isinstance(data.content, str) else ""
        timestamp = data.timestamp if isinstance(data.timestamp, datetime) else None
        confirmed = self.transcript.confirm_user_message(data.message_id, content, timestamp)
        if confirmed is not None:
            self._emit(SessionEvent(type="user_message", content=content, message=confirmed))

    def _on_tool_blocked(self, data: OutputData) -> None:
        name = data.tool_name or "unknown"
        self._commit(self.reassembler.add_tools(
            [ToolCommand(name=name, status=ToolStatus.ERROR)], data.message_id,
        ))
        self._emit(SessionEvent(
            type="tool_blocked",
            content=data.reason or "",
            message_id=data.message_id,
            metadata={"toolName": name, "reason": data.reason, "severity": data.severity},
        ))

    def _on_message(self, data: OutputData) -> None:
        complete = data.status == "complete"
        replayed = _replayed_user_text(data.content)
        if replayed is not None:
            if data.message_id and complete:
                self._commit(ChatMessage(id=data.message_id, role="user", content=replayed))
            return

        payload = normalize_output(data)
        if payload:
            self._append(payload, data.message_id)
        if complete:
            self._finalize(data.message_id)

    # ── Buffer → transcript ──────────────────────────────────────────

    def _append(self, payload: NormalizedPayload, message_id: str | None) -> None:
        if not payload:
            return
        self.session_state.waiting_for_response = False
        if payload.text:
            self._commit(self.reassembler.append(payload.text, message_id))
            self._emit(SessionEvent(type="output", content=payload.text, message_id=message_id))
        if payload.tools:
            self._commit(self.reassembler.add_tools(payload.tools, message_id))
            self.session_state.current_tool_use = payload.tools[-1].name

    def _finalize(self, message_id: str | None = None) -> None:
        self._commit(self.reassembler.finalize(message_id))
        self.session_state.current_tool_use = None

    def _commit(self, message: ChatMessage | None) -> None:
        if message is not None and self.transcript.commit(message):
            self._emit(SessionEvent(type="message", content=message.content, message_id=message.id, message=message))

    # ── Observers ────────────────────────────────────────────────────

    def _emit(self, event: SessionEvent) -> None:
        if event.session_id is None:
            event.session_id = self._session_id
        for prefix, queue in list(self._event_queues.items()):
            if event.type.startswith(prefix):
                queue.put_nowait(event)

    def subscribe_events(self, prefix: str = "") -> asyncio.Queue[SessionEvent]:
        """Subscribe to events whose type starts with *prefix*."""
        queue: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._event_queues[prefix] = queue
        return queue

    def unsubscribe_events(self, prefix: str = "") -> None:
        self._event_queues.pop(prefix, None)

    async def stream_events(self, prefix: str = "") -> AsyncIterator[SessionEvent]:
        """Yield events until the connection ends."""
        queue = self.subscribe_events(prefix)
        try:
            while True:
                event = await queue.get()
                yield event
                if event.type == "connection" and event.content in (
                    ConnectionState.DISCONNECTED, ConnectionState.ERROR,
                ):
                    break
        finally:
            self.unsubscribe_events(prefix)


def _replayed_user_text(content: Any) -> str | None:
    # Catch-up replays user turns as {role: user, content: "..."}
    if isinstance(content, dict) and content.get("role") == "user":
        inner = content.get("content")
        return inner if isinstance(inner, str) else normalize_content(inner).text
    return None
