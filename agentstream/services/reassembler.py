"""Delta reassembler — grow one in-flight assistant message from fragments.

Two delivery paths feed the same buffer:

* delta mode: ``{messageId, text, offset}`` fragments addressed by the
  offset at which ``text`` starts,
* legacy mode: whole increments appended to the single ambient buffer.

At most one buffer is open at a time. When a fragment for a different
message arrives, the open buffer is flushed first and handed back to the
caller as a terminal message. Every mutating call returns the message it
displaced (or finalised), or ``None``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from agentstream.schemas.chat import ChatMessage, ToolCommand
from agentstream.services.dedup import new_local_id

logger = logging.getLogger(__name__)


@dataclass
class StreamingBuffer:
    message_id: str
    accumulated_text: str = ""
    # End of the text received so far, in characters
    last_offset: int = 0
    commands: list[ToolCommand] = field(default_factory=list)
    # True while the id is locally minted and not yet server-confirmed
    provisional: bool = False

    def is_empty(self) -> bool:
        return not self.accumulated_text and not self.commands

    def to_message(self) -> ChatMessage:
        return ChatMessage(
            id=self.message_id,
            role="assistant",
            content=self.accumulated_text,
            timestamp=datetime.now(UTC),
            commands=list(self.commands) or None,
            provisional=self.provisional,
        )


class DeltaReassembler:
    def __init__(self) -> None:
        self._buffer: StreamingBuffer | None = None

    @property
    def current(self) -> StreamingBuffer | None:
        return self._buffer

    @property
    def text(self) -> str:
        return self._buffer.accumulated_text if self._buffer else ""

    @property
    def is_open(self) -> bool:
        return self._buffer is not None

    # ── Buffer ownership ─────────────────────────────────────────────

    def open(self, message_id: str | None = None) -> ChatMessage | None:
        """Make sure a buffer is open, keyed by *message_id* when given.

        Without an id this is a no-op if any buffer is already open, so
        repeated ``running`` signals never produce a second buffer.
        """
        _, displaced = self._open(message_id)
        return displaced

    def _open(self, message_id: str | None) -> tuple[StreamingBuffer, ChatMessage | None]:
        buf = self._buffer
        if buf is None:
            buf = self._buffer = self._new_buffer(message_id)
            return buf, None
        if message_id is None or buf.message_id == message_id:
            return buf, None
        if buf.provisional and not buf.accumulated_text:
            # Placeholder opened by a status signal; the server id arrived
            buf.message_id = message_id
            buf.provisional = False
            return buf, None

        displaced = self._take()
        buf = self._buffer = self._new_buffer(message_id)
        return buf, displaced

    @staticmethod
    def _new_buffer(message_id: str | None) -> StreamingBuffer:
        if message_id:
            return StreamingBuffer(message_id=message_id)
        return StreamingBuffer(message_id=new_local_id("assistant"), provisional=True)

    def _take(self) -> ChatMessage | None:
        buf, self._buffer = self._buffer, None
        if buf is None or buf.is_empty():
            return None
        return buf.to_message()

    # ── Delivery ─────────────────────────────────────────────────────

    def apply_delta(self, message_id: str, text: str, offset: int) -> ChatMessage | None:
        """Place *text* at *offset* within message *message_id*."""
        buf, displaced = self._open(message_id)
        offset = max(offset, 0)

        if offset == 0:
            # Start of a new logical message; anything held for this id is stale
            buf.accumulated_text = ""
            buf.last_offset = 0

        if offset > buf.last_offset:
            logger.warning(
                "Delta gap on %s: expected offset %d, got %d",
                message_id, buf.last_offset, offset,
            )
            buf.accumulated_text += text
        elif offset + len(text) > buf.last_offset:
            # Overlaps what we already hold; keep only the unseen tail
            buf.accumulated_text += text[buf.last_offset - offset:]
        else:
            logger.debug("Skipping replayed delta on %s at offset %d", message_id, offset)
            return displaced

        buf.last_offset = max(buf.last_offset, offset + len(text))
        return displaced

    def apply_snapshot(self, message_id: str, content: str) -> ChatMessage | None:
        """Replace the buffer for *message_id* with a catch-up snapshot."""
        buf, displaced = self._open(message_id)
        buf.accumulated_text = content
        buf.last_offset = len(content)
        return displaced

    def append(self, text: str, message_id: str | None = None) -> ChatMessage | None:
        """Append a whole increment to the ambient buffer."""
        buf, displaced = self._open(message_id)
        buf.accumulated_text += text
        buf.last_offset = len(buf.accumulated_text)
        return displaced

    def add_tools(self, commands: list[ToolCommand], message_id: str | None = None) -> ChatMessage | None:
        if not commands:
            return None
        buf, displaced = self._open(message_id)
        buf.commands.extend(commands)
        return displaced

    # ── Completion ───────────────────────────────────────────────────

    def finalize(self, message_id: str | None = None) -> ChatMessage | None:
        """Close the open buffer and return it as a terminal message.

        With *message_id*, only a buffer holding that id (or a provisional
        one, which then adopts it) is closed. Empty buffers yield nothing.
        """
        buf = self._buffer
        if buf is None:
            return None
        if message_id is not None and buf.message_id != message_id:
            if not buf.provisional:
                return None
            buf.message_id = message_id
            buf.provisional = False
        return self._take()

    def clear(self) -> None:
        """Drop the open buffer without producing a message."""
        self._buffer = None
