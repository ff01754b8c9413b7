"""Merged transcript — persisted history plus live entries, without duplicates.

Live entries are committed through the dedup registry. A provisional entry
(locally minted id) is replaced in place when its authoritative counterpart
arrives, never appended next to it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime

from agentstream.schemas.chat import ChatMessage
from agentstream.services.dedup import DedupRegistry, content_key, new_local_id

logger = logging.getLogger(__name__)


class Transcript:
    def __init__(self, registry: DedupRegistry | None = None) -> None:
        self.registry = registry or DedupRegistry()
        self._persisted: list[ChatMessage] = []
        self._live: list[ChatMessage] = []

    @property
    def persisted(self) -> list[ChatMessage]:
        return list(self._persisted)

    @property
    def live(self) -> list[ChatMessage]:
        return list(self._live)

    @property
    def messages(self) -> list[ChatMessage]:
        return self._persisted + self._live

    def __len__(self) -> int:
        return len(self._persisted) + len(self._live)

    def _live_index(self, message_id: str) -> int | None:
        for i, msg in enumerate(self._live):
            if msg.id == message_id:
                return i
        return None

    def _provisional_match(self, message: ChatMessage) -> int | None:
        key = content_key(message)
        for i in range(len(self._live) - 1, -1, -1):
            entry = self._live[i]
            if entry.provisional and content_key(entry) == key:
                return i
        return None

    # ── History ──────────────────────────────────────────────────────

    def set_persisted(self, messages: Iterable[ChatMessage]) -> None:
        """Install a fresh history fetch and drop live entries it now covers."""
        self._persisted = list(messages)
        self.registry.sync_persisted(self._persisted)

        kept = []
        for msg in self._live:
            if self.registry.is_persisted(msg):
                self.registry.forget(msg.id)
                continue
            kept.append(msg)
        if len(kept) != len(self._live):
            logger.debug("History now covers %d live entries", len(self._live) - len(kept))
        self._live = kept

    # ── Live stream ──────────────────────────────────────────────────

    def commit(self, message: ChatMessage) -> bool:
        """Insert a live message. Returns True if it produced a new entry."""
        if self.registry.is_persisted(message):
            return False

        idx = self._live_index(message.id)
        if idx is not None:
            # Catch-up replay of something already shown; keep the fuller copy
            if len(message.content) >= len(self._live[idx].content):
                self._live[idx] = message
            return False

        if not message.provisional:
            idx = self._provisional_match(message)
            if idx is not None:
                self.registry.forget(self._live[idx].id)
                self._live[idx] = message
                self.registry.mark_rendered(message.id)
                return False

        if not self.registry.should_render(message):
            return False
        self._live.append(message)
        self.registry.mark_rendered(message.id)
        return True

    def add_optimistic_user(self, content: str) -> ChatMessage:
        """Echo a just-submitted prompt before the server confirms it."""
        message = ChatMessage(
            id=new_local_id("user"),
            role="user",
            content=content,
            timestamp=datetime.now(UTC),
            provisional=True,
        )
        self._live.append(message)
        self.registry.mark_rendered(message.id)
        return message

    def confirm_user_message(
        self, message_id: str, content: str, timestamp: datetime | None = None
    ) -> ChatMessage | None:
        """Swap the provisional echo of a prompt for its confirmed id."""
        confirmed = ChatMessage(
            id=message_id,
            role="user",
            content=content,
            timestamp=timestamp or datetime.now(UTC),
        )
        if self.registry.is_persisted(confirmed):
            idx = self._provisional_match(confirmed)
            if idx is not None:
                self.remove(self._live[idx].id)
            return None
        self.commit(confirmed)
        return confirmed

    def remove(self, message_id: str) -> None:
        idx = self._live_index(message_id)
        if idx is not None:
            del self._live[idx]
            self.registry.forget(message_id)

    # ── Resets ───────────────────────────────────────────────────────

    def clear_live(self) -> None:
        self._live = []
        self.registry.clear_rendered()

    def reset(self) -> None:
        self._persisted = []
        self._live = []
        self.registry.clear()
