"""Dedup registry — one visible entry per logical message.

The live socket and the REST history refetch both deliver the same
utterances, in no guaranteed order. The registry remembers which ids have
already been rendered and what the persisted history currently holds, so
only the first delivery wins.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable

from agentstream.schemas.chat import ChatMessage

LOCAL_ID_PREFIX = "local-"


def new_local_id(role: str) -> str:
    """Mint an id for an entry the server has not confirmed yet."""
    return f"{LOCAL_ID_PREFIX}{role}-{uuid.uuid4().hex[:12]}"


def is_local_id(message_id: str) -> bool:
    return message_id.startswith(LOCAL_ID_PREFIX)


def normalize_text(text: str) -> str:
    """Whitespace-insensitive form used for content matching."""
    return " ".join(text.split())


def content_key(message: ChatMessage) -> tuple[str, str]:
    return message.role, normalize_text(message.content)


class DedupRegistry:
    def __init__(self) -> None:
        self._rendered: set[str] = set()
        self._persisted_ids: set[str] = set()
        self._persisted_content: set[tuple[str, str]] = set()

    def sync_persisted(self, messages: Iterable[ChatMessage]) -> None:
        """Replace the known persisted set with a fresh history fetch."""
        self._persisted_ids = set()
        self._persisted_content = set()
        for msg in messages:
            self._persisted_ids.add(msg.id)
            if msg.content.strip():
                self._persisted_content.add(content_key(msg))

    def is_persisted(self, candidate: ChatMessage) -> bool:
        if candidate.id in self._persisted_ids:
            return True
        # Content fallback only for ids minted before the server confirmed one
        if candidate.provisional or is_local_id(candidate.id):
            return content_key(candidate) in self._persisted_content
        return False

    def should_render(self, candidate: ChatMessage) -> bool:
        if candidate.id in self._rendered:
            return False
        return not self.is_persisted(candidate)

    def mark_rendered(self, message_id: str) -> None:
        self._rendered.add(message_id)

    def forget(self, message_id: str) -> None:
        self._rendered.discard(message_id)

    def clear_rendered(self) -> None:
        self._rendered.clear()

    def clear(self) -> None:
        self._rendered.clear()
        self._persisted_ids.clear()
        self._persisted_content.clear()

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._rendered

    def __len__(self) -> int:
        return len(self._rendered)
