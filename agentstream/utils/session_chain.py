"""Session chain helpers — which sessions' history a renewed task shows.

Sessions link to their predecessor through ``resumed_from_session_id``. A
``renew`` starts a fresh conversation, so history is limited to the renew
root and everything that descends from it.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from agentstream.schemas.session import Session, SessionResumeMode

logger = logging.getLogger(__name__)


def find_renew_root_session_id(current: Session | None, sessions: Sequence[Session]) -> str | None:
    """Walk up from *current* to the nearest session started with ``renew``.

    Returns None when the chain has no renew, breaks, or loops.
    """
    by_id = {s.id: s for s in sessions}
    visited: set[str] = set()
    session = current
    while session is not None:
        if session.id in visited:
            logger.error("Circular session reference at %s (visited %s)", session.id, sorted(visited))
            return None
        visited.add(session.id)

        if session.resume_mode == SessionResumeMode.RENEW:
            return session.id
        if not session.resumed_from_session_id:
            return None

        parent = by_id.get(session.resumed_from_session_id)
        if parent is None:
            logger.warning(
                "Parent session %s of %s not found",
                session.resumed_from_session_id, session.id,
            )
        session = parent
    return None


def build_session_chain_from_renew(root_id: str, sessions: Sequence[Session]) -> list[str]:
    """The renew root plus all of its descendants, breadth first."""
    chain = [root_id]
    seen = {root_id}
    generation = [root_id]
    while generation:
        next_generation = []
        for parent_id in generation:
            for child in sessions:
                if child.resumed_from_session_id == parent_id and child.id not in seen:
                    seen.add(child.id)
                    chain.append(child.id)
                    next_generation.append(child.id)
        generation = next_generation
    return chain


def get_filtered_session_ids(current: Session | None, sessions: Sequence[Session]) -> list[str] | None:
    """Session ids to fetch history for, or None to show the full task history."""
    root_id = find_renew_root_session_id(current, sessions)
    if root_id is None:
        return None
    return build_session_chain_from_renew(root_id, sessions)
