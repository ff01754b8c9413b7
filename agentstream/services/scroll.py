"""Scroll position tracking for the transcript view.

The view itself is external; anything exposing ``scroll_top``,
``scroll_height`` and ``client_height`` can be tracked.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from agentstream.config import settings

logger = logging.getLogger(__name__)


class ScrollViewport(Protocol):
    scroll_top: float

    @property
    def scroll_height(self) -> float: ...

    @property
    def client_height(self) -> float: ...


class ScrollTracker:
    """Stick-to-bottom following plus save/restore around a retry."""

    def __init__(
        self,
        viewport: ScrollViewport | None = None,
        *,
        near_bottom_px: int | None = None,
        restore_attempts: int | None = None,
        restore_interval: float | None = None,
    ) -> None:
        self.viewport = viewport
        self.near_bottom_px = near_bottom_px if near_bottom_px is not None else settings.scroll_near_bottom_px
        self.restore_attempts = restore_attempts if restore_attempts is not None else settings.scroll_restore_attempts
        self.restore_interval = restore_interval if restore_interval is not None else settings.scroll_restore_interval

        self.stick_to_bottom = True
        self.saved_position: float | None = None

    @property
    def restoring(self) -> bool:
        return self.saved_position is not None

    def is_near_bottom(self) -> bool:
        vp = self.viewport
        if vp is None:
            return True
        return vp.scroll_height - vp.scroll_top - vp.client_height < self.near_bottom_px

    def handle_scroll(self) -> None:
        """Call on every user scroll."""
        if not self.restoring:
            self.stick_to_bottom = self.is_near_bottom()

    def follow_output(self) -> None:
        """Keep the newest output in view unless the user scrolled away."""
        vp = self.viewport
        if vp is None or self.restoring or not self.stick_to_bottom:
            return
        vp.scroll_top = max(vp.scroll_height - vp.client_height, 0)

    def reset(self) -> None:
        self.saved_position = None
        self.stick_to_bottom = True

    # ── Retry restoration ────────────────────────────────────────────

    def save_position(self) -> None:
        if self.viewport is None:
            return
        self.saved_position = self.viewport.scroll_top
        self.stick_to_bottom = False

    def try_restore(self) -> bool:
        """Restore the saved offset if the content is tall enough to hold it."""
        vp = self.viewport
        if vp is None or self.saved_position is None:
            return True
        if vp.scroll_height < self.saved_position + vp.client_height:
            return False
        vp.scroll_top = self.saved_position
        self.saved_position = None
        self.stick_to_bottom = self.is_near_bottom()
        return True

    async def restore_when_ready(self) -> bool:
        """Retry the restore while history renders. False if it never fit."""
        for _ in range(self.restore_attempts):
            if self.try_restore():
                return True
            await asyncio.sleep(self.restore_interval)
        if self.try_restore():
            return True

        logger.debug(
            "Gave up restoring scroll offset %s after %d attempts",
            self.saved_position, self.restore_attempts,
        )
        self.cancel_restore()
        return False

    def cancel_restore(self) -> None:
        """Drop a pending restore and resume following from where the view is."""
        if self.saved_position is None:
            return
        self.saved_position = None
        self.stick_to_bottom = self.is_near_bottom()
