"""Abstract base class for session transports.

The approval flow and the mode-switch reconciler talk to the live session
through this interface, so any socket implementation can stand in for the
websockets one.
"""

from abc import ABC, abstractmethod
from typing import Any

from agentstream.schemas.session import ConnectionState


class SessionTransport(ABC):
    """Contract that any live session connection must satisfy."""

    @property
    @abstractmethod
    def state(self) -> ConnectionState:
        """Current connection state."""

    @property
    @abstractmethod
    def session_id(self) -> str | None:
        """Session the transport is bound to, if any."""

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @abstractmethod
    async def connect(self, session_id: str, ws_url: str | None = None) -> None:
        """Open (or re-open) the socket for *session_id*."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Tear down the connection, flushing any partial message."""

    @abstractmethod
    async def send_user_input(self, content: str, **options: Any) -> bool:
        """Send a prompt. Returns False when not connected."""

    @abstractmethod
    async def send_cancel(self) -> bool:
        """Ask the agent process to stop. Returns False when not connected."""

    @abstractmethod
    async def send_approval_response(self, request_id: str, approved: bool) -> bool:
        """Deliver an approval decision. Returns False when not connected."""
