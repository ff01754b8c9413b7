"""agentstream configuration — loaded from environment / .env file."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="AGENTSTREAM_", extra="ignore")

    log_level: str = "INFO"

    # Backend endpoints
    api_base_url: str = "http://localhost:3001"
    ws_base_url: str = ""  # derived from api_base_url when empty
    request_timeout: float = 30.0
    message_fetch_limit: int = 200

    # Applied when an approval request passes its deadline undecided
    approval_timeout_action: Literal["approve", "deny"] = "deny"

    # Scroll tracking
    scroll_near_bottom_px: int = 100
    scroll_restore_attempts: int = 20
    scroll_restore_interval: float = 0.05

    @property
    def ws_root(self) -> str:
        if self.ws_base_url:
            return self.ws_base_url.rstrip("/")
        base = self.api_base_url.rstrip("/")
        if base.startswith("https://"):
            return "wss://" + base.removeprefix("https://")
        if base.startswith("http://"):
            return "ws://" + base.removeprefix("http://")
        return base

    def session_ws_url(self, session_id: str) -> str:
        return f"{self.ws_root}/ws/session/{session_id}"

    def resolve_ws_url(self, ws_url: str | None, session_id: str) -> str:
        """Prefer an absolute socket URL handed back by session start."""
        if ws_url and ws_url.startswith(("ws://", "wss://")):
            return ws_url
        return self.session_ws_url(session_id)


settings = Settings()
