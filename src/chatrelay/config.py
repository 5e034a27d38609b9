"""Configuration management for chatrelay."""

from __future__ import annotations

import socket
from hashlib import md5
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from chatrelay.errors import ConfigurationError


def _device_slug(workspace: Path) -> str:
    raw = f"{socket.gethostname()}:{workspace.resolve()}"
    return md5(raw.encode("utf-8")).hexdigest()[:16]  # noqa: S324


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="CHATRELAY_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Inbound HTTP
    host: str = Field(default="0.0.0.0", description="Interface the HTTP channel binds to")  # noqa: S104
    port: int = Field(default=3456, description="Port the HTTP channel listens on")

    # Outbound relay
    relay_url: str | None = Field(default=None, description="Broker websocket URL; relay disabled when unset")
    heartbeat_interval: float = Field(default=30.0, description="Seconds between relay pings")
    reconnect_delay: float = Field(default=5.0, description="Seconds before a relay reconnect attempt")
    device_id: str | None = Field(default=None, description="Stable device identity sent on register")

    # Pairing
    pair_code: str | None = Field(default=None, description="Fixed pairing code; random when unset")

    # Engines
    workspace: Path = Field(default_factory=Path.cwd, description="Working directory chat turns run in")
    claude_command: str = Field(default="claude", description="Claude CLI executable")
    claude_args: list[str] = Field(default_factory=list, description="Extra arguments appended to every CLI turn")
    claude_home: Path = Field(default_factory=lambda: Path.home() / ".claude", description="Claude CLI data dir")
    opencode_url: str = Field(default="http://127.0.0.1:4096", description="OpenCode server base URL")
    probe_timeout: float = Field(default=5.0, description="Seconds an engine health probe may take")

    # History
    history_default_limit: int = Field(default=20, description="Page size when limit is omitted")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")

    def resolve_device_id(self) -> str:
        if self.device_id:
            return self.device_id
        return _device_slug(self.workspace)


def load_settings(workspace: Path | None = None) -> Settings:
    """Load settings from the environment and an optional `.env` file.

    Args:
        workspace: Optional workspace override

    Returns:
        Settings instance

    Raises:
        ConfigurationError: the workspace is not an existing directory
    """
    settings = Settings() if workspace is None else Settings(workspace=workspace.resolve())
    if not settings.workspace.is_dir():
        raise ConfigurationError(f"Workspace is not a directory: {settings.workspace}")
    return settings
