"""Chat engine adapters and selection."""

from __future__ import annotations

from typing import TYPE_CHECKING

from chatrelay.engines.base import ChatEngine
from chatrelay.engines.claude import ClaudeEngine
from chatrelay.engines.opencode import OpenCodeEngine
from chatrelay.engines.selector import EngineSelector

if TYPE_CHECKING:
    from chatrelay.config import Settings


def default_engines(settings: Settings) -> list[ChatEngine]:
    """Engine candidates in selection priority order."""

    return [
        ClaudeEngine(
            settings.claude_command,
            home=settings.claude_home,
            extra_args=settings.claude_args,
            probe_timeout=settings.probe_timeout,
        ),
        OpenCodeEngine(settings.opencode_url, probe_timeout=settings.probe_timeout),
    ]


__all__ = ["ChatEngine", "ClaudeEngine", "EngineSelector", "OpenCodeEngine", "default_engines"]
