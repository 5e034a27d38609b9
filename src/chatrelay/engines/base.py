"""Chat engine capability interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TypeVar

from chatrelay.types import ChatTurnRequest, ConversationHistory, ConversationSummary, EnvelopeSink


class ChatEngine(ABC):
    """Abstract base class for chat engine adapters.

    Implementations normalize their own streaming transport into progress envelopes
    followed by exactly one terminal envelope.
    """

    name: str = "base"

    @abstractmethod
    async def is_available(self) -> bool:
        """Probe the engine. Never raises; any failure means unavailable."""

    @abstractmethod
    async def execute_turn(self, request: ChatTurnRequest, on_envelope: EnvelopeSink) -> None:
        """Run one turn, returning only after the terminal envelope was delivered."""

    @abstractmethod
    async def list_conversations(self, scope_dir: Path, limit: int = 0) -> list[ConversationSummary]:
        """List conversations for `scope_dir`, newest first. `limit <= 0` means all."""

    @abstractmethod
    async def get_conversation(self, scope_dir: Path, session_id: str) -> ConversationHistory | None:
        """Return one conversation, or None when it does not exist."""

    async def aclose(self) -> None:
        return None


T = TypeVar("T")


def apply_limit(items: list[T], limit: int) -> list[T]:
    if limit <= 0:
        return items
    return items[:limit]
