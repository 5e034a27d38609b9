from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from chatrelay.app.runtime import GatewayRuntime
from chatrelay.config import Settings
from chatrelay.engines.base import ChatEngine, apply_limit
from chatrelay.pairing import PairingAuthority
from chatrelay.types import (
    ChatTurnRequest,
    ConversationHistory,
    ConversationMessage,
    ConversationSummary,
    Envelope,
    EnvelopeSink,
)


class FakeEngine(ChatEngine):
    """Scripted engine that records every turn it runs."""

    name = "fake"

    def __init__(
        self,
        *,
        available: bool = True,
        script: Sequence[Envelope] | None = None,
        session_id: str = "engine-session",
    ) -> None:
        self.available = available
        self.script = list(script) if script is not None else None
        self.session_id = session_id
        self.requests: list[ChatTurnRequest] = []
        self.conversations: dict[str, list[ConversationMessage]] = {}
        self.probe_count = 0

    async def is_available(self) -> bool:
        self.probe_count += 1
        return self.available

    async def execute_turn(self, request: ChatTurnRequest, on_envelope: EnvelopeSink) -> None:
        self.requests.append(request)
        if self.script is not None:
            for envelope in self.script:
                await on_envelope(envelope)
            return
        session_id = request.prior_session_id or self.session_id
        await on_envelope(Envelope.progress({"type": "system", "subtype": "init", "session_id": session_id}))
        await on_envelope(Envelope.progress({"type": "assistant", "text": f"echo: {request.message}"}))
        messages = self.conversations.setdefault(session_id, [])
        messages.append(ConversationMessage(role="user", content=request.message))
        messages.append(ConversationMessage(role="assistant", content=f"echo: {request.message}"))
        await on_envelope(Envelope.done(session_id))

    async def list_conversations(self, scope_dir: Path, limit: int = 0) -> list[ConversationSummary]:
        summaries = [
            ConversationSummary(session_id=session_id, title=messages[0].content, message_count=len(messages), updated_at=0.0)
            for session_id, messages in reversed(self.conversations.items())
        ]
        return apply_limit(summaries, limit)

    async def get_conversation(self, scope_dir: Path, session_id: str) -> ConversationHistory | None:
        messages = self.conversations.get(session_id)
        if messages is None:
            return None
        return ConversationHistory(session_id=session_id, messages=list(messages))


def build_settings(tmp_path: Path, **overrides: Any) -> Settings:
    return Settings(workspace=tmp_path, claude_home=tmp_path / ".claude", **overrides)


def build_runtime(tmp_path: Path, engine: ChatEngine | None = None, pair_code: str = "ABC123") -> GatewayRuntime:
    return GatewayRuntime(build_settings(tmp_path), engine or FakeEngine(), PairingAuthority(pair_code))


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def runtime(tmp_path: Path, fake_engine: FakeEngine) -> GatewayRuntime:
    return build_runtime(tmp_path, fake_engine)


@pytest.fixture(autouse=True)
def _reset_sse_exit_event(monkeypatch: pytest.MonkeyPatch) -> None:
    # sse-starlette keeps a module-level exit event bound to the first loop that used it.
    from sse_starlette.sse import AppStatus

    if hasattr(AppStatus, "should_exit_event"):
        monkeypatch.setattr(AppStatus, "should_exit_event", None)
