"""Process-scoped gateway state shared by every channel."""

from __future__ import annotations

from pathlib import Path

from chatrelay.config import Settings
from chatrelay.engines.base import ChatEngine
from chatrelay.pairing import PairingAuthority
from chatrelay.session import SessionCorrelator, run_turn
from chatrelay.types import ChatTurnRequest, EnvelopeSink


class GatewayRuntime:
    """Owns the selected engine and the pairing authority for the life of the process."""

    def __init__(self, settings: Settings, engine: ChatEngine, pairing: PairingAuthority) -> None:
        self.settings = settings
        self.engine = engine
        self.pairing = pairing

    @property
    def workspace(self) -> Path:
        return self.settings.workspace

    def build_request(self, message: str, session_id: str | None = None) -> ChatTurnRequest:
        return ChatTurnRequest(
            message=message,
            working_directory=str(self.workspace),
            prior_session_id=session_id or None,
        )

    async def run_turn(
        self,
        request: ChatTurnRequest,
        sink: EnvelopeSink,
        *,
        request_id: str | None = None,
    ) -> SessionCorrelator:
        return await run_turn(self.engine, request, sink, request_id=request_id)

    async def aclose(self) -> None:
        await self.engine.aclose()
