"""Logical session tracking and the one-terminal-per-turn guard."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from loguru import logger

from chatrelay.types import ChatTurnRequest, Envelope, EnvelopeSink

if TYPE_CHECKING:
    from chatrelay.engines.base import ChatEngine


def system_session_id(payload: Any) -> str | None:
    """Return the engine-assigned session id carried by a system-class payload."""

    if not isinstance(payload, Mapping) or payload.get("type") != "system":
        return None
    for key in ("session_id", "sessionId"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class SessionCorrelator:
    """Merge the caller's conversation id with the id the engine reports mid-stream."""

    def __init__(self, requested_session_id: str | None = None, *, request_id: str | None = None) -> None:
        self.requested_session_id = requested_session_id or ""
        self.request_id = request_id
        self._discovered: str | None = None

    @property
    def session_id(self) -> str:
        return self._discovered or self.requested_session_id

    @property
    def discovered(self) -> bool:
        return self._discovered is not None

    def observe(self, envelope: Envelope) -> Envelope:
        """Inspect one envelope; terminal `done` envelopes come back with the corrected id."""

        if envelope.kind == "progress":
            if self._discovered is None:
                found = system_session_id(envelope.payload)
                if found:
                    self._discovered = found
                    if found != self.requested_session_id:
                        logger.debug(
                            "session.discovered request_id={} requested={} session_id={}",
                            self.request_id,
                            self.requested_session_id,
                            found,
                        )
            return envelope
        if envelope.kind == "done":
            return Envelope.done(self.session_id)
        return envelope


async def run_turn(
    engine: ChatEngine,
    request: ChatTurnRequest,
    sink: EnvelopeSink,
    *,
    request_id: str | None = None,
) -> SessionCorrelator:
    """Execute one turn and deliver its envelopes to `sink` exactly-once-terminated.

    Progress envelopes are forwarded in engine order, anything after the first terminal
    envelope is dropped, and a turn that ends without a terminal envelope is closed with an
    error envelope.
    """

    correlator = SessionCorrelator(request.prior_session_id, request_id=request_id)
    terminated = False

    async def _forward(envelope: Envelope) -> None:
        nonlocal terminated
        if terminated:
            logger.warning("turn.envelope.after_terminal request_id={} kind={}", request_id, envelope.kind)
            return
        envelope = correlator.observe(envelope)
        if envelope.is_terminal:
            terminated = True
        try:
            await sink(envelope)
        except Exception:
            logger.exception("turn.sink.error request_id={} kind={}", request_id, envelope.kind)

    try:
        await engine.execute_turn(request, _forward)
    except Exception as exc:
        logger.exception("turn.engine.error engine={} request_id={}", engine.name, request_id)
        if not terminated:
            await _forward(Envelope.error(str(exc) or type(exc).__name__))
    if not terminated:
        logger.warning("turn.unterminated engine={} request_id={}", engine.name, request_id)
        await _forward(Envelope.error("Chat engine ended the turn without a result"))
    return correlator
