"""Pick one available chat engine and keep it for the process lifetime."""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger

from chatrelay.engines.base import ChatEngine
from chatrelay.errors import EngineUnavailableError


class EngineSelector:
    """Probe engines in priority order and cache the first available one."""

    def __init__(self, candidates: Sequence[ChatEngine]) -> None:
        if not candidates:
            raise ValueError("at least one engine candidate is required")
        self._candidates = list(candidates)
        self._selected: ChatEngine | None = None
        self.probes: dict[str, bool] = {}

    async def probe_all(self) -> dict[str, bool]:
        """Probe every candidate without selecting."""
        return {engine.name: await self._probe(engine) for engine in self._candidates}

    async def select(self) -> ChatEngine:
        if self._selected is not None:
            return self._selected

        for engine in self._candidates:
            available = await self._probe(engine)
            self.probes[engine.name] = available
            if available:
                self._selected = engine
                logger.info("engine.selected name={}", engine.name)
                return engine

        raise EngineUnavailableError(self.probes)

    @staticmethod
    async def _probe(engine: ChatEngine) -> bool:
        try:
            available = bool(await engine.is_available())
        except Exception:
            logger.opt(exception=True).warning("engine.probe.error name={}", engine.name)
            available = False
        logger.info("engine.probe name={} available={}", engine.name, available)
        return available
