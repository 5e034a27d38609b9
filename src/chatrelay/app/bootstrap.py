"""Runtime bootstrap helpers."""

from __future__ import annotations

from collections.abc import Sequence

from chatrelay.app.runtime import GatewayRuntime
from chatrelay.config import Settings
from chatrelay.engines import EngineSelector, default_engines
from chatrelay.engines.base import ChatEngine
from chatrelay.errors import EngineUnavailableError
from chatrelay.pairing import PairingAuthority


async def build_runtime(settings: Settings, *, engines: Sequence[ChatEngine] | None = None) -> GatewayRuntime:
    """Select an engine and build the gateway runtime.

    Raises:
        EngineUnavailableError: no candidate engine passed its probe.
    """

    candidates = list(engines) if engines is not None else default_engines(settings)
    selector = EngineSelector(candidates)
    try:
        engine = await selector.select()
    except EngineUnavailableError:
        for candidate in candidates:
            await candidate.aclose()
        raise
    for candidate in candidates:
        if candidate is not engine:
            await candidate.aclose()
    return GatewayRuntime(settings, engine, PairingAuthority(settings.pair_code))
