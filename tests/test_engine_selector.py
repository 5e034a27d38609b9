from __future__ import annotations

from pathlib import Path

import pytest
from conftest import FakeEngine, build_settings

from chatrelay.app.bootstrap import build_runtime
from chatrelay.engines.selector import EngineSelector
from chatrelay.errors import EngineUnavailableError


class NamedEngine(FakeEngine):
    def __init__(self, name: str, **kwargs: object) -> None:
        super().__init__(**kwargs)  # type: ignore[arg-type]
        self.name = name
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


class BrokenProbeEngine(NamedEngine):
    async def is_available(self) -> bool:
        raise OSError("probe exploded")


@pytest.mark.asyncio
async def test_selects_first_available_in_priority_order() -> None:
    first = NamedEngine("first", available=True)
    second = NamedEngine("second", available=True)
    selector = EngineSelector([first, second])

    assert await selector.select() is first
    assert second.probe_count == 0


@pytest.mark.asyncio
async def test_falls_through_to_second_engine() -> None:
    first = NamedEngine("first", available=False)
    second = NamedEngine("second", available=True)
    selector = EngineSelector([first, second])

    assert await selector.select() is second
    assert selector.probes == {"first": False, "second": True}


@pytest.mark.asyncio
async def test_selection_is_cached_and_never_reprobed() -> None:
    engine = NamedEngine("only", available=True)
    selector = EngineSelector([engine])

    await selector.select()
    engine.available = False
    assert await selector.select() is engine
    assert engine.probe_count == 1


@pytest.mark.asyncio
async def test_unavailable_error_carries_every_probe() -> None:
    selector = EngineSelector([BrokenProbeEngine("claude"), NamedEngine("opencode", available=False)])

    with pytest.raises(EngineUnavailableError) as excinfo:
        await selector.select()

    assert excinfo.value.probes == {"claude": False, "opencode": False}
    assert "claude=down" in str(excinfo.value)


def test_selector_requires_candidates() -> None:
    with pytest.raises(ValueError):
        EngineSelector([])


@pytest.mark.asyncio
async def test_build_runtime_closes_unselected_engines(tmp_path: Path) -> None:
    chosen = NamedEngine("first", available=True)
    spare = NamedEngine("second", available=True)

    runtime = await build_runtime(build_settings(tmp_path, pair_code="ABC123"), engines=[chosen, spare])

    assert runtime.engine is chosen
    assert runtime.pairing.secret_code == "ABC123"
    assert spare.closed is True
    assert chosen.closed is False


@pytest.mark.asyncio
async def test_build_runtime_raises_when_nothing_is_available(tmp_path: Path) -> None:
    engines = [NamedEngine("a", available=False), NamedEngine("b", available=False)]

    with pytest.raises(EngineUnavailableError):
        await build_runtime(build_settings(tmp_path), engines=engines)

    assert all(engine.closed for engine in engines)
