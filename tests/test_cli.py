from __future__ import annotations

import importlib
from pathlib import Path

import pytest
from conftest import FakeEngine
from typer.testing import CliRunner

from chatrelay.errors import EngineUnavailableError

cli_module = importlib.import_module("chatrelay.cli")


class NamedEngine(FakeEngine):
    def __init__(self, name: str, *, available: bool) -> None:
        super().__init__(available=available)
        self.name = name
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


def test_probe_reports_each_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    engines = [NamedEngine("claude", available=False), NamedEngine("opencode", available=True)]
    monkeypatch.setattr(cli_module, "default_engines", lambda settings: engines)

    result = CliRunner().invoke(cli_module.app, ["probe", "--workspace", str(tmp_path)])

    assert result.exit_code == 0
    assert "claude: unavailable" in result.output
    assert "opencode: available" in result.output
    assert all(engine.closed for engine in engines)


def test_probe_fails_when_nothing_is_available(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    engines = [NamedEngine("claude", available=False), NamedEngine("opencode", available=False)]
    monkeypatch.setattr(cli_module, "default_engines", lambda settings: engines)

    result = CliRunner().invoke(cli_module.app, ["probe", "--workspace", str(tmp_path)])

    assert result.exit_code == 1


def test_serve_exits_with_remediation_when_no_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    captured: dict[str, object] = {}

    async def _fake_serve(settings) -> None:
        captured["settings"] = settings
        raise EngineUnavailableError({"claude": False, "opencode": False})

    monkeypatch.setattr(cli_module, "_serve", _fake_serve)

    result = CliRunner().invoke(
        cli_module.app,
        ["serve", "--workspace", str(tmp_path), "--port", "4000", "--pair-code", "XYZ789"],
    )

    assert result.exit_code == 1
    assert "No chat engine is available" in result.output
    assert "opencode serve" in result.output
    settings = captured["settings"]
    assert settings.port == 4000
    assert settings.pair_code == "XYZ789"
    assert settings.workspace == tmp_path.resolve()


def test_missing_workspace_is_a_usage_error(tmp_path: Path) -> None:
    result = CliRunner().invoke(cli_module.app, ["probe", "--workspace", str(tmp_path / "missing")])

    assert result.exit_code == 2
    assert "not a directory" in result.output
