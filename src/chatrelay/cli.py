"""Command line entry points for chatrelay."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from loguru import logger

from chatrelay.app.bootstrap import build_runtime
from chatrelay.channels.http import HttpChannel
from chatrelay.channels.manager import ChannelManager
from chatrelay.channels.relay import RelayChannel
from chatrelay.config import Settings, load_settings
from chatrelay.engines import EngineSelector, default_engines
from chatrelay.errors import ConfigurationError, EngineUnavailableError
from chatrelay.logging_utils import configure_logging

app = typer.Typer(name="chatrelay", help="Relay a local chat engine to paired clients.", add_completion=False)


def _settings(
    workspace: Path | None,
    port: int | None = None,
    relay_url: str | None = None,
    pair_code: str | None = None,
) -> Settings:
    try:
        settings = load_settings(workspace)
    except ConfigurationError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(2) from exc
    updates: dict[str, object] = {}
    if port is not None:
        updates["port"] = port
    if relay_url:
        updates["relay_url"] = relay_url
    if pair_code:
        updates["pair_code"] = pair_code
    if updates:
        settings = settings.model_copy(update=updates)
    return settings


async def _serve(settings: Settings) -> None:
    runtime = await build_runtime(settings)
    logger.info("chatrelay.ready engine={} workspace={}", runtime.engine.name, runtime.workspace)
    logger.info("chatrelay.pair_code code={}", runtime.pairing.secret_code)

    manager = ChannelManager()
    manager.register(HttpChannel(runtime))
    if settings.relay_url:
        manager.register(
            RelayChannel(
                runtime,
                url=settings.relay_url,
                device_id=settings.resolve_device_id(),
                heartbeat_interval=settings.heartbeat_interval,
                reconnect_delay=settings.reconnect_delay,
                on_paired=lambda: logger.info("chatrelay.relay.paired"),
            )
        )
    await manager.start()
    try:
        await manager.wait()
    finally:
        await manager.stop()
        await runtime.aclose()


@app.command()
def serve(
    workspace: Path | None = typer.Option(None, "--workspace", "-w", help="Directory chat turns run in."),
    port: int | None = typer.Option(None, "--port", "-p", help="HTTP listen port."),
    relay_url: str | None = typer.Option(None, "--relay-url", help="Broker websocket URL."),
    pair_code: str | None = typer.Option(None, "--pair-code", help="Fixed pairing code."),
) -> None:
    """Serve the HTTP channel and, when configured, the broker relay."""
    settings = _settings(workspace, port, relay_url, pair_code)
    configure_logging(level=settings.log_level)
    try:
        asyncio.run(_serve(settings))
    except EngineUnavailableError as exc:
        typer.echo(str(exc), err=True)
        typer.echo(
            f"Install the `{settings.claude_command}` CLI, or start `opencode serve` at {settings.opencode_url}.",
            err=True,
        )
        raise typer.Exit(1) from exc
    except KeyboardInterrupt:
        typer.echo("Interrupted.")


@app.command()
def probe(
    workspace: Path | None = typer.Option(None, "--workspace", "-w", help="Directory chat turns run in."),
) -> None:
    """Report which chat engines are available."""
    settings = _settings(workspace)
    configure_logging(profile="console", level=settings.log_level)

    async def _probe() -> dict[str, bool]:
        engines = default_engines(settings)
        try:
            return await EngineSelector(engines).probe_all()
        finally:
            for engine in engines:
                await engine.aclose()

    results = asyncio.run(_probe())
    for name, available in results.items():
        typer.echo(f"{name}: {'available' if available else 'unavailable'}")
    if not any(results.values()):
        raise typer.Exit(1)
