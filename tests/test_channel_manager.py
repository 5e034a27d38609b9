from __future__ import annotations

import asyncio

import pytest

from chatrelay.app.runtime import GatewayRuntime
from chatrelay.channels.base import BaseChannel
from chatrelay.channels.manager import ChannelManager


class BlockingChannel(BaseChannel):
    name = "blocking"

    def __init__(self, runtime: GatewayRuntime) -> None:
        super().__init__(runtime)
        self.released = asyncio.Event()
        self.stopped = False

    async def start(self) -> None:
        await self.released.wait()

    async def stop(self) -> None:
        self.stopped = True


class CrashingChannel(BaseChannel):
    name = "crashing"

    async def start(self) -> None:
        raise RuntimeError("boom")

    async def stop(self) -> None:
        return None


@pytest.mark.asyncio
async def test_wait_returns_when_any_channel_exits(runtime: GatewayRuntime) -> None:
    blocking = BlockingChannel(runtime)
    manager = ChannelManager()
    manager.register(blocking)
    manager.register(CrashingChannel(runtime))
    assert list(manager.enabled_channels()) == ["blocking", "crashing"]

    await manager.start()
    await asyncio.wait_for(manager.wait(), timeout=1)
    await manager.stop()

    assert blocking.stopped is True


@pytest.mark.asyncio
async def test_wait_without_channels_returns_immediately() -> None:
    manager = ChannelManager()
    await manager.start()
    await asyncio.wait_for(manager.wait(), timeout=1)
    await manager.stop()
