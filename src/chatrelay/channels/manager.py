"""Channel manager."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from loguru import logger

from chatrelay.channels.base import BaseChannel


class ChannelManager:
    """Start, supervise and stop the registered channels."""

    def __init__(self) -> None:
        self._channels: dict[str, BaseChannel] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def register(self, channel: BaseChannel) -> None:
        self._channels[channel.name] = channel

    def enabled_channels(self) -> Iterable[str]:
        return self._channels.keys()

    async def start(self) -> None:
        for name, channel in self._channels.items():
            logger.info("channel.start name={}", name)
            self._tasks[name] = asyncio.create_task(channel.start(), name=f"channel:{name}")

    async def wait(self) -> None:
        """Block until any channel task exits."""
        if not self._tasks:
            return
        done, _ = await asyncio.wait(self._tasks.values(), return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.opt(exception=task.exception()).error("channel.crashed task={}", task.get_name())

    async def stop(self) -> None:
        for name, channel in self._channels.items():
            try:
                await channel.stop()
            except Exception:
                logger.exception("channel.stop.error name={}", name)
        for task in self._tasks.values():
            task.cancel()
        for task in self._tasks.values():
            try:
                await task
            except asyncio.CancelledError:
                continue
            except Exception:
                logger.exception("channel.task.error task={}", task.get_name())
        self._tasks.clear()
