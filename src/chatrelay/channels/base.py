"""Base channel interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from chatrelay.app.runtime import GatewayRuntime


class BaseChannel(ABC):
    """Abstract base class for network-facing transports."""

    name: str = "base"

    def __init__(self, runtime: GatewayRuntime) -> None:
        self.runtime = runtime

    @abstractmethod
    async def start(self) -> None:
        """Run the channel until `stop` is called."""

    @abstractmethod
    async def stop(self) -> None:
        """Release every socket and timer the channel owns."""
