"""Network-facing channels."""

from chatrelay.channels.base import BaseChannel
from chatrelay.channels.http import HttpChannel, create_app
from chatrelay.channels.manager import ChannelManager
from chatrelay.channels.relay import RelayChannel, RelayState

__all__ = [
    "BaseChannel",
    "ChannelManager",
    "HttpChannel",
    "RelayChannel",
    "RelayState",
    "create_app",
]
