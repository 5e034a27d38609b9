"""Application runtime package."""

from chatrelay.app.bootstrap import build_runtime
from chatrelay.app.runtime import GatewayRuntime

__all__ = ["GatewayRuntime", "build_runtime"]
