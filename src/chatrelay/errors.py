"""Application-level exception types for chatrelay."""

from __future__ import annotations

from collections.abc import Mapping


class ChatRelayError(Exception):
    """Base exception for chatrelay."""


class ConfigurationError(ChatRelayError):
    """Raised when settings or startup validation fail."""


class AuthError(ChatRelayError):
    """Base exception for pairing and token failures."""


class WrongPairCodeError(AuthError):
    """Raised when a pairing attempt supplies the wrong code."""

    def __init__(self) -> None:
        super().__init__("Invalid pair code")


class InvalidTokenError(AuthError):
    """Raised when a bearer token is missing, malformed or unknown."""

    def __init__(self) -> None:
        super().__init__("Unauthorized")


class EngineError(ChatRelayError):
    """Base exception for chat engine failures."""


class EngineUnavailableError(EngineError):
    """Raised at startup when no chat engine answers its health probe."""

    def __init__(self, probes: Mapping[str, bool]) -> None:
        self.probes = dict(probes)
        tried = ", ".join(f"{name}={'up' if ok else 'down'}" for name, ok in self.probes.items())
        super().__init__(f"No chat engine is available ({tried})")


class NotFoundError(ChatRelayError):
    """Raised when a requested conversation does not exist."""


class MalformedPayloadError(ChatRelayError):
    """Raised when an inbound request body or frame is not valid JSON."""
