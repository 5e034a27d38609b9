"""chatrelay - relay a local chat engine over HTTP/SSE and a broker socket."""

from chatrelay.pairing import PairingAuthority
from chatrelay.session import SessionCorrelator, run_turn
from chatrelay.types import ChatTurnRequest, Envelope

__version__ = "0.1.0"

__all__ = ["ChatTurnRequest", "Envelope", "PairingAuthority", "SessionCorrelator", "run_turn"]
