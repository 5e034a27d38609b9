"""Pairing secret and access token state."""

from __future__ import annotations

import hmac
import secrets
from dataclasses import dataclass

from loguru import logger

from chatrelay.errors import WrongPairCodeError

# No 0/O, 1/I/L so codes and tokens survive being read aloud or retyped.
UNAMBIGUOUS_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
PAIR_CODE_LENGTH = 6
TOKEN_LENGTH = 32


def random_code(length: int, alphabet: str = UNAMBIGUOUS_ALPHABET) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def _same(supplied: object, expected: str) -> bool:
    return hmac.compare_digest(str(supplied).encode("utf-8"), expected.encode("utf-8"))


@dataclass
class PairingState:
    secret_code: str
    paired: bool = False
    token: str | None = None


class PairingAuthority:
    """Owns the pairing code and the single token issued against it.

    The first correct pairing attempt wins; later correct attempts get the same token back
    so an already-connected client is never invalidated. There is no unpairing, rotation or
    expiry for the life of the process.
    """

    def __init__(self, secret_code: str | None = None) -> None:
        self._state = PairingState(secret_code=secret_code or random_code(PAIR_CODE_LENGTH))

    @property
    def secret_code(self) -> str:
        return self._state.secret_code

    @property
    def paired(self) -> bool:
        return self._state.paired

    def attempt_pair(self, supplied_code: str | None) -> str:
        if not supplied_code or not _same(supplied_code, self._state.secret_code):
            logger.info("pairing.rejected")
            raise WrongPairCodeError()
        if self._state.paired and self._state.token is not None:
            logger.info("pairing.repeat")
            return self._state.token

        token = random_code(TOKEN_LENGTH)
        self._state.token = token
        self._state.paired = True
        logger.info("pairing.paired")
        return token

    def authorize(self, supplied_token: str | None) -> bool:
        token = self._state.token
        if not self._state.paired or token is None or not supplied_token:
            return False
        return _same(supplied_token, token)
