from __future__ import annotations

import pytest

from chatrelay.errors import AuthError, WrongPairCodeError
from chatrelay.pairing import PAIR_CODE_LENGTH, TOKEN_LENGTH, UNAMBIGUOUS_ALPHABET, PairingAuthority


def test_wrong_code_never_pairs_and_never_locks_out() -> None:
    authority = PairingAuthority("ABC123")

    for attempt in ("abc123", "ABC124", "", "ABC1234"):
        with pytest.raises(WrongPairCodeError):
            authority.attempt_pair(attempt)

    assert authority.paired is False
    assert authority.attempt_pair("ABC123")


def test_missing_code_is_rejected() -> None:
    authority = PairingAuthority("ABC123")
    with pytest.raises(AuthError):
        authority.attempt_pair(None)
    assert authority.paired is False


def test_first_pairing_wins_and_token_is_stable() -> None:
    authority = PairingAuthority("ABC123")

    token = authority.attempt_pair("ABC123")
    assert authority.paired is True
    assert len(token) == TOKEN_LENGTH
    assert set(token) <= set(UNAMBIGUOUS_ALPHABET)

    assert authority.attempt_pair("ABC123") == token
    assert authority.attempt_pair("ABC123") == token


def test_wrong_code_after_pairing_keeps_existing_token() -> None:
    authority = PairingAuthority("ABC123")
    token = authority.attempt_pair("ABC123")

    with pytest.raises(WrongPairCodeError):
        authority.attempt_pair("ZZZ999")

    assert authority.authorize(token) is True


def test_authorize_requires_pairing_and_exact_token() -> None:
    authority = PairingAuthority("ABC123")
    assert authority.authorize("anything") is False
    assert authority.authorize(None) is False

    token = authority.attempt_pair("ABC123")
    assert authority.authorize(token) is True
    assert authority.authorize(token.lower()) is False
    assert authority.authorize(token + "X") is False
    assert authority.authorize("") is False
    assert authority.authorize("tökén") is False


def test_random_secret_uses_unambiguous_alphabet() -> None:
    authority = PairingAuthority()
    assert len(authority.secret_code) == PAIR_CODE_LENGTH
    assert not set(authority.secret_code) & set("0O1IL")
