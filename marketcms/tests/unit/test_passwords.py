from __future__ import annotations

import pytest

from marketcms.core.errors import BadRequestError, InternalError, PasswordTooShortError
from marketcms.services.auth.passwords import (
    hash_password,
    hash_password_async,
    verify_password,
    verify_password_async,
)


def test_hash_verifies_and_embeds_cost() -> None:
    hashed = hash_password("correct-horse", rounds=4)
    assert hashed.startswith("$2b$04$")
    assert verify_password(hashed, "correct-horse")
    assert not verify_password(hashed, "wrong-horse")


def test_hashes_are_salted() -> None:
    assert hash_password("correct-horse", rounds=4) != hash_password("correct-horse", rounds=4)


def test_short_passwords_are_rejected() -> None:
    with pytest.raises(PasswordTooShortError):
        hash_password("short", rounds=4)


def test_passwords_beyond_bcrypt_limit_are_rejected() -> None:
    with pytest.raises(BadRequestError):
        hash_password("x" * 73, rounds=4)
    assert hash_password("x" * 72, rounds=4).startswith("$2b$04$")


def test_misconfigured_cost_is_an_internal_error() -> None:
    with pytest.raises(InternalError):
        hash_password("correct-horse", rounds=99)


def test_malformed_hash_never_verifies() -> None:
    assert verify_password("not-a-bcrypt-hash", "anything-long") is False


@pytest.mark.asyncio
async def test_async_variants_use_configured_rounds() -> None:
    # BCRYPT_ROUNDS is pinned to 4 for the test session.
    hashed = await hash_password_async("correct-horse")
    assert hashed.startswith("$2b$04$")
    assert await verify_password_async(hashed, "correct-horse")
