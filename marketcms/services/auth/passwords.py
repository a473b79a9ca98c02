from __future__ import annotations

import asyncio

import bcrypt

from marketcms.core.config import get_settings
from marketcms.core.errors import BadRequestError, InternalError, PasswordTooShortError


MIN_PASSWORD_LENGTH = 8
# bcrypt only reads the first 72 bytes and newer releases reject anything longer.
MAX_PASSWORD_BYTES = 72


def hash_password(plaintext: str, *, rounds: int | None = None) -> str:
    # bcrypt embeds algorithm and cost in the hash so the cost can change without a migration.
    if len(plaintext) < MIN_PASSWORD_LENGTH:
        raise PasswordTooShortError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    encoded = plaintext.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise BadRequestError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
    cost = rounds if rounds is not None else get_settings().bcrypt_rounds
    try:
        salt = bcrypt.gensalt(rounds=cost)
    except ValueError as exc:
        # A misconfigured cost is a server fault, not a client one.
        raise InternalError(f"invalid bcrypt cost: {cost}") from exc
    hashed = bcrypt.hashpw(encoded, salt)
    return hashed.decode("utf-8")


def verify_password(password_hash: str, plaintext: str) -> bool:
    try:
        return bcrypt.checkpw(plaintext.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


async def hash_password_async(plaintext: str) -> str:
    # Hashing is CPU-bound; keep it off the event loop.
    return await asyncio.to_thread(hash_password, plaintext)


async def verify_password_async(password_hash: str, plaintext: str) -> bool:
    return await asyncio.to_thread(verify_password, password_hash, plaintext)
