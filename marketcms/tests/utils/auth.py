from __future__ import annotations

from uuid import uuid4

from marketcms.core.clock import utc_now
from marketcms.domain.models import User
from marketcms.persistence.db import SessionLocal
from marketcms.services.auth.passwords import hash_password
from marketcms.services.auth.tokens import TOKEN_TYPE_ACCESS, get_token_minter


DEFAULT_PASSWORD = "correct-horse-battery"


async def create_test_user(
    *,
    role: str = "viewer",
    email: str | None = None,
    password: str = DEFAULT_PASSWORD,
    name: str | None = None,
    is_active: bool = True,
) -> User:
    # Provision a user row directly so tests skip the admin API.
    now = utc_now()
    user = User(
        email=email or f"{role}-{uuid4().hex[:8]}@example.com",
        password_hash=hash_password(password, rounds=4),
        name=name or f"Test {role.title()}",
        role=role,
        is_active=is_active,
        created_at=now,
        updated_at=now,
    )
    async with SessionLocal() as session:
        session.add(user)
        await session.commit()
    return user


def auth_headers(user: User) -> dict[str, str]:
    token, _claims = get_token_minter().mint(
        user_id=user.id, email=user.email, role=user.role, token_type=TOKEN_TYPE_ACCESS
    )
    return {"Authorization": f"Bearer {token}"}


async def create_user_with_headers(role: str) -> tuple[User, dict[str, str]]:
    user = await create_test_user(role=role)
    return user, auth_headers(user)
