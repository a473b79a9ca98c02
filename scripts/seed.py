from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
import os

from sqlalchemy import select

from marketcms.core.clock import utc_now
from marketcms.domain.models import Category, User
from marketcms.persistence.db import SessionLocal
from marketcms.persistence.repos import users as users_repo
from marketcms.services.auth.passwords import hash_password_async
from marketcms.services.authz import ROLE_ADMIN, ROLES


@dataclass(frozen=True)
class SeedCategory:
    name: str
    slug: str
    description: str


SEED_CATEGORIES = (
    SeedCategory("Pharmaceuticals", "pharmaceuticals", "Drug development, pipelines and pricing."),
    SeedCategory("Medical Devices", "medical-devices", "Diagnostic, surgical and monitoring equipment."),
    SeedCategory("Biotechnology", "biotechnology", "Biologics, gene therapy and cell therapy markets."),
    SeedCategory("Healthcare IT", "healthcare-it", "Electronic records, telehealth and health analytics."),
    SeedCategory("Diagnostics", "diagnostics", "In-vitro diagnostics and imaging."),
)


async def _seed_admin(session, *, email: str, password: str, name: str) -> None:
    existing = await users_repo.get_user_by_email(session, email=email)
    if existing is not None:
        print(f"admin_exists email={existing.email}")
        return
    now = utc_now()
    session.add(
        User(
            email=email,
            password_hash=await hash_password_async(password),
            name=name,
            role=ROLE_ADMIN,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
    )
    print(f"admin_created email={email}")


async def _seed_categories(session) -> None:
    result = await session.execute(select(Category.slug))
    existing = set(result.scalars().all())
    now = utc_now()
    created = 0
    for item in SEED_CATEGORIES:
        if item.slug in existing:
            continue
        session.add(
            Category(
                name=item.name,
                slug=item.slug,
                description=item.description,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
        )
        created += 1
    print(f"categories_created={created}")


async def seed(*, email: str, password: str, name: str) -> None:
    # Roles are static; check the catalogue is intact before writing anything.
    missing = {"admin", "editor", "viewer"} - set(ROLES)
    if missing:
        raise SystemExit(f"role catalogue incomplete missing={sorted(missing)}")
    async with SessionLocal() as session:
        await _seed_admin(session, email=email, password=password, name=name)
        await _seed_categories(session)
        await session.commit()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the admin user and sample categories")
    parser.add_argument("--email", default=os.getenv("SEED_ADMIN_EMAIL", "admin@example.com"))
    parser.add_argument("--password", default=os.getenv("SEED_ADMIN_PASSWORD"))
    parser.add_argument("--name", default="Administrator")
    args = parser.parse_args()
    if not args.password:
        parser.error("--password (or SEED_ADMIN_PASSWORD) is required")
    asyncio.run(seed(email=args.email, password=args.password, name=args.name))


if __name__ == "__main__":
    main()
