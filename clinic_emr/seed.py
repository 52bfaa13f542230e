"""Bootstrap the first super master admin so a fresh deployment has someone to log in as.

Usage:
    SEED_ADMIN_PASSWORD=... python -m clinic_emr.seed
"""

import asyncio
from typing import Optional

from clinic_emr.config import settings
from clinic_emr.core.logging import logger
from clinic_emr.database import Database
from clinic_emr.features.auth.models import User
from clinic_emr.features.auth.service import AuthService


async def seed_super_admin(
    email: Optional[str] = None,
    password: Optional[str] = None,
    name: Optional[str] = None,
) -> User:
    """Create the super master admin, or return the existing account with that email."""
    email = email or settings.SEED_ADMIN_EMAIL
    password = password or settings.SEED_ADMIN_PASSWORD
    name = name or settings.SEED_ADMIN_NAME

    existing = await AuthService.get_user_by_email(email)
    if existing:
        logger.info(f"Super admin {email} already exists, nothing to seed")
        return existing

    if not password:
        raise ValueError("SEED_ADMIN_PASSWORD must be set to create the super admin")

    return await AuthService.create_user(
        email=email,
        password=password,
        name=name,
        role="super_master_admin",
    )


async def main():
    await Database.connect_db()
    try:
        user = await seed_super_admin()
        logger.info(f"🌱 Seeded super admin {user.email}")
    finally:
        await Database.close_db()


if __name__ == "__main__":
    asyncio.run(main())
