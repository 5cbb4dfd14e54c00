"""
Seed script to create the first staff administrator.

Run this script after deployment to create:
- An admin staff user holding the team management permissions
- A fresh effective-permission pass over every staff user

Usage:
    uv run python -m scripts.seed_staff admin@example.com "Admin User"
"""
import asyncio
import sys
from datetime import timedelta

import jwt
from sqlalchemy import select

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.teams.service import TeamManagementService
from app.features.users.models import User
from app.utils import get_logger, utcnow


log = get_logger(__name__)

ADMIN_BASE_PERMISSIONS = ["manage_staff_roles", "manage_all_teams", "view_all_teams"]


def issue_dev_token(user_id: str, hours: int = 12) -> str:
    """Signed bearer token for local testing against this deployment's JWT_SECRET."""
    now = utcnow()
    payload = {"sub": user_id, "iat": now, "exp": now + timedelta(hours=hours)}
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


async def seed_admin(service: TeamManagementService, email: str, name: str) -> str:
    """
    Create the admin staff user unless one with this email already exists.

    Returns:
        The admin's user id
    """
    async with service.session_factory() as db:
        result = await db.execute(select(User).where(User.email == email))
        existing = result.scalars().first()
    if existing:
        log.info(f"User '{email}' already exists, skipping")
        return existing.id

    change = await service.register_staff_user(email, name, ADMIN_BASE_PERMISSIONS, actor="seed")
    log.info(f"Created admin staff user {email} ({change.user_id})")
    return change.user_id


async def main(email: str, name: str):
    """Main function to seed the admin and recalculate permissions."""
    log.info("Starting staff seeding...")

    log.info("Initializing database tables...")
    await init_db()

    service = TeamManagementService(AsyncSessionLocal)
    admin_id = await seed_admin(service, email, name)

    summary = await service.recalculate_all_staff_permissions(actor="seed")
    log.info(f"Recalculated {summary.processed}/{summary.total} staff users, {summary.changed} changed")
    for error in summary.errors:
        log.warning(f"  - {error['userId']}: {error['error']} ({error['detail']})")

    log.info("Staff seeding completed successfully!")
    log.info(f"Bearer token for {email}: {issue_dev_token(admin_id)}")


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print("Usage: python -m scripts.seed_staff <email> <name>")
        sys.exit(1)
    asyncio.run(main(sys.argv[1], sys.argv[2]))
