"""
Seed script to populate one development user per role.

Run this script after database initialization to create a user for every
role and print a session token for each, ready to paste into an
`Authorization: Bearer` header.

Usage:
    uv run python -m scripts.seed_users
"""
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.permissions.roles import Role
from app.features.users.auth import issue_session_token
from app.features.users.models import User
from app.utils import get_logger, setup_logging


log = get_logger(__name__)


DEFAULT_USERS = [
    # (email, name, role)
    ("admin@example.com", "Admin User", Role.ADMIN),
    ("director@example.com", "Director User", Role.DIRECTOR),
    ("team@example.com", "Team Member", Role.TEAM),
    ("client@example.com", "Client User", Role.CLIENT),
    ("builder@example.com", "Builder User", Role.BUILDER),
]


async def seed_users(db: AsyncSession) -> dict[str, User]:
    """
    Create default users.

    Returns:
        Dictionary mapping emails to User objects
    """
    log.info("Creating default users...")
    users_map = {}

    for email, name, role in DEFAULT_USERS:
        # Check if user already exists
        stmt = select(User).where(User.email == email)
        result = await db.execute(stmt)
        existing = result.scalars().first()

        if existing:
            log.debug(f"User '{email}' already exists, skipping")
            users_map[email] = existing
            continue

        user = User(email=email, name=name, role=role.value)
        db.add(user)
        users_map[email] = user

    await db.commit()
    log.info(f"Created {len(users_map)} default users")
    return users_map


async def main():
    """Main function to seed users."""
    setup_logging("INFO")
    log.info("Starting user seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    # Get database session
    async for db in get_db():
        try:
            users_map = await seed_users(db)

            log.info("User seeding completed successfully!")
            log.info("")
            log.info("Development session tokens (valid 1 hour):")
            for email, user in users_map.items():
                log.info(f"  - {email} ({user.role}): {issue_session_token(user.id)}")

        except Exception as e:
            log.error(f"Error seeding users: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
