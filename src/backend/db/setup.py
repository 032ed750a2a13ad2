"""
Database setup module for initializing default values.

Seeds a default team and an administrator so a fresh deployment can be
used right away. Every step is idempotent.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db import Team, User, UserRole

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class DatabaseSetup:
    """Handles database initialization and default data setup."""

    def __init__(self):
        self.team_name = os.getenv("DEFAULT_TEAM_NAME", "Default team")
        self.admin_email = os.getenv("ADMIN_EMAIL", "admin@seido.local")
        self.admin_full_name = os.getenv("ADMIN_FULL_NAME", "System Administrator")

        logger.info("Database setup initialized with admin config:")
        logger.info(f"  Admin email: {self.admin_email}")
        logger.info(f"  Default team: {self.team_name}")

    async def create_default_team(self, db: AsyncSession) -> Optional[Team]:
        """Create the default team unless one with that name exists."""
        result = await db.execute(select(Team).where(Team.name == self.team_name))
        team = result.scalars().first()
        if team:
            logger.info(f"Team '{self.team_name}' already exists, skipping...")
            return team

        team = Team(name=self.team_name)
        db.add(team)
        await db.flush()
        logger.info(f"✅ Created team: {self.team_name}")
        return team

    async def create_admin_user(self, db: AsyncSession, team: Team) -> User:
        """Create the administrator account unless the email is taken."""
        result = await db.execute(select(User).where(User.email == self.admin_email))
        admin = result.scalar_one_or_none()
        if admin:
            logger.info(f"User '{self.admin_email}' already exists, skipping...")
            return admin

        admin = User(
            email=self.admin_email,
            full_name=self.admin_full_name,
            role=UserRole.ADMIN,
            team_id=team.id,
        )
        db.add(admin)
        await db.flush()
        logger.info(f"✅ Created admin user: {self.admin_email}")
        return admin

    async def run_setup(self, db: AsyncSession) -> bool:
        """
        Run every seeding step in one transaction.

        Returns:
            True if setup was successful, False otherwise
        """
        try:
            team = await self.create_default_team(db)
            await self.create_admin_user(db, team)
            await db.commit()
            logger.info("✅ Default data seeded successfully")
            return True

        except Exception as e:
            logger.error(f"❌ Failed to seed default data: {str(e)}")
            await db.rollback()
            return False


database_setup = DatabaseSetup()


async def setup_database_default_data(db: AsyncSession) -> bool:
    """
    Convenience function to setup database default data.

    Args:
        db: Database session

    Returns:
        True if setup was successful, False otherwise
    """
    return await database_setup.run_setup(db)
