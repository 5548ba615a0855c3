import asyncio
import logging

from sqlalchemy import select

from bsaas_auth.core.logging import configure_logging
from bsaas_auth.core.permissions import DEFAULT_ROLE_DESCRIPTIONS, UserRole
from bsaas_auth.core.security import get_password_hash
from bsaas_auth.core.settings import settings
from bsaas_auth.db.session import AsyncSessionLocal
from bsaas_auth.models import Role, User
from bsaas_auth.repositories.orm import SqlAlchemyUserRepository

logger = logging.getLogger(__name__)


async def seed_roles(session) -> None:
    result = await session.execute(select(Role.name))
    existing = set(result.scalars().all())
    for name, description in DEFAULT_ROLE_DESCRIPTIONS.items():
        if name not in existing:
            session.add(Role(name=name, description=description))
    await session.commit()


async def init_db() -> None:
    """Seed the built-in roles and, when configured, an admin account."""
    async with AsyncSessionLocal() as session:
        logger.info("Seeding database")
        await seed_roles(session)
        if not (settings.seed_admin_email and settings.seed_admin_password):
            return
        result = await session.execute(select(User).where(User.email == settings.seed_admin_email))
        if result.scalar_one_or_none() is not None:
            logger.info("Admin user already exists")
            return
        await SqlAlchemyUserRepository(session).create(
            settings.seed_admin_email,
            password_hash=get_password_hash(settings.seed_admin_password),
            name=settings.seed_admin_name,
            role_names=[UserRole.ADMIN.value],
        )
        logger.info("Admin user created")


if __name__ == "__main__":
    configure_logging()
    asyncio.run(init_db())
