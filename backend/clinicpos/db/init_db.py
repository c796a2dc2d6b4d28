import asyncio
import logging
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.core.config import settings
from clinicpos.core.security import get_password_hash
from clinicpos.db.base import Base
from clinicpos.db.session import engine, SessionLocal

# Every model must be imported so its table is registered on Base.metadata
from clinicpos.models import (
    User, Patient, Supplier, Product, BlendTemplate, BlendIngredient,
    Bundle, BundleItem, Transaction, TransactionItem, InventoryMovement,
    Refund, AuditLog, Counter
)

logger = logging.getLogger(__name__)


async def ensure_tables_exist() -> None:
    """
    Create missing tables (called on startup)
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def seed_superuser(db: AsyncSession) -> bool:
    """Create the first super admin when the user table is empty"""
    result = await db.execute(select(User.id).limit(1))
    if result.scalar() is not None:
        return False

    db.add(User(
        username=settings.FIRST_SUPERUSER,
        email=settings.FIRST_SUPERUSER_EMAIL,
        password=get_password_hash(settings.FIRST_SUPERUSER_PASSWORD),
        full_name="Administrator",
        role="super_admin",
        is_active=True))
    await db.commit()
    logger.info(f"Created initial super admin '{settings.FIRST_SUPERUSER}'")
    return True


async def init_db() -> None:
    await ensure_tables_exist()
    async with SessionLocal() as db:
        await seed_superuser(db)


if __name__ == "__main__":
    asyncio.run(init_db())
