"""System API: scheduler status and manual job runs"""

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from clinicpos.api.api_v1.endpoints.audit_logs import create_audit_log
from clinicpos.core.config import settings
from clinicpos.core.deps import get_db, require_roles
from clinicpos.models.user import User
from clinicpos.services import scheduler as scheduler_service

router = APIRouter()


@router.get("/scheduler")
async def get_scheduler(*, current_user: User = Depends(require_roles("admin"))) -> Any:
    """Scheduler state and next run times"""
    return {
        "membership_expiry": {
            "enabled": settings.MEMBERSHIP_EXPIRY_ENABLED,
            "schedule": f"Daily {settings.MEMBERSHIP_EXPIRY_HOUR:02d}:{settings.MEMBERSHIP_EXPIRY_MINUTE:02d} "
                        f"({settings.BUSINESS_TIMEZONE})",
        },
        "scheduler": scheduler_service.get_scheduler_status()
    }


@router.post("/membership-expiry/run")
async def run_membership_expiry(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles("admin"))) -> Any:
    """Expire lapsed membership discounts now"""
    expired = await scheduler_service.expire_membership_discounts()
    await create_audit_log(
        db, current_user.id, "expire", "patient",
        description=f"Manual membership expiry run: {expired} patient(s)")
    await db.commit()
    return {"message": "Membership expiry completed", "expired_count": expired}
