"""
Scheduled jobs (APScheduler).

Only one job today: clear membership discounts whose end date has passed.
"""

import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import select, and_

from clinicpos.core.config import settings
from clinicpos.db import session as db_session
from clinicpos.models.audit_log import AuditLog
from clinicpos.models.patient import Patient

logger = logging.getLogger(__name__)

scheduler: Optional[AsyncIOScheduler] = None

MEMBERSHIP_EXPIRY_JOB_ID = "membership_discount_expiry"


async def expire_membership_discounts(now: Optional[datetime] = None) -> int:
    """
    Zero the discount of every patient whose discount_end_date is in the past.

    The membership tier is kept. Returns the number of patients changed.
    """
    now = now or datetime.utcnow()
    async with db_session.SessionLocal() as db:
        result = await db.execute(
            select(Patient).where(and_(
                Patient.discount_end_date.isnot(None),
                Patient.discount_end_date < now,
                Patient.discount_percentage > 0,
            ))
        )
        patients = result.scalars().all()

        for patient in patients:
            old_percentage = float(patient.discount_percentage or 0)
            patient.discount_percentage = 0
            patient.discount_reason = f"Membership discount expired on {patient.discount_end_date:%Y-%m-%d}"
            patient.updated_at = now
            db.add(AuditLog(
                user_id=None,
                action="expire",
                resource_type="patient",
                resource_id=patient.id,
                resource_name=patient.full_name,
                description="Membership discount expired",
                old_value={"discount_percentage": old_percentage},
                new_value={"discount_percentage": 0},
                created_at=now))

        await db.commit()

    if patients:
        logger.info(f"Expired membership discounts for {len(patients)} patient(s)")
    return len(patients)


async def _run_membership_expiry():
    try:
        await expire_membership_discounts()
    except Exception as e:
        logger.error(f"Membership discount expiry failed: {e}", exc_info=True)


def init_scheduler():
    global scheduler

    if not settings.MEMBERSHIP_EXPIRY_ENABLED:
        logger.info("Membership discount expiry is disabled")
        return

    scheduler = AsyncIOScheduler(timezone=settings.BUSINESS_TIMEZONE)
    scheduler.add_job(
        _run_membership_expiry,
        trigger=CronTrigger(
            hour=settings.MEMBERSHIP_EXPIRY_HOUR,
            minute=settings.MEMBERSHIP_EXPIRY_MINUTE
        ),
        id=MEMBERSHIP_EXPIRY_JOB_ID,
        name="Membership discount expiry",
        replace_existing=True
    )

    scheduler.start()
    logger.info(
        f"Scheduler started - membership expiry daily at "
        f"{settings.MEMBERSHIP_EXPIRY_HOUR:02d}:{settings.MEMBERSHIP_EXPIRY_MINUTE:02d}"
    )


def shutdown_scheduler():
    global scheduler
    if scheduler:
        scheduler.shutdown()
        scheduler = None
        logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    if not scheduler:
        return {
            "enabled": settings.MEMBERSHIP_EXPIRY_ENABLED,
            "running": False,
            "jobs": []
        }

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None
        })

    return {
        "enabled": settings.MEMBERSHIP_EXPIRY_ENABLED,
        "running": scheduler.running,
        "jobs": jobs
    }
