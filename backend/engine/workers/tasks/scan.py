"""Scan tasks."""

import asyncio
import logging
from uuid import UUID

from celery import shared_task
from sqlalchemy import select

from engine.errors import ConflictError, PlanLimitError, ProfileMissingError, ScanFailedError
from engine.models.exposure import Exposure
from engine.models.scan import ScanType
from engine.models.user import PlanTier, User
from engine.services.scan_pipeline import execute_scan, recover_stale_scans as recover_stale, start_scan
from engine.workers.session import worker_session

logger = logging.getLogger(__name__)

MONITORED_PLANS = [PlanTier.PRO, PlanTier.ENTERPRISE]


@shared_task(name="scan.run_user_scan", bind=True)
def run_user_scan(self, scan_run_id: str):
    """Execute a scan run created by the API."""
    return asyncio.run(_run_user_scan_async(UUID(scan_run_id)))


async def _run_user_scan_async(scan_run_id: UUID) -> dict:
    async with worker_session() as db:
        try:
            run = await execute_scan(db, scan_run_id)
        except ScanFailedError:
            return {"scan_id": str(scan_run_id), "status": "FAILED"}

        return {
            "scan_id": str(run.id),
            "status": run.status.value,
            "sources_checked": run.sources_checked,
            "new_exposures": run.new_exposures,
        }


@shared_task(name="scan.recover_stale_scans")
def recover_stale_scans():
    return asyncio.run(_recover_stale_scans_async())


async def _recover_stale_scans_async() -> dict:
    async with worker_session() as db:
        recovered = await recover_stale(db)
        await db.commit()
        return {"recovered": recovered}


@shared_task(name="scan.schedule_monitoring_scans")
def schedule_monitoring_scans():
    """Daily monitoring re-scan for paid users with exposure history."""
    return asyncio.run(_schedule_monitoring_scans_async())


async def _schedule_monitoring_scans_async() -> dict:
    async with worker_session() as db:
        started = await start_monitoring_scans(db)

    for scan_id in started:
        run_user_scan.delay(str(scan_id))
    return {"scheduled": len(started)}


async def start_monitoring_scans(db) -> list[UUID]:
    """Start a MONITORING run for every eligible user; returns the new scan ids."""
    result = await db.execute(
        select(User)
        .where(
            User.is_active.is_(True),
            User.plan.in_(MONITORED_PLANS),
            User.id.in_(select(Exposure.user_id).distinct()),
        )
        .order_by(User.created_at)
    )
    users = list(result.scalars().all())

    started = []
    for user in users:
        try:
            run = await start_scan(db, user, ScanType.MONITORING)
        except (ConflictError, PlanLimitError, ProfileMissingError) as e:
            logger.info("Skipping monitoring scan for user %s: %s", user.id, e)
            continue
        await db.commit()
        started.append(run.id)

    logger.info("Started %d monitoring scans for %d eligible users", len(started), len(users))
    return started
