"""Plan-based limits on scans and removals."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from engine.db.database import utcnow
from engine.errors import PlanLimitError
from engine.models.scan import ScanRun, ScanType
from engine.models.user import PlanTier

# User-started scans per calendar month; None means unlimited
MONTHLY_SCAN_LIMITS: dict[PlanTier, Optional[int]] = {
    PlanTier.FREE: 1,
    PlanTier.PRO: 10,
    PlanTier.ENTERPRISE: None,
}

ALLOWED_SCAN_TYPES: dict[PlanTier, set[ScanType]] = {
    PlanTier.FREE: {ScanType.QUICK, ScanType.FULL},
    PlanTier.PRO: {ScanType.QUICK, ScanType.FULL, ScanType.MONITORING},
    PlanTier.ENTERPRISE: {ScanType.QUICK, ScanType.FULL, ScanType.MONITORING},
}

BULK_REMOVAL_PLANS = {PlanTier.PRO, PlanTier.ENTERPRISE}


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


async def count_scans_this_month(db: AsyncSession, user_id: UUID, now: Optional[datetime] = None) -> int:
    """User-started scans since the first of the month. Monitoring runs are not counted."""
    result = await db.execute(
        select(func.count(ScanRun.id)).where(
            ScanRun.user_id == user_id,
            ScanRun.scan_type != ScanType.MONITORING,
            ScanRun.started_at >= month_start(now or utcnow()),
        )
    )
    return result.scalar_one()


def check_scan_allowed(plan: PlanTier, scan_type: ScanType, scans_this_month: int) -> None:
    plan, scan_type = PlanTier(plan), ScanType(scan_type)
    if scan_type not in ALLOWED_SCAN_TYPES[plan]:
        raise PlanLimitError(f"{scan_type.value} scans are not available on the {plan.value} plan")

    if scan_type == ScanType.MONITORING:
        return
    limit = MONTHLY_SCAN_LIMITS[plan]
    if limit is not None and scans_this_month >= limit:
        raise PlanLimitError(f"Monthly scan limit of {limit} reached for the {plan.value} plan")


def check_bulk_removal_allowed(plan: PlanTier) -> None:
    if PlanTier(plan) not in BULK_REMOVAL_PLANS:
        raise PlanLimitError("Bulk removal requires a PRO or ENTERPRISE plan")
