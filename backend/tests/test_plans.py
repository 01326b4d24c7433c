"""Plan limits."""

from datetime import datetime

import pytest

from engine.errors import PlanLimitError
from engine.models import PlanTier, ScanRun, ScanStatus, ScanType
from engine.services.plans import (
    check_bulk_removal_allowed,
    check_scan_allowed,
    count_scans_this_month,
    month_start,
)


class TestScanLimits:
    def test_free_plan_gets_one_scan_a_month(self):
        check_scan_allowed(PlanTier.FREE, ScanType.FULL, 0)
        with pytest.raises(PlanLimitError, match="Monthly scan limit of 1"):
            check_scan_allowed(PlanTier.FREE, ScanType.QUICK, 1)

    def test_enterprise_is_unlimited(self):
        check_scan_allowed(PlanTier.ENTERPRISE, ScanType.FULL, 10_000)

    def test_monitoring_is_plan_gated_but_uncapped(self):
        with pytest.raises(PlanLimitError):
            check_scan_allowed(PlanTier.FREE, ScanType.MONITORING, 0)
        check_scan_allowed(PlanTier.PRO, ScanType.MONITORING, 500)

    def test_accepts_raw_values(self):
        with pytest.raises(PlanLimitError):
            check_scan_allowed("PRO", "FULL", 10)

    def test_bulk_removal(self):
        with pytest.raises(PlanLimitError):
            check_bulk_removal_allowed(PlanTier.FREE)
        check_bulk_removal_allowed(PlanTier.PRO)

    def test_month_start(self):
        assert month_start(datetime(2026, 5, 17, 8, 30, 12)) == datetime(2026, 5, 1)


@pytest.mark.asyncio
async def test_count_skips_monitoring_and_earlier_months(db, make_user):
    user = await make_user(plan=PlanTier.PRO)
    runs = [
        (ScanType.FULL, datetime(2026, 5, 2)),
        (ScanType.QUICK, datetime(2026, 5, 3)),
        (ScanType.MONITORING, datetime(2026, 5, 3)),
        (ScanType.FULL, datetime(2026, 4, 28)),
    ]
    for scan_type, started_at in runs:
        db.add(ScanRun(
            user_id=user.id,
            scan_type=scan_type,
            plan_tier=PlanTier.PRO,
            status=ScanStatus.COMPLETED,
            started_at=started_at,
        ))
    await db.flush()

    assert await count_scans_this_month(db, user.id, now=datetime(2026, 5, 20)) == 2
