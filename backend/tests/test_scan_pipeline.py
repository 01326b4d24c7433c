"""Scan pipeline: starting runs, executing them and resolving hits into exposures."""

import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from engine.errors import (
    ConflictError,
    ConflictReason,
    NotFoundError,
    PlanLimitError,
    ProfileMissingError,
    ScanFailedError,
)
from engine.models import (
    Exposure,
    ExposureStatus,
    PlanTier,
    RemovalRequest,
    ScannerOutcomeLog,
    ScanStatus,
    ScanType,
)
from engine.services import scan_pipeline
from engine.services.confidence import ConfidenceResult, classify
from engine.services.scan_pipeline import execute_scan, recover_stale_scans, start_scan
from sources.base import OutcomeStatus, CheckResult, RawHit, ScannerType, SourceScanner

NOW = datetime(2026, 5, 4, 12, 0)


class StubScanner(SourceScanner):
    scanner_type = ScannerType.STATIC_BROKER

    def __init__(self, name, source, hits=(), exc=None):
        self.name = name
        self.source = source
        self.hits = list(hits)
        self.exc = exc

    async def check(self, identity):
        if self.exc:
            raise self.exc
        return CheckResult(OutcomeStatus.SUCCESS, hits=self.hits)


class ScoreBySource:
    def __init__(self, scores):
        self.scores = scores

    def score(self, hit, identity):
        value = self.scores[hit.source]
        return ConfidenceResult(score=value, classification=classify(value))


def spokeo_hit(preview="J*** D** - Austin, TX"):
    return RawHit(source="SPOKEO", source_name="Spokeo", data_type="COMBINED_PROFILE", data_preview=preview)


async def exposures_of(db, user):
    result = await db.execute(select(Exposure).where(Exposure.user_id == user.id).order_by(Exposure.source))
    return list(result.scalars().all())


async def count(db, model, **filters):
    query = select(func.count()).select_from(model)
    for column, value in filters.items():
        query = query.where(getattr(model, column) == value)
    return (await db.execute(query)).scalar_one()


class TestStartScan:
    @pytest.mark.asyncio
    async def test_creates_in_progress_run(self, db, make_user, make_profile):
        user = await make_user()
        await make_profile(user)

        run = await start_scan(db, user, ScanType.FULL, now=NOW)

        assert run.status == ScanStatus.IN_PROGRESS
        assert run.plan_tier == PlanTier.FREE
        assert run.started_at == NOW

    @pytest.mark.asyncio
    async def test_one_running_scan_per_user(self, db, make_user, make_profile):
        user = await make_user(plan=PlanTier.PRO)
        await make_profile(user)
        await start_scan(db, user, ScanType.QUICK, now=NOW)

        with pytest.raises(ConflictError) as exc:
            await start_scan(db, user, ScanType.QUICK, now=NOW + timedelta(minutes=5))
        assert exc.value.reason == ConflictReason.SCAN_IN_PROGRESS

    @pytest.mark.asyncio
    async def test_stale_run_is_recovered_before_starting(self, db, make_user, make_profile):
        user = await make_user(plan=PlanTier.PRO)
        await make_profile(user)
        stuck = await start_scan(db, user, ScanType.QUICK, now=NOW)

        fresh = await start_scan(db, user, ScanType.QUICK, now=NOW + timedelta(hours=2))

        assert stuck.status == ScanStatus.FAILED
        assert "in progress" in stuck.error
        assert fresh.status == ScanStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_recovery_leaves_recent_runs_alone(self, db, make_user, make_profile):
        user = await make_user()
        await make_profile(user)
        run = await start_scan(db, user, ScanType.QUICK, now=NOW)

        assert await recover_stale_scans(db, now=NOW + timedelta(minutes=10)) == 0
        assert run.status == ScanStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_free_plan_monthly_limit(self, db, make_user, make_profile):
        user = await make_user()
        await make_profile(user)
        first = await start_scan(db, user, ScanType.FULL, now=NOW)
        first.status = ScanStatus.COMPLETED
        await db.flush()

        with pytest.raises(PlanLimitError):
            await start_scan(db, user, ScanType.FULL, now=NOW + timedelta(days=1))

        # A new month resets the count
        next_month = await start_scan(db, user, ScanType.FULL, now=datetime(2026, 6, 1, 9, 0))
        assert next_month.status == ScanStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_free_plan_cannot_monitor(self, db, make_user, make_profile):
        user = await make_user()
        await make_profile(user)
        with pytest.raises(PlanLimitError):
            await start_scan(db, user, ScanType.MONITORING, now=NOW)

    @pytest.mark.asyncio
    async def test_profile_required(self, db, make_user):
        user = await make_user()
        with pytest.raises(ProfileMissingError):
            await start_scan(db, user, ScanType.FULL)


class TestExecuteScan:
    @pytest.mark.asyncio
    async def test_every_hit_is_stored_but_only_confident_ones_proceed(
        self, db, make_user, make_profile, notifier
    ):
        """Hits scoring 95, 55 and 20 all become exposures; only the 95 gets a removal."""
        user = await make_user()
        await make_profile(user)
        run = await start_scan(db, user, ScanType.FULL)
        manual_hit = RawHit(
            source="PEOPLEFINDERS",
            source_name="PeopleFinders",
            data_type="COMBINED_PROFILE",
            data_preview="Manual check required - J*** D**",
            manual_check_required=True,
            listing={"emails": ["jane.doe@example.com"]},
        )
        scanners = (
            StubScanner("PeopleFinders", "PEOPLEFINDERS", [manual_hit]),
            StubScanner("Spokeo", "SPOKEO", [spokeo_hit()]),
            StubScanner("Radaris", "RADARIS", [
                RawHit(source="RADARIS", source_name="Radaris", data_type="COMBINED_PROFILE", data_preview="J*** D**"),
            ]),
        )
        scorer = ScoreBySource({"PEOPLEFINDERS": 95, "SPOKEO": 55, "RADARIS": 20})

        await execute_scan(db, run.id, scanners=scanners, scorer=scorer)

        peoplefinders, radaris, spokeo = await exposures_of(db, user)
        assert peoplefinders.requires_manual_action is False
        assert peoplefinders.status == ExposureStatus.REMOVAL_PENDING
        assert spokeo.requires_manual_action is True
        assert radaris.requires_manual_action is True
        assert radaris.confidence_classification == "REJECT"
        assert spokeo.status == radaris.status == ExposureStatus.ACTIVE

        requests = (await db.execute(select(RemovalRequest))).scalars().all()
        assert len(requests) == 1
        assert requests[0].exposure_id == peoplefinders.id
        assert requests[0].is_proactive is True

        assert run.status == ScanStatus.COMPLETED
        assert (run.exposures_found, run.new_exposures, run.proactive_requests) == (3, 3, 1)
        assert notifier.scan_completions == [(user.id, run.id, 3)]
        assert notifier.new_exposures == [(user.id, 3, ["PeopleFinders", "Radaris", "Spokeo"])]

    @pytest.mark.asyncio
    async def test_repeat_hit_refreshes_existing_exposure(self, db, make_user, make_profile, make_exposure, notifier):
        user = await make_user()
        await make_profile(user)
        existing = await make_exposure(user, last_seen_at=datetime(2026, 1, 1))
        run = await start_scan(db, user, ScanType.FULL)

        await execute_scan(
            db, run.id,
            scanners=(StubScanner("Spokeo", "SPOKEO", [spokeo_hit()]),),
            scorer=ScoreBySource({"SPOKEO": 90}),
        )

        assert await count(db, Exposure, user_id=user.id) == 1
        assert await count(db, RemovalRequest) == 0
        assert existing.last_seen_at > datetime(2026, 1, 1)
        assert (run.new_exposures, run.refreshed_exposures) == (0, 1)
        assert notifier.new_exposures == []

    @pytest.mark.asyncio
    async def test_removed_exposure_is_not_resurrected(self, db, make_user, make_profile, make_exposure):
        user = await make_user()
        await make_profile(user)
        removed = await make_exposure(user, status=ExposureStatus.REMOVED)
        run = await start_scan(db, user, ScanType.FULL)

        await execute_scan(
            db, run.id,
            scanners=(StubScanner("Spokeo", "SPOKEO", [spokeo_hit()]),),
            scorer=ScoreBySource({"SPOKEO": 90}),
        )

        assert await count(db, Exposure, user_id=user.id) == 1
        assert removed.status == ExposureStatus.REMOVED
        assert run.skipped_hits == 1

    @pytest.mark.asyncio
    async def test_partial_failure_still_completes(self, db, make_user, make_profile, notifier):
        user = await make_user()
        await make_profile(user)
        run = await start_scan(db, user, ScanType.FULL)

        await execute_scan(
            db, run.id,
            scanners=(
                StubScanner("Spokeo", "SPOKEO", [spokeo_hit()]),
                StubScanner("Broken", "BROKEN", exc=RuntimeError("bad markup")),
            ),
            scorer=ScoreBySource({"SPOKEO": 60}),
        )

        assert run.status == ScanStatus.COMPLETED
        assert (run.sources_checked, run.failed_scanners) == (2, 1)
        assert await count(db, ScannerOutcomeLog, scan_run_id=run.id) == 2
        assert await count(db, ScannerOutcomeLog, scan_run_id=run.id, status="ERROR") == 1
        assert notifier.tickets == []

    @pytest.mark.asyncio
    async def test_all_scanners_failing_raises_a_ticket(self, db, make_user, make_profile, notifier):
        user = await make_user()
        await make_profile(user)
        run = await start_scan(db, user, ScanType.FULL)

        await execute_scan(db, run.id, scanners=(StubScanner("Broken", "BROKEN", exc=RuntimeError()),))

        assert run.status == ScanStatus.COMPLETED
        assert notifier.tickets[0]["title"].startswith("Every scanner failed")

    @pytest.mark.asyncio
    async def test_pipeline_failure_marks_run_failed(self, db, make_user, make_profile, notifier, monkeypatch):
        user = await make_user()
        await make_profile(user)
        run = await start_scan(db, user, ScanType.FULL)

        def broken_registry(config):
            raise RuntimeError("registry unavailable")

        monkeypatch.setattr(scan_pipeline.ScanOrchestrator, "create", broken_registry)

        with pytest.raises(ScanFailedError) as exc:
            await execute_scan(db, run.id)

        assert str(exc.value) == "Scan failed. Please try again."
        assert run.status == ScanStatus.FAILED
        assert "registry unavailable" in run.error
        assert len(notifier.tickets) == 1
        assert notifier.tickets[0]["user_id"] == user.id
        assert notifier.scan_completions == []

    @pytest.mark.asyncio
    async def test_empty_identity_fails_the_run(self, db, make_user, make_profile, notifier):
        user = await make_user()
        await make_profile(user, full_name=None, emails=(), phones=(), addresses=())
        run = await start_scan(db, user, ScanType.FULL)

        with pytest.raises(ScanFailedError):
            await execute_scan(db, run.id, scanners=())

        assert run.status == ScanStatus.FAILED
        assert run.error == "No usable identity profile"
        assert len(notifier.tickets) == 1

    @pytest.mark.asyncio
    async def test_finished_run_is_left_alone(self, db, make_user, make_profile, notifier):
        user = await make_user()
        await make_profile(user)
        run = await start_scan(db, user, ScanType.FULL)
        run.status = ScanStatus.COMPLETED
        await db.flush()

        assert await execute_scan(db, run.id, scanners=()) is run
        assert notifier.scan_completions == []

    @pytest.mark.asyncio
    async def test_unknown_run(self, db):
        with pytest.raises(NotFoundError):
            await execute_scan(db, uuid.uuid4())
