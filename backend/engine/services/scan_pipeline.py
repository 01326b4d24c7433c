"""Scan pipeline: start a run, execute it, and resolve its hits into exposures."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from engine.config import settings
from engine.db.database import utcnow
from engine.errors import ConflictError, ConflictReason, NotFoundError, ProfileMissingError, ScanFailedError
from engine.models.exposure import Exposure, ExposureStatus
from engine.models.scan import ScannerOutcomeLog, ScanRun, ScanStatus, ScanType
from engine.models.user import User, UserProfile
from engine.services.confidence import Classification, ConfidenceScorer, Scorer, apply_confidence
from engine.services.dedup import ExposureDeduplicator, touch_refreshed
from engine.services.identity import Decryptor, prepare_identity
from engine.services.notifications import Notifier, get_notifier
from engine.services.orchestrator import OrchestratorConfig, ScanOrchestrator
from engine.services.plans import check_scan_allowed, count_scans_this_month
from engine.services.removal_state import create_removal_request
from sources.base import IdentityProfile, OutcomeStatus, RawHit, SourceScanner

logger = logging.getLogger(__name__)


async def get_active_scan(db: AsyncSession, user_id: uuid.UUID) -> Optional[ScanRun]:
    result = await db.execute(
        select(ScanRun).where(ScanRun.user_id == user_id, ScanRun.status == ScanStatus.IN_PROGRESS)
    )
    return result.scalars().first()


async def recover_stale_scans(
    db: AsyncSession,
    now: Optional[datetime] = None,
    user_id: Optional[uuid.UUID] = None,
) -> int:
    """Fail scans stuck IN_PROGRESS past the staleness window so they stop blocking new ones."""
    now = now or utcnow()
    cutoff = now - timedelta(minutes=settings.scan_stale_after_minutes)

    query = select(ScanRun).where(ScanRun.status == ScanStatus.IN_PROGRESS, ScanRun.started_at < cutoff)
    if user_id is not None:
        query = query.where(ScanRun.user_id == user_id)
    stale = list((await db.execute(query)).scalars().all())

    for run in stale:
        run.status = ScanStatus.FAILED
        run.completed_at = now
        run.error = f"Marked failed after {settings.scan_stale_after_minutes} minutes in progress"
        logger.warning("Recovered stale scan %s for user %s", run.id, run.user_id)

    await db.flush()
    return len(stale)


async def start_scan(
    db: AsyncSession,
    user: User,
    scan_type: ScanType,
    now: Optional[datetime] = None,
) -> ScanRun:
    """Create an IN_PROGRESS scan run for ``user``.

    Raises ProfileMissingError, ConflictError(SCAN_IN_PROGRESS) or PlanLimitError.
    """
    now = now or utcnow()
    scan_type = ScanType(scan_type)

    profile = (await db.execute(select(UserProfile).where(UserProfile.user_id == user.id))).scalar_one_or_none()
    if profile is None:
        raise ProfileMissingError("Add your personal information before running a scan")

    await recover_stale_scans(db, now=now, user_id=user.id)
    if await get_active_scan(db, user.id):
        raise ConflictError(ConflictReason.SCAN_IN_PROGRESS, "a scan is already running")

    check_scan_allowed(user.plan, scan_type, await count_scans_this_month(db, user.id, now))

    run = ScanRun(
        id=uuid.uuid4(),
        user_id=user.id,
        scan_type=scan_type,
        plan_tier=user.plan,
        status=ScanStatus.IN_PROGRESS,
        started_at=now,
    )
    db.add(run)
    try:
        await db.flush()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError(ConflictReason.SCAN_IN_PROGRESS, "a scan is already running") from e

    logger.info("Started %s scan %s for user %s", scan_type.value, run.id, user.id)
    return run


@dataclass
class HitResolution:
    """What became of one scan's hits."""
    created: list[Exposure] = field(default_factory=list)
    refreshed: list[Exposure] = field(default_factory=list)
    skipped: int = 0
    proactive_requests: int = 0

    @property
    def total(self) -> int:
        return len(self.created) + len(self.refreshed) + self.skipped


async def resolve_hits(
    db: AsyncSession,
    run: ScanRun,
    hits: list[RawHit],
    identity: IdentityProfile,
    scorer: Optional[Scorer] = None,
    now: Optional[datetime] = None,
) -> HitResolution:
    """Score, deduplicate and persist a scan's hits.

    Every new hit becomes an exposure. Only auto-proceed hits are ready for
    removal without review; an auto-proceed hit that needs a manual check
    gets a proactive removal request straight away.
    """
    scorer = scorer or ConfidenceScorer()
    now = now or utcnow()

    existing = (await db.execute(select(Exposure).where(Exposure.user_id == run.user_id))).scalars().all()
    dedup = ExposureDeduplicator(existing).classify(hits)
    touch_refreshed(dedup, now)

    resolution = HitResolution(
        refreshed=[exposure for _, exposure in dedup.refreshed],
        skipped=len(dedup.skipped),
    )

    for hit in dedup.new:
        confidence = scorer.score(hit, identity)
        auto_proceed = confidence.classification == Classification.AUTO_PROCEED
        exposure = Exposure(
            id=uuid.uuid4(),
            user_id=run.user_id,
            scan_run_id=run.id,
            source=hit.source,
            source_name=hit.source_name,
            source_url=hit.source_url,
            data_type=hit.data_type,
            data_preview=hit.data_preview,
            severity=hit.severity,
            listing=hit.listing,
            status=ExposureStatus.ACTIVE,
            requires_manual_action=not auto_proceed,
            first_seen_at=now,
            last_seen_at=now,
        )
        apply_confidence(exposure, confidence)
        db.add(exposure)
        resolution.created.append(exposure)

        if auto_proceed and hit.manual_check_required:
            await db.flush()
            await create_removal_request(db, exposure, is_proactive=True, notes="Proactive opt-out")
            resolution.proactive_requests += 1

    await db.flush()
    return resolution


async def _fail_scan(db: AsyncSession, run: ScanRun, error: str, notifier: Notifier) -> None:
    run.status = ScanStatus.FAILED
    run.completed_at = utcnow()
    run.error = error[:2000]
    await db.commit()
    notifier.operator_ticket(
        f"Scan {run.id} failed",
        f"{ScanType(run.scan_type).value} scan for user {run.user_id} failed: {error}",
        user_id=run.user_id,
    )


async def _matched_sources(db: AsyncSession, user_id: uuid.UUID) -> frozenset[str]:
    result = await db.execute(
        select(Exposure.source)
        .where(Exposure.user_id == user_id, Exposure.status != ExposureStatus.WHITELISTED)
        .distinct()
    )
    return frozenset(result.scalars().all())


async def execute_scan(
    db: AsyncSession,
    scan_run_id: uuid.UUID,
    *,
    decryptor: Optional[Decryptor] = None,
    scorer: Optional[Scorer] = None,
    notifier: Optional[Notifier] = None,
    scanners: Optional[tuple[SourceScanner, ...]] = None,
    timeouts: Optional[dict] = None,
) -> ScanRun:
    """Run a started scan to completion and commit the outcome.

    Partial scanner failure only shows up in the outcome counts. If the
    pipeline itself cannot run the scan is marked FAILED, an operator ticket
    is raised and ScanFailedError is raised for the caller.
    """
    notifier = notifier or get_notifier()
    run = await db.get(ScanRun, scan_run_id)
    if run is None:
        raise NotFoundError(f"Scan {scan_run_id} not found")
    if run.status != ScanStatus.IN_PROGRESS:
        logger.info("Scan %s is already %s, nothing to do", run.id, run.status.value)
        return run

    profile = (await db.execute(select(UserProfile).where(UserProfile.user_id == run.user_id))).scalar_one_or_none()
    identity = prepare_identity(profile, decryptor) if profile else None
    if identity is None or identity.is_empty():
        await _fail_scan(db, run, "No usable identity profile", notifier)
        raise ScanFailedError(run.id)

    matched = await _matched_sources(db, run.user_id) if run.scan_type == ScanType.MONITORING else frozenset()
    try:
        orchestrator = ScanOrchestrator.create(OrchestratorConfig(
            scan_type=run.scan_type,
            plan_tier=run.plan_tier,
            matched_sources=matched,
            timeouts=timeouts or {},
            scanners=scanners,
        ))
        hits = await orchestrator.run_scan(identity)
    except Exception as e:
        logger.exception("Scan %s could not run", run.id)
        await _fail_scan(db, run, f"{type(e).__name__}: {e}", notifier)
        raise ScanFailedError(run.id) from e

    resolution = await resolve_hits(db, run, hits, identity, scorer)

    for outcome in orchestrator.get_outcomes():
        db.add(ScannerOutcomeLog(
            scan_run_id=run.id,
            scanner_name=outcome.scanner_name,
            scanner_type=outcome.scanner_type.value,
            status=outcome.status.value,
            response_time_ms=outcome.response_time_ms,
            result_count=outcome.result_count,
            http_status=outcome.http_status,
            error_type=outcome.error_type,
            error_message=outcome.error_message,
        ))

    run.sources_checked = orchestrator.get_sources_checked_count()
    run.failed_scanners = orchestrator.get_failed_count()
    run.exposures_found = len(hits)
    run.new_exposures = len(resolution.created)
    run.refreshed_exposures = len(resolution.refreshed)
    run.skipped_hits = resolution.skipped
    run.proactive_requests = resolution.proactive_requests
    run.status = ScanStatus.COMPLETED
    run.completed_at = utcnow()
    await db.commit()

    logger.info(
        "Scan %s completed: %d hits -> %d new, %d refreshed, %d skipped",
        run.id, len(hits), run.new_exposures, run.refreshed_exposures, run.skipped_hits,
    )

    outcomes = orchestrator.get_outcomes()
    if outcomes and all(o.status == OutcomeStatus.ERROR for o in outcomes):
        notifier.operator_ticket(
            f"Every scanner failed in scan {run.id}",
            f"{len(outcomes)} scanners returned ERROR",
            user_id=run.user_id,
        )
    notifier.scan_completed(run.user_id, run.id, run.new_exposures)
    if resolution.created:
        notifier.new_exposures_found(
            run.user_id,
            len(resolution.created),
            sorted({e.source_name for e in resolution.created}),
        )
    return run
