"""Removal request lifecycle.

PENDING -> SUBMITTED -> IN_PROGRESS -> COMPLETED | FAILED, and any
non-terminal state -> CANCELLED. Every transition also moves the exposure
the request is attached to, and any exposures it covers through broker
consolidation, so exposure status always follows its request.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from engine.config import settings
from engine.db.database import utcnow
from engine.errors import ConflictError, ConflictReason
from engine.models.exposure import Exposure, ExposureStatus, REMEDIATION_STATUSES
from engine.models.request import (
    ACTIVE_REMOVAL_STATUSES,
    RemovalMethod,
    RemovalRequest,
    RemovalStatus,
)
from engine.services.broker_directory import get_data_broker_info, plan_bulk_removal
from engine.services.notifications import Notifier, get_notifier
from engine.services.removal_methods import get_best_automation_method, get_manual_instructions

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[RemovalStatus, set[RemovalStatus]] = {
    RemovalStatus.PENDING: {RemovalStatus.SUBMITTED, RemovalStatus.FAILED, RemovalStatus.CANCELLED},
    RemovalStatus.SUBMITTED: {
        RemovalStatus.IN_PROGRESS,
        RemovalStatus.COMPLETED,
        RemovalStatus.FAILED,
        RemovalStatus.CANCELLED,
    },
    RemovalStatus.IN_PROGRESS: {RemovalStatus.COMPLETED, RemovalStatus.FAILED, RemovalStatus.CANCELLED},
    RemovalStatus.COMPLETED: set(),
    RemovalStatus.FAILED: set(),
    RemovalStatus.CANCELLED: set(),
}

EXPOSURE_STATUS_FOR: dict[RemovalStatus, ExposureStatus] = {
    RemovalStatus.PENDING: ExposureStatus.REMOVAL_PENDING,
    RemovalStatus.SUBMITTED: ExposureStatus.REMOVAL_IN_PROGRESS,
    RemovalStatus.IN_PROGRESS: ExposureStatus.REMOVAL_IN_PROGRESS,
    RemovalStatus.COMPLETED: ExposureStatus.REMOVED,
    RemovalStatus.FAILED: ExposureStatus.ACTIVE,
    RemovalStatus.CANCELLED: ExposureStatus.ACTIVE,
}


async def get_active_request(db: AsyncSession, exposure_id: uuid.UUID) -> Optional[RemovalRequest]:
    result = await db.execute(
        select(RemovalRequest).where(
            RemovalRequest.exposure_id == exposure_id,
            RemovalRequest.status.in_(ACTIVE_REMOVAL_STATUSES),
        )
    )
    return result.scalars().first()


async def get_covered_exposures(db: AsyncSession, request: RemovalRequest) -> list[Exposure]:
    result = await db.execute(select(Exposure).where(Exposure.covered_by_request_id == request.id))
    return list(result.scalars().all())


def _check_can_remediate(exposure: Exposure) -> None:
    if exposure.status in REMEDIATION_STATUSES:
        raise ConflictError(
            ConflictReason.EXPOSURE_IN_REMEDIATION,
            f"exposure {exposure.id} is already {exposure.status.value}",
        )
    if exposure.status == ExposureStatus.WHITELISTED:
        raise ConflictError(ConflictReason.INVALID_TRANSITION, f"exposure {exposure.id} is whitelisted")


async def create_removal_request(
    db: AsyncSession,
    exposure: Exposure,
    *,
    is_proactive: bool = False,
    target_source: Optional[str] = None,
    covered: Iterable[Exposure] = (),
    notes: Optional[str] = None,
) -> RemovalRequest:
    """Open a PENDING removal for ``exposure``, optionally covering related exposures.

    Raises ConflictError when the exposure (or a covered one) already has a
    removal underway. The check runs against the store and the partial unique
    index on active requests backs it up against concurrent callers.
    """
    covered = [e for e in covered if e.id != exposure.id]
    for candidate in (exposure, *covered):
        _check_can_remediate(candidate)
        if await get_active_request(db, candidate.id):
            raise ConflictError(
                ConflictReason.ACTIVE_REQUEST_EXISTS,
                f"exposure {candidate.id} already has an active removal request",
            )

    target = target_source or exposure.source
    choice = get_best_automation_method(target)
    request = RemovalRequest(
        id=uuid.uuid4(),
        user_id=exposure.user_id,
        exposure_id=exposure.id,
        target_source=target,
        method=choice.method,
        status=RemovalStatus.PENDING,
        is_proactive=is_proactive,
        attempts=0,
        notes=notes or choice.reason,
    )
    if choice.method == RemovalMethod.MANUAL_GUIDE:
        request.instructions = get_manual_instructions(target)
        request.requires_user_action = True
    db.add(request)

    exposure.status = ExposureStatus.REMOVAL_PENDING
    for other in covered:
        other.status = ExposureStatus.REMOVAL_PENDING
        other.covered_by_request_id = request.id

    try:
        await db.flush()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError(
            ConflictReason.ACTIVE_REQUEST_EXISTS,
            f"exposure {exposure.id} already has an active removal request",
        ) from e

    logger.info(
        "Created %s removal request %s for %s (%s, covers %d more)",
        "proactive" if is_proactive else "user", request.id, target, choice.method.value, len(covered),
    )
    return request


async def transition(
    db: AsyncSession,
    request: RemovalRequest,
    new_status: RemovalStatus,
    *,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RemovalRequest:
    """Move a request to ``new_status`` and bring its exposures along."""
    current = RemovalStatus(request.status)
    if new_status not in ALLOWED_TRANSITIONS[current]:
        raise ConflictError(
            ConflictReason.INVALID_TRANSITION,
            f"request {request.id} cannot go from {current.value} to {new_status.value}",
        )

    now = now or utcnow()
    request.status = new_status
    if note:
        request.notes = note

    if new_status == RemovalStatus.SUBMITTED:
        request.submitted_at = now
        broker = get_data_broker_info(request.target_source)
        request.verify_after = now + timedelta(days=broker.estimated_days if broker else 14)
    elif new_status == RemovalStatus.COMPLETED:
        request.completed_at = now

    exposure_status = EXPOSURE_STATUS_FOR[new_status]
    primary = await db.get(Exposure, request.exposure_id)
    covered = await get_covered_exposures(db, request)

    for exposure in filter(None, (primary, *covered)):
        # A rejected match stays whitelisted whatever happens to the request
        if exposure.status == ExposureStatus.WHITELISTED:
            continue
        exposure.status = exposure_status
        if new_status == RemovalStatus.COMPLETED:
            exposure.removed_at = now
        if new_status in (RemovalStatus.FAILED, RemovalStatus.CANCELLED) and exposure is not primary:
            exposure.covered_by_request_id = None

    await db.flush()
    logger.info("Removal request %s: %s -> %s", request.id, current.value, new_status.value)
    return request


async def mark_removal_completed(
    db: AsyncSession,
    request: RemovalRequest,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None,
    note: Optional[str] = None,
) -> RemovalRequest:
    """Complete a request; covered exposures are removed with it."""
    await transition(db, request, RemovalStatus.COMPLETED, note=note, now=now)
    broker = get_data_broker_info(request.target_source)
    (notifier or get_notifier()).removal_completed(
        request.user_id, broker.name if broker else request.target_source
    )
    return request


async def cancel_request(db: AsyncSession, request: RemovalRequest, reason: str = "Cancelled") -> RemovalRequest:
    return await transition(db, request, RemovalStatus.CANCELLED, note=reason)


USER_REPORTABLE_STATUSES = (RemovalStatus.IN_PROGRESS, RemovalStatus.COMPLETED)


async def record_user_progress(
    db: AsyncSession,
    request: RemovalRequest,
    new_status: RemovalStatus,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None,
) -> RemovalRequest:
    """Apply progress the user reports on a removal.

    A manual guide the user has worked through counts as submitted, so it
    picks up a verification date like any automated request. Automated
    requests still waiting in the queue can't be reported on.
    """
    if new_status not in USER_REPORTABLE_STATUSES:
        raise ConflictError(
            ConflictReason.INVALID_TRANSITION,
            f"users can only report {', '.join(s.value for s in USER_REPORTABLE_STATUSES)}",
        )

    if RemovalStatus(request.status) == RemovalStatus.PENDING:
        if request.method != RemovalMethod.MANUAL_GUIDE:
            raise ConflictError(
                ConflictReason.INVALID_TRANSITION,
                f"request {request.id} is queued for automatic submission",
            )
        await transition(db, request, RemovalStatus.SUBMITTED, note="Submitted by user", now=now)
        request.requires_user_action = False

    if new_status == RemovalStatus.COMPLETED:
        return await mark_removal_completed(db, request, notifier, now=now, note="Removal confirmed by user")
    if RemovalStatus(request.status) == RemovalStatus.IN_PROGRESS:
        return request
    return await transition(db, request, RemovalStatus.IN_PROGRESS, note="In progress per user", now=now)


async def record_submission_failure(
    db: AsyncSession,
    request: RemovalRequest,
    error: str,
    notifier: Optional[Notifier] = None,
) -> RemovalRequest:
    """Count a failed submission attempt.

    The request stays PENDING for another try until it reaches
    ``max_removal_attempts``; then it fails and an operator ticket is raised.
    """
    request.attempts = (request.attempts or 0) + 1
    request.last_error = error[:2000]

    if request.attempts < settings.max_removal_attempts:
        logger.info(
            "Removal request %s attempt %d/%d failed: %s",
            request.id, request.attempts, settings.max_removal_attempts, error,
        )
        await db.flush()
        return request

    await transition(db, request, RemovalStatus.FAILED, note=f"Gave up after {request.attempts} attempts")
    (notifier or get_notifier()).operator_ticket(
        f"Removal failed at {request.target_source}",
        f"Request {request.id} failed {request.attempts} times. Last error: {error}",
        user_id=request.user_id,
    )
    return request


@dataclass
class BulkRemovalResult:
    requests: list[RemovalRequest] = field(default_factory=list)
    covered_exposures: int = 0
    skipped: list[Exposure] = field(default_factory=list)


def is_bulk_eligible(exposure: Exposure) -> bool:
    return exposure.status == ExposureStatus.ACTIVE and not exposure.requires_manual_action


async def create_bulk_removals(db: AsyncSession, exposures: Iterable[Exposure]) -> BulkRemovalResult:
    """Bulk "remove all parents": one request per parent broker covering all its exposures.

    Exposures awaiting user review are left out.
    """
    exposures = list(exposures)
    eligible = [e for e in exposures if is_bulk_eligible(e)]
    result = BulkRemovalResult(skipped=[e for e in exposures if not is_bulk_eligible(e)])

    for plan in plan_bulk_removal(eligible):
        request = await create_removal_request(
            db,
            plan.primary,
            target_source=plan.target_source,
            covered=plan.covered,
        )
        result.requests.append(request)
        result.covered_exposures += len(plan.exposures)

    logger.info(
        "Bulk removal: %d requests cover %d exposures (%d skipped)",
        len(result.requests), result.covered_exposures, len(result.skipped),
    )
    return result


async def escalate_stale_requests(
    db: AsyncSession,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None,
) -> int:
    """Raise one operator ticket per request stuck in SUBMITTED/IN_PROGRESS past the window."""
    now = now or utcnow()
    cutoff = now - timedelta(days=settings.removal_stale_after_days)
    notifier = notifier or get_notifier()

    result = await db.execute(
        select(RemovalRequest).where(
            RemovalRequest.status.in_([RemovalStatus.SUBMITTED, RemovalStatus.IN_PROGRESS]),
            RemovalRequest.submitted_at < cutoff,
            RemovalRequest.escalated_at.is_(None),
        )
    )
    stale = list(result.scalars().all())

    for request in stale:
        request.escalated_at = now
        notifier.operator_ticket(
            f"Removal stale at {request.target_source}",
            f"Request {request.id} has been {request.status.value} since {request.submitted_at:%Y-%m-%d}",
            user_id=request.user_id,
            severity="medium",
        )

    await db.flush()
    if stale:
        logger.warning("Escalated %d stale removal requests", len(stale))
    return len(stale)


async def verify_due_removals(
    db: AsyncSession,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None,
    limit: int = 200,
) -> int:
    """Complete submitted requests whose broker processing window has passed.

    ``verify_after`` is set on submission from the broker's processing
    estimate; once it is behind us the opt-out is treated as honored.
    """
    now = now or utcnow()
    result = await db.execute(
        select(RemovalRequest)
        .where(
            RemovalRequest.status.in_([RemovalStatus.SUBMITTED, RemovalStatus.IN_PROGRESS]),
            RemovalRequest.verify_after <= now,
        )
        .order_by(RemovalRequest.verify_after)
        .limit(limit)
    )
    due = list(result.scalars().all())

    for request in due:
        days = (now - request.submitted_at).days if request.submitted_at else 0
        await mark_removal_completed(
            db, request, notifier, now=now, note=f"Auto-verified after {days} days",
        )

    if due:
        logger.info("Auto-verified %d removal requests", len(due))
    return len(due)
