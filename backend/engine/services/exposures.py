"""User-facing exposure operations: confirmation, re-validation and the grouped summary."""

import logging
from dataclasses import dataclass, field
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from engine.errors import NotFoundError, ProfileMissingError
from engine.models.exposure import Exposure, ExposureStatus
from engine.models.user import UserProfile
from engine.services.broker_directory import group_exposures_by_parent
from engine.services.confidence import ConfidenceScorer, Scorer, rescore_exposure
from engine.services.identity import Decryptor, prepare_identity
from engine.services.removal_state import cancel_request, get_active_request

logger = logging.getLogger(__name__)


async def get_user_exposure(db: AsyncSession, user_id: UUID, exposure_id: UUID) -> Exposure:
    exposure = await db.get(Exposure, exposure_id)
    if exposure is None or exposure.user_id != user_id:
        raise NotFoundError(f"Exposure {exposure_id} not found")
    return exposure


async def confirm_exposure(db: AsyncSession, exposure: Exposure, confirmed: bool) -> Exposure:
    """Record the user's verdict on a match.

    Confirmed matches no longer need manual action. A rejected match is
    whitelisted and any removal underway for it is cancelled. If it was only
    covered by another exposure's consolidated request, it is detached from
    that request and the request carries on for the rest.
    """
    exposure.user_confirmed = confirmed
    if confirmed:
        exposure.requires_manual_action = False
    else:
        active = await get_active_request(db, exposure.id)
        if active is not None:
            await cancel_request(db, active, reason="User rejected the match")
        exposure.covered_by_request_id = None
        exposure.status = ExposureStatus.WHITELISTED
        exposure.requires_manual_action = False

    await db.flush()
    logger.info("Exposure %s %s by user", exposure.id, "confirmed" if confirmed else "rejected")
    return exposure


@dataclass
class RevalidationResult:
    rescored: int = 0
    classifications: dict[str, int] = field(default_factory=dict)
    newly_actionable: int = 0


async def revalidate_exposures(
    db: AsyncSession,
    user_id: UUID,
    decryptor: Optional[Decryptor] = None,
    scorer: Optional[Scorer] = None,
) -> RevalidationResult:
    """Rescore a user's active exposures against their current profile.

    Run after the profile changes: a match that needed review may now clear
    the auto-proceed threshold, or the other way round. Exposures already in
    remediation keep the score they were acted on.
    """
    profile = (
        await db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
    ).scalar_one_or_none()
    if profile is None:
        raise ProfileMissingError("Add your personal information before revalidating matches")

    identity = prepare_identity(profile, decryptor)
    scorer = scorer or ConfidenceScorer()
    result = await db.execute(
        select(Exposure)
        .where(Exposure.user_id == user_id, Exposure.status == ExposureStatus.ACTIVE)
        .order_by(Exposure.first_seen_at)
    )

    outcome = RevalidationResult()
    for exposure in result.scalars().all():
        needed_review = exposure.requires_manual_action
        confidence = rescore_exposure(exposure, identity, scorer)
        outcome.rescored += 1
        key = confidence.classification.value
        outcome.classifications[key] = outcome.classifications.get(key, 0) + 1
        if needed_review and not exposure.requires_manual_action:
            outcome.newly_actionable += 1

    await db.flush()
    logger.info(
        "Revalidated %d exposures for user %s (%d newly actionable)",
        outcome.rescored, user_id, outcome.newly_actionable,
    )
    return outcome


@dataclass
class GroupSummary:
    parent: str
    parent_name: str
    sources: list[str]
    exposure_count: int
    active_count: int
    removable: bool


@dataclass
class ExposureSummary:
    total_exposures: int
    actionable_removals: int
    groups: list[GroupSummary]


async def summarize_exposures(db: AsyncSession, user_id: UUID) -> ExposureSummary:
    """Exposures grouped by ultimate parent broker, for "12 exposures, 4 removals" views."""
    result = await db.execute(
        select(Exposure)
        .where(Exposure.user_id == user_id, Exposure.status != ExposureStatus.WHITELISTED)
        .order_by(Exposure.first_seen_at)
    )
    exposures = list(result.scalars().all())

    groups = []
    for group in group_exposures_by_parent(exposures):
        active = [e for e in group.exposures if e.status == ExposureStatus.ACTIVE]
        groups.append(GroupSummary(
            parent=group.parent,
            parent_name=group.parent_name,
            sources=group.sources,
            exposure_count=len(group.exposures),
            active_count=len(active),
            removable=group.removable,
        ))

    return ExposureSummary(
        total_exposures=len(exposures),
        actionable_removals=sum(1 for g in groups if g.removable and g.active_count),
        groups=groups,
    )
