"""Exposure routes."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel

from engine.api.deps import CurrentUser, DbSession
from engine.models.exposure import ExposureStatus
from engine.services.exposures import (
    confirm_exposure,
    get_user_exposure,
    revalidate_exposures,
    summarize_exposures,
)

router = APIRouter()


# Schemas
class ExposureResponse(BaseModel):
    id: UUID
    source: str
    source_name: str
    source_url: str | None
    data_type: str
    data_preview: str | None
    severity: str
    status: ExposureStatus
    requires_manual_action: bool
    user_confirmed: bool | None
    confidence_score: int | None
    confidence_classification: str | None
    first_seen_at: datetime
    last_seen_at: datetime

    class Config:
        from_attributes = True


class ConfirmRequest(BaseModel):
    confirmed: bool


class GroupResponse(BaseModel):
    parent: str
    parent_name: str
    sources: list[str]
    exposure_count: int
    active_count: int
    removable: bool


class SummaryResponse(BaseModel):
    total_exposures: int
    actionable_removals: int
    groups: list[GroupResponse]


class RevalidationResponse(BaseModel):
    rescored: int
    classifications: dict[str, int]
    newly_actionable: int


@router.get("/summary", response_model=SummaryResponse)
async def get_summary(current_user: CurrentUser, db: DbSession):
    """Exposures grouped by parent broker."""
    summary = await summarize_exposures(db, current_user.id)
    return SummaryResponse(
        total_exposures=summary.total_exposures,
        actionable_removals=summary.actionable_removals,
        groups=[GroupResponse(**vars(group)) for group in summary.groups],
    )


@router.post("/{exposure_id}/confirm", response_model=ExposureResponse)
async def confirm(exposure_id: UUID, body: ConfirmRequest, current_user: CurrentUser, db: DbSession):
    """User confirms a match is them, or rejects it."""
    exposure = await get_user_exposure(db, current_user.id, exposure_id)
    await confirm_exposure(db, exposure, body.confirmed)
    await db.commit()
    return exposure


@router.post("/revalidate", response_model=RevalidationResponse)
async def revalidate(current_user: CurrentUser, db: DbSession):
    """Rescore active matches after the user's profile changed."""
    result = await revalidate_exposures(db, current_user.id)
    await db.commit()
    return RevalidationResponse(**vars(result))
