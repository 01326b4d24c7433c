"""Removal request routes."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from engine.api.deps import CurrentUser, DbSession
from engine.errors import NotFoundError
from engine.models.exposure import Exposure, ExposureStatus
from engine.models.request import RemovalMethod, RemovalRequest, RemovalStatus
from engine.services.exposures import get_user_exposure
from engine.services.plans import check_bulk_removal_allowed
from engine.services.removal_state import (
    cancel_request,
    create_bulk_removals,
    create_removal_request,
    record_user_progress,
)

router = APIRouter()


# Schemas
class RemovalCreate(BaseModel):
    exposure_id: UUID


class RemovalResponse(BaseModel):
    id: UUID
    exposure_id: UUID
    target_source: str
    method: RemovalMethod
    status: RemovalStatus
    is_proactive: bool
    attempts: int
    requires_user_action: bool
    instructions: str | None
    submitted_at: datetime | None
    verify_after: datetime | None
    completed_at: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True


class RemovalProgress(BaseModel):
    status: RemovalStatus


class BulkRemovalResponse(BaseModel):
    requests: list[RemovalResponse]
    covered_exposures: int
    skipped_exposures: int


async def get_user_request(db: AsyncSession, user_id: UUID, request_id: UUID) -> RemovalRequest:
    request = await db.get(RemovalRequest, request_id)
    if request is None or request.user_id != user_id:
        raise NotFoundError(f"Removal request {request_id} not found")
    return request


@router.post("", response_model=RemovalResponse, status_code=201)
async def create_removal(body: RemovalCreate, current_user: CurrentUser, db: DbSession):
    """Start a removal for one exposure."""
    exposure = await get_user_exposure(db, current_user.id, body.exposure_id)
    request = await create_removal_request(db, exposure)
    await db.commit()
    return request


@router.post("/bulk", response_model=BulkRemovalResponse, status_code=201)
async def create_bulk_removal(current_user: CurrentUser, db: DbSession):
    """Remove all: one request per parent broker covering its subsidiaries."""
    check_bulk_removal_allowed(current_user.plan)

    result = await db.execute(
        select(Exposure)
        .where(Exposure.user_id == current_user.id, Exposure.status == ExposureStatus.ACTIVE)
        .order_by(Exposure.first_seen_at)
    )
    bulk = await create_bulk_removals(db, result.scalars().all())
    await db.commit()

    return BulkRemovalResponse(
        requests=[RemovalResponse.model_validate(r) for r in bulk.requests],
        covered_exposures=bulk.covered_exposures,
        skipped_exposures=len(bulk.skipped),
    )


@router.post("/{request_id}/cancel", response_model=RemovalResponse)
async def cancel_removal(request_id: UUID, current_user: CurrentUser, db: DbSession):
    request = await get_user_request(db, current_user.id, request_id)

    await cancel_request(db, request, reason="Cancelled by user")
    await db.commit()
    return request


@router.post("/{request_id}/progress", response_model=RemovalResponse)
async def report_progress(request_id: UUID, body: RemovalProgress, current_user: CurrentUser, db: DbSession):
    """Report a removal as underway or done, e.g. after following a manual guide."""
    request = await get_user_request(db, current_user.id, request_id)

    await record_user_progress(db, request, body.status)
    await db.commit()
    return request
