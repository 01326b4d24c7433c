"""Scan routes."""

import logging
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import func, select

from engine.api.deps import CurrentUser, DbSession, ScanDispatcher
from engine.db.database import utcnow
from engine.errors import NotFoundError, ScanFailedError
from engine.models.scan import ScannerOutcomeLog, ScanRun, ScanStatus, ScanType
from engine.services.scan_pipeline import start_scan

logger = logging.getLogger(__name__)

router = APIRouter()


# Schemas
class ScanCreate(BaseModel):
    scan_type: ScanType = ScanType.FULL


class ScanStarted(BaseModel):
    scan_id: UUID
    status: ScanStatus


class ScanResponse(BaseModel):
    id: UUID
    scan_type: ScanType
    status: ScanStatus
    sources_checked: int
    exposures_found: int
    new_exposures: int
    refreshed_exposures: int
    skipped_hits: int
    failed_scanners: int
    proactive_requests: int
    started_at: datetime
    completed_at: datetime | None
    message: str | None = None
    outcome_counts: dict[str, int] = {}

    class Config:
        from_attributes = True


@router.post("", response_model=ScanStarted, status_code=202)
async def create_scan(body: ScanCreate, current_user: CurrentUser, db: DbSession, dispatch: ScanDispatcher):
    """Start a scan; it runs on the worker."""
    run = await start_scan(db, current_user, body.scan_type)
    await db.commit()

    try:
        dispatch(run.id)
    except Exception as e:
        logger.exception("Could not dispatch scan %s", run.id)
        run.status = ScanStatus.FAILED
        run.completed_at = utcnow()
        run.error = "Could not dispatch scan to worker"
        await db.commit()
        raise ScanFailedError(run.id) from e

    return ScanStarted(scan_id=run.id, status=run.status)


@router.get("/{scan_id}", response_model=ScanResponse)
async def get_scan(scan_id: UUID, current_user: CurrentUser, db: DbSession):
    run = await db.get(ScanRun, scan_id)
    if run is None or run.user_id != current_user.id:
        raise NotFoundError(f"Scan {scan_id} not found")

    result = await db.execute(
        select(ScannerOutcomeLog.status, func.count(ScannerOutcomeLog.id))
        .where(ScannerOutcomeLog.scan_run_id == run.id)
        .group_by(ScannerOutcomeLog.status)
    )

    response = ScanResponse.model_validate(run)
    response.outcome_counts = {status: count for status, count in result.all()}
    if run.status == ScanStatus.FAILED:
        response.message = "Scan failed. Please try again."
    return response
