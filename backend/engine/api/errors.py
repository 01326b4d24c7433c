"""Maps domain errors to HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from engine.errors import (
    ConflictError,
    NotFoundError,
    PlanLimitError,
    ProfileMissingError,
    ScanFailedError,
)

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError):
        return JSONResponse(status_code=409, content={"detail": exc.detail, "reason": exc.reason.value})

    @app.exception_handler(PlanLimitError)
    async def plan_limit_handler(request: Request, exc: PlanLimitError):
        return JSONResponse(status_code=403, content={"detail": str(exc)})

    @app.exception_handler(ProfileMissingError)
    async def profile_missing_handler(request: Request, exc: ProfileMissingError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ScanFailedError)
    async def scan_failed_handler(request: Request, exc: ScanFailedError):
        logger.warning("Scan %s failed, returning 503", exc.scan_id)
        return JSONResponse(status_code=503, content={"detail": str(exc)})
