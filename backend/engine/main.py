"""Privacy Eraser scan engine - FastAPI Application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from engine.api.errors import register_exception_handlers
from engine.api.routes import exposures, removals, scans
from engine.config import settings
from engine.db.database import init_db
from engine.workers.celery_app import celery_app  # noqa: F401  sets the app tasks are sent through

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    await init_db()
    yield


app = FastAPI(
    lifespan=lifespan,
    title=settings.app_name,
    description="Exposure scanning and data broker removal engine",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

register_exception_handlers(app)

# Include routers
user_prefix = f"{settings.api_prefix}/users/{{user_id}}"
app.include_router(scans.router, prefix=f"{user_prefix}/scans", tags=["Scans"])
app.include_router(exposures.router, prefix=f"{user_prefix}/exposures", tags=["Exposures"])
app.include_router(removals.router, prefix=f"{user_prefix}/removals", tags=["Removals"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
