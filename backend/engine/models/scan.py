"""Scan run models - one row per scan invocation plus per-scanner outcomes."""

import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import String, Integer, DateTime, ForeignKey, Index, Text, Uuid, text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from engine.db.database import Base, utcnow
from engine.models.user import PlanTier


class ScanType(str, Enum):
    FULL = "FULL"
    QUICK = "QUICK"
    MONITORING = "MONITORING"


class ScanStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ScanRun(Base):
    """One scan invocation for a user."""

    __tablename__ = "scan_runs"
    __table_args__ = (
        # At most one running scan per user, enforced by the store
        Index(
            "uq_scan_runs_active_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'IN_PROGRESS'"),
            sqlite_where=text("status = 'IN_PROGRESS'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), index=True)

    scan_type: Mapped[ScanType] = mapped_column(SAEnum(ScanType, native_enum=False, length=20))
    plan_tier: Mapped[PlanTier] = mapped_column(SAEnum(PlanTier, native_enum=False, length=20))
    status: Mapped[ScanStatus] = mapped_column(
        SAEnum(ScanStatus, native_enum=False, length=20), default=ScanStatus.IN_PROGRESS
    )

    # Counts
    sources_checked: Mapped[int] = mapped_column(Integer, default=0)
    exposures_found: Mapped[int] = mapped_column(Integer, default=0)
    new_exposures: Mapped[int] = mapped_column(Integer, default=0)
    refreshed_exposures: Mapped[int] = mapped_column(Integer, default=0)
    skipped_hits: Mapped[int] = mapped_column(Integer, default=0)
    failed_scanners: Mapped[int] = mapped_column(Integer, default=0)
    proactive_requests: Mapped[int] = mapped_column(Integer, default=0)

    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class ScannerOutcomeLog(Base):
    """Persisted outcome of one scanner invocation, kept for health trends."""

    __tablename__ = "scanner_outcomes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    scan_run_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("scan_runs.id"), index=True)

    scanner_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    scanner_type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # SUCCESS, EMPTY, BLOCKED, ERROR
    response_time_ms: Mapped[int] = mapped_column(Integer, default=0)
    result_count: Mapped[int] = mapped_column(Integer, default=0)
    http_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_message: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
