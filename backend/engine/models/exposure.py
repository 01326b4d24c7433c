"""Exposure model - tracks where user's data was found."""

import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import String, Boolean, Integer, DateTime, ForeignKey, JSON, Uuid
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from engine.db.database import Base, utcnow


class ExposureStatus(str, Enum):
    ACTIVE = "ACTIVE"
    REMOVAL_PENDING = "REMOVAL_PENDING"
    REMOVAL_IN_PROGRESS = "REMOVAL_IN_PROGRESS"
    REMOVED = "REMOVED"
    WHITELISTED = "WHITELISTED"


# Statuses that mean a removal already owns this exposure
REMEDIATION_STATUSES = frozenset({
    ExposureStatus.REMOVAL_PENDING,
    ExposureStatus.REMOVAL_IN_PROGRESS,
    ExposureStatus.REMOVED,
})


class Exposure(Base):
    """Record of user's data found at a source. Never deleted, only transitioned."""

    __tablename__ = "exposures"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), index=True)
    scan_run_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("scan_runs.id"), nullable=True)

    # Where it was found
    source: Mapped[str] = mapped_column(String(100), nullable=False, index=True)  # e.g. SPOKEO, HIBP
    source_name: Mapped[str] = mapped_column(String(255), nullable=False)
    source_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # What was found
    data_type: Mapped[str] = mapped_column(String(50), nullable=False)  # EMAIL, PHONE, ADDRESS, COMBINED_PROFILE...
    data_preview: Mapped[str | None] = mapped_column(String(500), nullable=True)
    severity: Mapped[str] = mapped_column(String(20), default="MEDIUM")
    listing: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # extracted fields, used for re-validation

    status: Mapped[ExposureStatus] = mapped_column(
        SAEnum(ExposureStatus, native_enum=False, length=30), default=ExposureStatus.ACTIVE
    )
    requires_manual_action: Mapped[bool] = mapped_column(Boolean, default=False)
    user_confirmed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    # Confidence
    confidence_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    confidence_classification: Mapped[str | None] = mapped_column(String(20), nullable=True)
    confidence_factors: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    confidence_reasoning: Mapped[list | None] = mapped_column(JSON, nullable=True)
    confidence_validated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Set when a consolidated removal request at a parent broker covers this exposure
    covered_by_request_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    # Timestamps
    first_seen_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    removed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
