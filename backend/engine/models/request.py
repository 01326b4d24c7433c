"""Removal request model - tracks opt-out requests."""

import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import String, Boolean, Integer, DateTime, ForeignKey, Index, Text, Uuid, text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from engine.db.database import Base, utcnow


class RemovalStatus(str, Enum):
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


ACTIVE_REMOVAL_STATUSES = frozenset({
    RemovalStatus.PENDING,
    RemovalStatus.SUBMITTED,
    RemovalStatus.IN_PROGRESS,
})


class RemovalMethod(str, Enum):
    AUTO_FORM = "AUTO_FORM"
    AUTO_EMAIL = "AUTO_EMAIL"
    MANUAL_GUIDE = "MANUAL_GUIDE"


_ACTIVE_WHERE = "status IN ('PENDING', 'SUBMITTED', 'IN_PROGRESS')"


class RemovalRequest(Base):
    """Removal/opt-out request tied to one exposure."""

    __tablename__ = "removal_requests"
    __table_args__ = (
        # At most one non-terminal request per exposure, enforced by the store
        Index(
            "uq_removal_requests_active_exposure",
            "exposure_id",
            unique=True,
            postgresql_where=text(_ACTIVE_WHERE),
            sqlite_where=text(_ACTIVE_WHERE),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), index=True)
    exposure_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("exposures.id"), index=True)

    # Source the opt-out is sent to; the parent broker for consolidated removals
    target_source: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    method: Mapped[RemovalMethod] = mapped_column(SAEnum(RemovalMethod, native_enum=False, length=20))
    status: Mapped[RemovalStatus] = mapped_column(
        SAEnum(RemovalStatus, native_enum=False, length=20), default=RemovalStatus.PENDING
    )
    is_proactive: Mapped[bool] = mapped_column(Boolean, default=False)

    # Retry tracking
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Request details
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    verify_after: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    escalated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    confirmation_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # For manual requests
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    requires_user_action: Mapped[bool] = mapped_column(Boolean, default=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
