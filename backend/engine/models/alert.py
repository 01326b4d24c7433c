"""Alert model - notifications for users and operator tickets."""

import uuid
from datetime import datetime
from sqlalchemy import String, Boolean, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from engine.db.database import Base, utcnow


class Alert(Base):
    """User alerts and operator-facing tickets."""

    __tablename__ = "alerts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True, index=True)

    # Audience: user, operator
    audience: Mapped[str] = mapped_column(String(20), default="user")

    # Alert type: new_exposure, scan_completed, removal_completed, operator_ticket
    alert_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # Severity: low, medium, high, critical
    severity: Mapped[str] = mapped_column(String(20), default="medium")

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Status
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
