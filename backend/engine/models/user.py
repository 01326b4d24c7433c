"""User models."""

import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import String, Boolean, DateTime, ForeignKey, Text, Uuid
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from engine.db.database import Base, utcnow


class PlanTier(str, Enum):
    FREE = "FREE"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


class User(Base):
    """User account model."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)

    # Subscription
    plan: Mapped[PlanTier] = mapped_column(SAEnum(PlanTier, native_enum=False, length=20), default=PlanTier.FREE)

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class UserProfile(Base):
    """Personal information to protect.

    Every field is stored encrypted. List and address fields hold a JSON
    document once decrypted.
    """

    __tablename__ = "user_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), unique=True)

    full_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    aliases: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON list
    emails: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON list
    phones: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON list
    addresses: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON [{street, city, state, zip_code, country}]
    date_of_birth: Mapped[str | None] = mapped_column(Text, nullable=True)
    usernames: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON list

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
