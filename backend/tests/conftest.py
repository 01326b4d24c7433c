"""
Shared fixtures: an in-memory SQLite store per test, user/profile factories
and a notifier that records instead of dispatching Celery tasks.
"""

import json
import uuid

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from engine.db.database import Base
from engine.models import Exposure, ExposureStatus, PlanTier, User, UserProfile
from engine.services import notifications


class RecordingNotifier:
    """Notifier that keeps every call for assertions."""

    def __init__(self):
        self.scan_completions = []
        self.new_exposures = []
        self.removals = []
        self.tickets = []

    def scan_completed(self, user_id, scan_id, new_exposures):
        self.scan_completions.append((user_id, scan_id, new_exposures))

    def new_exposures_found(self, user_id, count, source_names):
        self.new_exposures.append((user_id, count, source_names))

    def removal_completed(self, user_id, source_name):
        self.removals.append((user_id, source_name))

    def operator_ticket(self, title, description, user_id=None, severity="high"):
        self.tickets.append({"title": title, "description": description, "user_id": user_id, "severity": severity})


@pytest.fixture(autouse=True)
def notifier(monkeypatch):
    """Every test gets a recording notifier; Celery is never contacted."""
    recorder = RecordingNotifier()
    monkeypatch.setattr(notifications, "_notifier", recorder)
    return recorder


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db):
    async def factory(plan=PlanTier.FREE, email=None, is_active=True) -> User:
        user = User(
            id=uuid.uuid4(),
            email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
            plan=plan,
            is_active=is_active,
        )
        db.add(user)
        await db.flush()
        return user

    return factory


@pytest.fixture
def make_profile(db):
    async def factory(
        user: User,
        full_name="Jane Doe",
        emails=("jane.doe@example.com",),
        phones=("555-123-4567",),
        addresses=({"street": "12 Oak St", "city": "Austin", "state": "TX", "zip_code": "78701"},),
        aliases=(),
    ) -> UserProfile:
        profile = UserProfile(
            user_id=user.id,
            full_name=full_name,
            emails=json.dumps(list(emails)),
            phones=json.dumps(list(phones)),
            addresses=json.dumps(list(addresses)),
            aliases=json.dumps(list(aliases)),
        )
        db.add(profile)
        await db.flush()
        return profile

    return factory


@pytest.fixture
def make_exposure(db):
    async def factory(
        user: User,
        source="SPOKEO",
        source_name="Spokeo",
        data_preview="J*** D** - Austin, TX",
        status=ExposureStatus.ACTIVE,
        requires_manual_action=False,
        **fields,
    ) -> Exposure:
        exposure = Exposure(
            id=uuid.uuid4(),
            user_id=user.id,
            source=source,
            source_name=source_name,
            data_type=fields.pop("data_type", "COMBINED_PROFILE"),
            data_preview=data_preview,
            status=status,
            requires_manual_action=requires_manual_action,
            **fields,
        )
        db.add(exposure)
        await db.flush()
        return exposure

    return factory
