"""Shared route dependencies."""

import logging
from typing import Annotated, Callable
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from engine.db.database import get_db
from engine.errors import NotFoundError
from engine.models.user import User

logger = logging.getLogger(__name__)

DbSession = Annotated[AsyncSession, Depends(get_db)]


async def get_current_user(user_id: UUID, db: DbSession) -> User:
    """The user named in the path. Authentication happens in front of this service."""
    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError(f"User {user_id} not found")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


def dispatch_scan(scan_id: UUID) -> None:
    """Hand a started scan to the worker."""
    from engine.workers.tasks.scan import run_user_scan

    run_user_scan.delay(str(scan_id))


def get_scan_dispatcher() -> Callable[[UUID], None]:
    return dispatch_scan


ScanDispatcher = Annotated[Callable[[UUID], None], Depends(get_scan_dispatcher)]
