"""Database sessions for Celery workers."""

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from engine.config import settings


@asynccontextmanager
async def worker_session():
    """Session on an engine bound to the current event loop.

    Every task runs its coroutine with its own ``asyncio.run`` loop, so the
    pooled connections can't be shared between tasks.
    """
    engine = create_async_engine(settings.database_url)
    try:
        async with async_sessionmaker(engine, expire_on_commit=False)() as db:
            yield db
    finally:
        await engine.dispose()
