"""Removal request tasks."""

import asyncio

from celery import shared_task

from engine.services import request_manager
from engine.services.removal_state import escalate_stale_requests as escalate_stale
from engine.services.removal_state import verify_due_removals as verify_due
from engine.workers.session import worker_session


@shared_task(name="removals.process_pending_requests", bind=True)
def process_pending_requests(self):
    """Submit PENDING removal requests, honoring per-source daily caps."""
    return asyncio.run(_process_pending_requests_async())


async def _process_pending_requests_async() -> dict:
    async with worker_session() as db:
        return await request_manager.process_pending_requests(db)


@shared_task(name="removals.escalate_stale_requests")
def escalate_stale_requests():
    return asyncio.run(_escalate_stale_requests_async())


async def _escalate_stale_requests_async() -> dict:
    async with worker_session() as db:
        escalated = await escalate_stale(db)
        await db.commit()
        return {"escalated": escalated}


@shared_task(name="removals.verify_due_removals")
def verify_due_removals():
    """Complete submitted removals once the broker's processing window has passed."""
    return asyncio.run(_verify_due_removals_async())


async def _verify_due_removals_async() -> dict:
    async with worker_session() as db:
        verified = await verify_due(db)
        await db.commit()
        return {"verified": verified}
