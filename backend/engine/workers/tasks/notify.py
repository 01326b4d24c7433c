"""Notification tasks: user emails and operator tickets."""

import asyncio
import logging
from typing import Optional
from uuid import UUID

from celery import shared_task

from engine.models.alert import Alert
from engine.models.user import User
from engine.services import email as email_service
from engine.workers.session import worker_session

logger = logging.getLogger(__name__)


def _user_alert(kind: str, payload: dict) -> Optional[Alert]:
    if kind == "scan_completed":
        count = payload.get("new_exposures", 0)
        return Alert(alert_type=kind, severity="low", title="Scan complete",
                     description=f"{count} new exposures found")
    if kind == "new_exposures":
        sources = payload.get("sources", [])
        return Alert(alert_type="new_exposure", severity="high",
                     title=f"{payload.get('count', len(sources))} new exposures found",
                     description=", ".join(sources))
    if kind == "removal_completed":
        return Alert(alert_type=kind, severity="low",
                     title=f"Removed from {payload.get('source_name', 'a data broker')}")
    return None


async def deliver_user_notification(db, user_id: UUID, kind: str, payload: dict) -> bool:
    """Record a user alert and email it."""
    user = await db.get(User, user_id)
    if user is None:
        logger.warning("Notification %s for unknown user %s dropped", kind, user_id)
        return False

    alert = _user_alert(kind, payload)
    if alert is None:
        logger.error("Unknown notification kind %s", kind)
        return False
    alert.user_id = user.id
    alert.audience = "user"
    db.add(alert)
    await db.commit()

    if kind == "scan_completed":
        return await email_service.send_scan_completed_email(user.email, payload.get("new_exposures", 0))
    if kind == "new_exposures":
        return await email_service.send_new_exposures_email(
            user.email, payload.get("count", 0), payload.get("sources", [])
        )
    return await email_service.send_removal_complete_email(user.email, payload.get("source_name", ""))


async def file_operator_ticket(
    db,
    title: str,
    description: str,
    user_id: Optional[UUID] = None,
    severity: str = "high",
) -> Alert:
    """Persist an operator-audience alert and email the operator."""
    ticket = Alert(
        user_id=user_id,
        audience="operator",
        alert_type="operator_ticket",
        severity=severity,
        title=title[:255],
        description=description,
    )
    db.add(ticket)
    await db.commit()
    logger.warning("Operator ticket [%s]: %s", severity, title)

    await email_service.send_operator_ticket_email(title, description, severity)
    return ticket


@shared_task(name="notify.send_user_email", ignore_result=True)
def send_user_email(user_id: str, kind: str, payload: dict):
    asyncio.run(_send_user_email_async(UUID(user_id), kind, payload))


async def _send_user_email_async(user_id: UUID, kind: str, payload: dict) -> None:
    async with worker_session() as db:
        await deliver_user_notification(db, user_id, kind, payload)


@shared_task(name="notify.raise_operator_ticket", ignore_result=True)
def raise_operator_ticket(title: str, description: str, user_id: Optional[str] = None, severity: str = "high"):
    asyncio.run(_raise_operator_ticket_async(title, description, UUID(user_id) if user_id else None, severity))


async def _raise_operator_ticket_async(title, description, user_id, severity) -> None:
    async with worker_session() as db:
        await file_operator_ticket(db, title, description, user_id, severity)
