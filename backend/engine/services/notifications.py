"""Fire-and-forget notifications.

Side effects are handed to Celery and never waited on. A failure to enqueue
is logged and dropped; it must not fail the scan or removal that caused it.
"""

import logging
from typing import Optional, Protocol
from uuid import UUID

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def scan_completed(self, user_id: UUID, scan_id: UUID, new_exposures: int) -> None:
        ...

    def new_exposures_found(self, user_id: UUID, count: int, source_names: list[str]) -> None:
        ...

    def removal_completed(self, user_id: UUID, source_name: str) -> None:
        ...

    def operator_ticket(
        self, title: str, description: str, user_id: Optional[UUID] = None, severity: str = "high"
    ) -> None:
        ...


class CeleryNotifier:
    """Dispatches notifications as Celery tasks."""

    def _dispatch(self, task, *args) -> None:
        try:
            task.delay(*args)
        except Exception:
            logger.exception("Could not enqueue %s", task.name)

    def scan_completed(self, user_id, scan_id, new_exposures):
        from engine.workers.tasks.notify import send_user_email

        self._dispatch(send_user_email, str(user_id), "scan_completed", {
            "scan_id": str(scan_id),
            "new_exposures": new_exposures,
        })

    def new_exposures_found(self, user_id, count, source_names):
        from engine.workers.tasks.notify import send_user_email

        self._dispatch(send_user_email, str(user_id), "new_exposures", {
            "count": count,
            "sources": source_names[:10],
        })

    def removal_completed(self, user_id, source_name):
        from engine.workers.tasks.notify import send_user_email

        self._dispatch(send_user_email, str(user_id), "removal_completed", {"source_name": source_name})

    def operator_ticket(self, title, description, user_id=None, severity="high"):
        from engine.workers.tasks.notify import raise_operator_ticket

        self._dispatch(raise_operator_ticket, title, description, str(user_id) if user_id else None, severity)


_notifier: Notifier = CeleryNotifier()


def get_notifier() -> Notifier:
    return _notifier
