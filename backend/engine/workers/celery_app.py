"""Celery application configuration."""

from celery import Celery
from celery.schedules import crontab

from engine.config import settings

celery_app = Celery(
    "scan_engine",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "engine.workers.tasks.scan",
        "engine.workers.tasks.removals",
        "engine.workers.tasks.notify",
    ],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,  # 10 minutes max per task
    task_soft_time_limit=540,
    worker_prefetch_multiplier=1,  # One task at a time for heavy operations
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Scheduled tasks (beat schedule)
celery_app.conf.beat_schedule = {
    # Fail scans stuck IN_PROGRESS so they stop blocking new ones
    "recover-stale-scans": {
        "task": "scan.recover_stale_scans",
        "schedule": crontab(minute="*/10"),
    },
    # Monitoring re-scan of paid users daily at 2 AM
    "daily-monitoring-scans": {
        "task": "scan.schedule_monitoring_scans",
        "schedule": crontab(hour=2, minute=0),
    },
    "process-pending-requests": {
        "task": "removals.process_pending_requests",
        "schedule": crontab(minute="*/15"),
    },
    "escalate-stale-requests": {
        "task": "removals.escalate_stale_requests",
        "schedule": crontab(hour=9, minute=0),
    },
    # Complete submitted removals past their verification date daily at 4 AM
    "verify-due-removals": {
        "task": "removals.verify_due_removals",
        "schedule": crontab(hour=4, minute=0),
    },
}
