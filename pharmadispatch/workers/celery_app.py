"""
Celery application: outbox draining and scheduled assignment.

Assignment and notification work run on separate queues so a slow push
gateway never delays the assignment sweep:

    celery -A pharmadispatch.workers.celery_app worker -Q dispatch,notifications
    celery -A pharmadispatch.workers.celery_app beat
"""
from celery import Celery

from pharmadispatch.core.config import settings

TASKS = "pharmadispatch.workers.tasks"

celery_app = Celery(
    "pharma_dispatch",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[TASKS],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_default_queue="dispatch",
    task_routes={
        f"{TASKS}.process_outbox_messages": {"queue": "notifications"},
        f"{TASKS}.cleanup_old_messages": {"queue": "notifications"},
        f"{TASKS}.auto_assign_pending": {"queue": "dispatch"},
    },
    # Redeliver a task whose worker died mid-run
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_time_limit=300,
    result_expires=3600,
)

celery_app.conf.beat_schedule = {
    "drain-outbox": {
        "task": f"{TASKS}.process_outbox_messages",
        "schedule": settings.OUTBOX_POLL_INTERVAL_SECONDS,
    },
    "auto-assign-pending": {
        "task": f"{TASKS}.auto_assign_pending",
        "schedule": settings.AUTO_ASSIGN_INTERVAL_SECONDS,
        # An unstarted sweep expires once the next one is due
        "options": {"expires": settings.AUTO_ASSIGN_INTERVAL_SECONDS},
    },
    "purge-sent-outbox": {
        "task": f"{TASKS}.cleanup_old_messages",
        "schedule": 86400.0,
        "kwargs": {"days": settings.OUTBOX_RETENTION_DAYS},
    },
}
