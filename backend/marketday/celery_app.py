from __future__ import annotations

import logging
import os

from celery import Celery
from celery.signals import task_failure

logger = logging.getLogger("marketday.celery")

PAYOUT_RETRY_TASK = "marketday.tasks.payout_tasks.retry_failed_payouts"

_FAILURE_OBSERVER_BOUND = False


def _broker_url(flask_app) -> str:
    return (
        (flask_app.config.get("CELERY_BROKER_URL") or "").strip()
        or (os.getenv("REDIS_URL") or "").strip()
        or "redis://localhost:6379/0"
    )


def _bind_failure_observer() -> None:
    global _FAILURE_OBSERVER_BOUND
    if _FAILURE_OBSERVER_BOUND:
        return

    @task_failure.connect(weak=False)
    def _on_task_failure(sender=None, task_id=None, exception=None, **extra):
        # Failed payouts stay "failed" in the database; the next beat run picks them up.
        logger.error(
            "celery_task_failure task=%s task_id=%s err=%s",
            getattr(sender, "name", "") if sender is not None else "",
            task_id or "",
            exception,
        )

    _FAILURE_OBSERVER_BOUND = True


def create_celery_app(flask_app) -> Celery:
    celery = Celery(flask_app.import_name, broker=_broker_url(flask_app))
    celery.conf.update(
        task_serializer="json",
        accept_content=["json"],
        task_ignore_result=True,
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        broker_connection_retry_on_startup=True,
        timezone="UTC",
        enable_utc=True,
        beat_schedule={
            "vendor-payout-retry": {
                "task": PAYOUT_RETRY_TASK,
                "schedule": float(flask_app.config.get("PAYOUT_RETRY_INTERVAL_SECONDS") or 3600),
            },
        },
    )

    class FlaskContextTask(celery.Task):
        def __call__(self, *args, **kwargs):
            with flask_app.app_context():
                return self.run(*args, **kwargs)

    celery.Task = FlaskContextTask
    celery.autodiscover_tasks(["marketday.tasks"], related_name="payout_tasks")
    _bind_failure_observer()
    return celery
