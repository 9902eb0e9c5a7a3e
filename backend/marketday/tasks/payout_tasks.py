from __future__ import annotations

import json
import time
from datetime import datetime, timezone

from celery import shared_task
from flask import current_app

from marketday.extensions import db
from marketday.services.marketplace_store import MarketplaceStore
from marketday.services.payout_retry_service import retry_failed_payouts
from marketday.services.wiring import notification_dispatcher, payments_provider


def _task_log(task_name: str, *, status: str, started_at: float, **extra):
    duration_ms = int(max(0.0, (time.perf_counter() - float(started_at))) * 1000.0)
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": duration_ms,
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra or {})
    try:
        current_app.logger.info(json.dumps(payload))
    except Exception:
        pass


@shared_task(name="marketday.tasks.payout_tasks.retry_failed_payouts")
def retry_failed_payouts_task():
    started = time.perf_counter()
    try:
        summary = retry_failed_payouts(
            MarketplaceStore(),
            payments_provider(),
            notification_dispatcher(),
            datetime.now(timezone.utc),
        )
    except Exception:
        db.session.rollback()
        _task_log("retry_failed_payouts", status="error", started_at=started)
        raise
    _task_log("retry_failed_payouts", status="ok", started_at=started, **summary)
    return summary
