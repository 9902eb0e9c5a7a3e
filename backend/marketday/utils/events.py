from __future__ import annotations

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from marketday.extensions import db
from marketday.models import PlatformEvent
from marketday.utils.observability import get_request_id

logger = logging.getLogger(__name__)


def _safe_value(value: Any):
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _safe_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_safe_value(v) for v in value]
    return str(value)


def _safe_json(data: Any) -> str:
    normalized = _safe_value(data if isinstance(data, dict) else {"value": data})
    try:
        return json.dumps(normalized, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        return json.dumps({"raw": str(normalized)})


def log_event(
    event_type: str,
    *,
    actor_user_id: int | None = None,
    subject_type: str | None = None,
    subject_id: int | str | None = None,
    severity: str = "INFO",
    needs_reconciliation: bool = False,
    metadata: dict | None = None,
) -> PlatformEvent | None:
    """Best-effort event logger.

    Runs in a savepoint so a failure here never breaks the caller's flow.
    """
    try:
        event = PlatformEvent(
            event_type=(event_type or "unknown").strip()[:80],
            actor_user_id=int(actor_user_id) if actor_user_id is not None else None,
            subject_type=(subject_type or "").strip()[:80] or None,
            subject_id=str(subject_id)[:120] if subject_id is not None else None,
            request_id=(get_request_id() or "").strip()[:80] or None,
            severity=(severity or "INFO").strip().upper()[:16] or "INFO",
            needs_reconciliation=bool(needs_reconciliation),
            metadata_json=_safe_json(metadata or {}),
        )
        with db.session.begin_nested():
            db.session.add(event)
            db.session.flush()
        db.session.commit()
        return event
    except Exception:
        logger.exception("platform_event_write_failed event_type=%s subject_id=%s", event_type, subject_id)
        try:
            db.session.rollback()
        except Exception:
            pass
        return None
