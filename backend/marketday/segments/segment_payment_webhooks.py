from __future__ import annotations

import json

import stripe
from flask import Blueprint, current_app, jsonify, request

from marketday.extensions import db
from marketday.services.result import ErrorKind
from marketday.services.wiring import lifecycle_orchestrator
from marketday.utils.events import log_event
from marketday.utils.http import error_response
from marketday.utils.observability import get_request_id

webhooks_bp = Blueprint("webhooks_bp", __name__, url_prefix="/api/webhooks")

REFUND_EVENTS = ("refund.created", "refund.updated", "charge.refund.updated")


def _is_prod() -> bool:
    return (current_app.config.get("MARKETDAY_ENV") or "dev") in ("prod", "production")


def _refunds_from_event(event: dict) -> list[dict]:
    event_type = str(event.get("type") or "")
    obj = ((event.get("data") or {}).get("object")) or {}
    if not isinstance(obj, dict):
        return []
    if event_type in REFUND_EVENTS:
        return [obj]
    if event_type == "charge.refunded":
        refunds = (obj.get("refunds") or {}).get("data") or []
        return [r for r in refunds if isinstance(r, dict)]
    return []


@webhooks_bp.post("/stripe/refund")
def stripe_refund_webhook():
    raw = request.get_data() or b""
    secret = (current_app.config.get("STRIPE_WEBHOOK_SECRET") or "").strip()
    if secret:
        sig = request.headers.get("Stripe-Signature", "")
        try:
            stripe.Webhook.construct_event(raw, sig, secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            current_app.logger.warning("stripe_webhook_rejected err=%s", exc.__class__.__name__)
            return error_response(400, "validation", "Invalid webhook signature")
    elif _is_prod():
        return error_response(503, "ServiceUnavailable", "Webhook secret not configured")

    try:
        event = json.loads(raw.decode("utf-8") or "{}")
    except (UnicodeDecodeError, ValueError):
        return error_response(400, "validation", "Invalid JSON payload")
    if not isinstance(event, dict):
        return error_response(400, "validation", "Invalid JSON payload")

    refunds = _refunds_from_event(event)
    if not refunds:
        return jsonify({"ok": True, "ignored": True, "type": event.get("type") or ""}), 200

    orchestrator = lifecycle_orchestrator()
    confirmed, ignored = [], []
    for refund in refunds:
        refund_id = str(refund.get("id") or "")
        status = str(refund.get("status") or "")
        if not refund_id:
            continue
        if status in ("failed", "canceled"):
            current_app.logger.error("stripe_refund_failed refund_id=%s status=%s", refund_id, status)
            log_event(
                "refund_failed",
                subject_type="refund",
                subject_id=refund_id,
                severity="ERROR",
                needs_reconciliation=True,
                metadata={"refund_id": refund_id, "status": status, "event_id": event.get("id") or ""},
            )
            ignored.append(refund_id)
            continue
        if status != "succeeded":
            ignored.append(refund_id)
            continue
        try:
            result = orchestrator.confirm_refund(refund_reference=refund_id)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("stripe_refund_webhook_failed refund_id=%s", refund_id)
            return error_response(500, "InternalServerError", "Webhook handling failed")
        if result.ok:
            confirmed.append(result.value["order_item_id"])
        elif result.kind in (ErrorKind.NOT_FOUND, ErrorKind.VALIDATION):
            # Unknown or already-confirmed refunds are acknowledged so the processor stops retrying.
            ignored.append(refund_id)
        else:
            return error_response(result.http_status, result.kind.value, result.message)

    return jsonify({"ok": True, "confirmed": confirmed, "ignored": ignored, "trace_id": get_request_id()}), 200
