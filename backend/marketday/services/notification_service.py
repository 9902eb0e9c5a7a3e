from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from marketday.extensions import db
from marketday.integrations.messaging.base import MessagingProvider
from marketday.models import Notification, User
from marketday.utils.money import format_usd

logger = logging.getLogger(__name__)

DEFAULT_VERTICAL = "farmers-market"


@dataclass(frozen=True)
class NotificationTemplate:
    urgency: str  # immediate | urgent | standard | info
    audience: str  # buyer | vendor | admin
    title: Callable[[dict], str]
    message: Callable[[dict], str]
    action_path: str

    def action_url(self, vertical: str | None) -> str:
        return f"/{vertical or DEFAULT_VERTICAL}{self.action_path}"


def _suffix(prefix: str, value) -> str:
    return f"{prefix}{value}" if value else ""


def _amount(d: dict) -> str:
    cents = d.get("amount_cents")
    return format_usd(cents) if cents else ""


TEMPLATES: dict[str, NotificationTemplate] = {
    "order_confirmed": NotificationTemplate(
        urgency="standard",
        audience="buyer",
        title=lambda d: "Order Confirmed",
        message=lambda d: (
            f"{d.get('vendor_name') or 'Your vendor'} confirmed your order #{d.get('order_number', '')}"
            f"{_suffix(' for ', d.get('item_title'))}. We'll notify you when it's ready for pickup."
        ),
        action_path="/buyer/orders",
    ),
    "order_ready": NotificationTemplate(
        urgency="standard",
        audience="buyer",
        title=lambda d: "Order Ready for Pickup",
        message=lambda d: (
            f"Your order #{d.get('order_number', '')} from {d.get('vendor_name') or 'your vendor'} is ready for pickup"
            f"{_suffix(' at ', d.get('market_name'))}."
        ),
        action_path="/buyer/orders",
    ),
    "order_fulfilled": NotificationTemplate(
        urgency="info",
        audience="buyer",
        title=lambda d: "Order Complete",
        message=lambda d: (
            f"Order #{d.get('order_number', '')} has been marked as picked up. "
            f"Thanks for shopping with {d.get('vendor_name') or 'us'}!"
        ),
        action_path="/buyer/orders",
    ),
    "order_cancelled_by_vendor": NotificationTemplate(
        urgency="urgent",
        audience="buyer",
        title=lambda d: "Order Cancelled",
        message=lambda d: (
            f"{d.get('vendor_name') or 'The vendor'} cancelled your order #{d.get('order_number', '')}."
            f"{_suffix(' Reason: ', d.get('reason'))} A refund will be processed."
        ),
        action_path="/buyer/orders",
    ),
    "order_refunded": NotificationTemplate(
        urgency="standard",
        audience="buyer",
        title=lambda d: "Refund Processed",
        message=lambda d: (
            f"A refund{_suffix(' of ', _amount(d))} for order #{d.get('order_number', '')} has been processed."
        ),
        action_path="/buyer/orders",
    ),
    "issue_resolved": NotificationTemplate(
        urgency="standard",
        audience="buyer",
        title=lambda d: "Issue Resolved",
        message=lambda d: (
            f"The issue you reported on order #{d.get('order_number', '')} has been resolved."
            f"{_suffix(' ', d.get('resolution'))}"
        ),
        action_path="/buyer/orders",
    ),
    "order_cancelled_by_buyer": NotificationTemplate(
        urgency="standard",
        audience="vendor",
        title=lambda d: "Order Cancelled by Customer",
        message=lambda d: (
            f"{d.get('buyer_name') or 'A customer'} cancelled order #{d.get('order_number', '')}"
            f"{_suffix(' for ', d.get('item_title'))}.{_suffix(' Reason: ', d.get('reason'))}"
            f"{_suffix(' You will receive a cancellation fee share of ', _amount(d))}"
        ),
        action_path="/vendor/dashboard",
    ),
    "new_paid_order": NotificationTemplate(
        urgency="standard",
        audience="vendor",
        title=lambda d: "New Order Received",
        message=lambda d: (
            f"{d.get('buyer_name') or 'A customer'} placed order #{d.get('order_number', '')}"
            f"{_suffix(' for ', d.get('item_title'))}.{_suffix(' Pickup at ', d.get('market_name'))}"
        ),
        action_path="/vendor/dashboard",
    ),
    "pickup_issue_reported": NotificationTemplate(
        urgency="urgent",
        audience="vendor",
        title=lambda d: "Pickup Issue Reported",
        message=lambda d: (
            f"An issue was reported for order #{d.get('order_number', '')}."
            f"{_suffix(' Details: ', d.get('reason'))} Please check your dashboard."
        ),
        action_path="/vendor/dashboard",
    ),
    "vendor_cancellation_warning": NotificationTemplate(
        urgency="urgent",
        audience="vendor",
        title=lambda d: "High Cancellation Rate",
        message=lambda d: (
            f"You have cancelled {d.get('cancellation_rate', '')}% of your confirmed orders. "
            "Frequent cancellations hurt buyer trust and may affect your standing on the platform."
        ),
        action_path="/vendor/dashboard",
    ),
    "payout_processed": NotificationTemplate(
        urgency="info",
        audience="vendor",
        title=lambda d: "Payout Processed",
        message=lambda d: f"A payout{_suffix(' of ', _amount(d))} has been sent to your account.",
        action_path="/vendor/dashboard",
    ),
    "issue_disputed": NotificationTemplate(
        urgency="standard",
        audience="admin",
        title=lambda d: "Order Issue Disputed",
        message=lambda d: (
            f"{d.get('vendor_name') or 'A vendor'} disputed the issue reported on order "
            f"#{d.get('order_number', '')} and says it was delivered. Please review."
        ),
        action_path="/admin/order-issues",
    ),
    "payout_retry_exhausted": NotificationTemplate(
        urgency="standard",
        audience="admin",
        title=lambda d: "Vendor Payout Needs Attention",
        message=lambda d: (
            f"A vendor payout{_suffix(' of ', _amount(d))} for order item #{d.get('order_item_id', '')} "
            "failed repeatedly and was cancelled. Manual payout is required."
        ),
        action_path="/admin/payouts",
    ),
}

# Urgent templates also go out by SMS.
SMS_URGENCIES = frozenset({"urgent"})


def get_template(template_key: str) -> NotificationTemplate | None:
    return TEMPLATES.get((template_key or "").strip())


class NotificationDispatcher:
    """Persists in-app notifications and fans urgent ones out to SMS.

    ``send_notification`` never raises: notification delivery must not break
    the lifecycle step that triggered it.
    """

    def __init__(self, messaging: MessagingProvider | None = None, *, session=None):
        self.messaging = messaging
        self.session = session or db.session

    def send_notification(
        self,
        user_id: int,
        template_key: str,
        template_data: dict | None = None,
        *,
        vertical: str | None = None,
    ) -> bool:
        template = get_template(template_key)
        if template is None:
            logger.warning("notification_unknown_template key=%s user_id=%s", template_key, user_id)
            return False
        data = dict(template_data or {})
        try:
            title = template.title(data)
            message = template.message(data)
            action_url = template.action_url(vertical)
            row = Notification(
                user_id=int(user_id),
                type=template_key,
                channel="in_app",
                title=title[:160],
                message=message,
                action_url=action_url[:255],
                status="sent",
                provider="in_app",
                sent_at=datetime.utcnow(),
                meta=json.dumps({"urgency": template.urgency, "data": data}, default=str),
            )
            self.session.add(row)
            self.session.commit()
        except Exception:
            logger.exception("notification_persist_failed key=%s user_id=%s", template_key, user_id)
            try:
                self.session.rollback()
            except Exception:
                pass
            return False

        if template.urgency in SMS_URGENCIES:
            self._send_sms(int(user_id), template_key, message)
        return True

    def _send_sms(self, user_id: int, template_key: str, message: str) -> None:
        if self.messaging is None:
            return
        try:
            user = self.session.get(User, user_id)
            phone = (user.phone or "").strip() if user is not None else ""
            if not phone:
                return
            result = self.messaging.send_sms(to=phone, message=message, reference=f"{template_key}-{user_id}")
            row = Notification(
                user_id=user_id,
                type=template_key,
                channel="sms",
                message=message,
                status="sent" if result.ok else "failed",
                provider=getattr(self.messaging, "name", "unknown"),
                provider_ref=(result.provider_ref or None),
                sent_at=datetime.utcnow() if result.ok else None,
                meta=json.dumps({"code": result.code, "detail": result.message}),
            )
            self.session.add(row)
            self.session.commit()
            if not result.ok:
                logger.warning("notification_sms_failed key=%s user_id=%s code=%s", template_key, user_id, result.code)
        except Exception:
            logger.exception("notification_sms_error key=%s user_id=%s", template_key, user_id)
            try:
                self.session.rollback()
            except Exception:
                pass
