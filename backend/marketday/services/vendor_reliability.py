from __future__ import annotations

import logging
from datetime import datetime

from marketday.services.dto import VendorRecord

logger = logging.getLogger(__name__)

WARNING_MIN_CONFIRMED_ORDERS = 10
WARNING_CANCELLATION_RATE = 0.10


def cancellation_rate(vendor: VendorRecord) -> float:
    if vendor.orders_confirmed_count <= 0:
        return 0.0
    return vendor.orders_cancelled_count / vendor.orders_confirmed_count


def should_warn(vendor: VendorRecord) -> bool:
    return (
        vendor.orders_confirmed_count >= WARNING_MIN_CONFIRMED_ORDERS
        and cancellation_rate(vendor) > WARNING_CANCELLATION_RATE
    )


def recalculate_vendor_reliability(store, notifier, vendor: VendorRecord, *, now: datetime, vertical: str | None = None) -> bool:
    """Send the one-time high-cancellation warning, or re-arm it once the rate recovers.

    Returns True when a warning was sent by this call.
    """
    if should_warn(vendor):
        if vendor.cancellation_warning_sent_at is not None:
            return False
        if not store.set_cancellation_warning(vendor.id, now):
            return False
        rate_pct = round(cancellation_rate(vendor) * 100, 1)
        logger.info("vendor_cancellation_warning vendor_profile_id=%s rate_pct=%s", vendor.id, rate_pct)
        notifier.send_notification(
            vendor.user_id,
            "vendor_cancellation_warning",
            {
                "cancellation_rate": rate_pct,
                "orders_cancelled": vendor.orders_cancelled_count,
                "orders_confirmed": vendor.orders_confirmed_count,
            },
            vertical=vertical,
        )
        return True

    if vendor.cancellation_warning_sent_at is not None:
        store.set_cancellation_warning(vendor.id, None)
        logger.info("vendor_cancellation_warning_rearmed vendor_profile_id=%s", vendor.id)
    return False
