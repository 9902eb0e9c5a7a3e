"""Refund and fee rules for a buyer cancelling one order item.

1. Within one hour of order creation the buyer always gets a full refund.
2. After that, if the vendor had confirmed the item, 25% of the item subtotal
   is kept as a cancellation fee, split between vendor and platform.
3. Otherwise the refund is full.

Pure: no I/O, ``now`` is injectable.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone

from marketday.services.dto import as_utc
from marketday.services.order_item_state import vendor_has_confirmed
from marketday.utils.money import (
    CANCELLATION_FEE_BPS,
    CANCELLATION_PLATFORM_SHARE_BPS,
    bps_half_up,
    buyer_fee_cents,
    clamp_cents,
    split_cents,
)

GRACE_PERIOD = timedelta(hours=1)


@dataclass(frozen=True)
class CancellationOutcome:
    refund_amount_cents: int
    cancellation_fee_cents: int
    vendor_share_cents: int
    platform_share_cents: int
    fee_applied: bool
    within_grace_period: bool
    vendor_had_confirmed: bool
    buyer_paid_cents: int

    def to_dict(self) -> dict:
        return asdict(self)


def buyer_paid_for_item_cents(subtotal_cents: int, total_items_in_order: int) -> int:
    """What the buyer was charged for one item: subtotal plus its share of buyer fees."""
    subtotal = clamp_cents(subtotal_cents)
    return subtotal + buyer_fee_cents(subtotal, items_in_order=total_items_in_order)


def calculate_cancellation_fee(
    *,
    subtotal_cents: int,
    total_items_in_order: int,
    order_status: str,
    order_created_at: datetime,
    now: datetime | None = None,
) -> CancellationOutcome:
    subtotal = clamp_cents(subtotal_cents)
    current = as_utc(now) if now is not None else datetime.now(timezone.utc)
    created = as_utc(order_created_at)

    within_grace = (current - created) < GRACE_PERIOD
    confirmed = vendor_has_confirmed(order_status)
    buyer_paid = buyer_paid_for_item_cents(subtotal, total_items_in_order)

    if within_grace or not confirmed:
        return CancellationOutcome(
            refund_amount_cents=subtotal,
            cancellation_fee_cents=0,
            vendor_share_cents=0,
            platform_share_cents=0,
            fee_applied=False,
            within_grace_period=within_grace,
            vendor_had_confirmed=confirmed,
            buyer_paid_cents=buyer_paid,
        )

    fee = bps_half_up(subtotal, CANCELLATION_FEE_BPS)
    vendor_share, platform_share = split_cents(fee, CANCELLATION_PLATFORM_SHARE_BPS)
    return CancellationOutcome(
        refund_amount_cents=subtotal - fee,
        cancellation_fee_cents=fee,
        vendor_share_cents=vendor_share,
        platform_share_cents=platform_share,
        fee_applied=True,
        within_grace_period=False,
        vendor_had_confirmed=True,
        buyer_paid_cents=buyer_paid,
    )
