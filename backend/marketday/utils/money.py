from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

# Buyer pays subtotal + 6.5% + $0.15 flat (once per order).
BUYER_FEE_BPS = 650
BUYER_FLAT_FEE_CENTS = 15

# Buyer cancellation after vendor confirmation: 25% of the item subtotal is
# retained; the platform keeps 13% of that and the vendor gets the rest.
CANCELLATION_FEE_BPS = 2500
CANCELLATION_PLATFORM_SHARE_BPS = 1300


def clamp_cents(value: int | float | Decimal | None) -> int:
    try:
        parsed = int(value or 0)
    except Exception:
        parsed = 0
    return parsed if parsed > 0 else 0


def bps_half_up(amount_cents: int, bps: int) -> int:
    amt = Decimal(clamp_cents(amount_cents))
    rate = Decimal(int(max(0, bps)))
    raw = (amt * rate) / Decimal("10000")
    return clamp_cents(int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


def divide_half_up(amount_cents: int, parts: int) -> int:
    if int(parts or 0) <= 0:
        return clamp_cents(amount_cents)
    raw = Decimal(clamp_cents(amount_cents)) / Decimal(int(parts))
    return clamp_cents(int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


def split_cents(total_cents: int, platform_bps: int) -> tuple[int, int]:
    """Returns (vendor_cents, platform_cents); the two always sum to total."""
    total = clamp_cents(total_cents)
    if total <= 0:
        return 0, 0
    platform_cents = bps_half_up(total, platform_bps)
    vendor_cents = total - platform_cents
    if vendor_cents < 0:
        vendor_cents = 0
    return int(vendor_cents), int(platform_cents)


def buyer_fee_cents(subtotal_cents: int, *, items_in_order: int = 1) -> int:
    """Buyer-side fee attributable to one item: percentage fee plus its share of the flat fee."""
    percent = bps_half_up(subtotal_cents, BUYER_FEE_BPS)
    flat = divide_half_up(BUYER_FLAT_FEE_CENTS, max(1, int(items_in_order or 1)))
    return percent + flat


def format_usd(cents: int | None) -> str:
    amount = (Decimal(int(cents or 0)) / Decimal("100")).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"${amount}"
