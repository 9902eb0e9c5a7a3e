"""Typed records handed out by the marketplace store.

Rows are converted once at the boundary: naive UTC columns become aware UTC
datetimes and schedule times are parsed, so the lifecycle and availability
code never sees ORM objects or ``None`` where a value is required.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timezone

MARKET_TYPES = ("traditional", "private_pickup")


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_clock(value: str) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS``."""
    raw = (value or "").strip()
    parts = raw.split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"invalid clock time: {value!r}")
    try:
        nums = [int(p) for p in parts]
    except ValueError:
        raise ValueError(f"invalid clock time: {value!r}") from None
    return time(*nums)


@dataclass(frozen=True)
class ScheduleRecord:
    id: int
    day_of_week: int
    start_time: time
    end_time: time
    active: bool = True

    def __post_init__(self):
        if not 0 <= int(self.day_of_week) <= 6:
            raise ValueError(f"day_of_week out of range: {self.day_of_week}")

    @classmethod
    def from_row(cls, row) -> "ScheduleRecord":
        return cls(
            id=int(row.id),
            day_of_week=int(row.day_of_week),
            start_time=parse_clock(row.start_time),
            end_time=parse_clock(row.end_time),
            active=bool(row.active),
        )


@dataclass(frozen=True)
class MarketRecord:
    id: int
    name: str
    market_type: str
    timezone: str
    cutoff_hours: float | None
    active: bool
    schedules: tuple[ScheduleRecord, ...] = ()
    address: str = ""
    city: str = ""
    state: str = ""

    def __post_init__(self):
        if self.market_type not in MARKET_TYPES:
            raise ValueError(f"unknown market_type: {self.market_type}")
        if self.cutoff_hours is not None and float(self.cutoff_hours) < 0:
            raise ValueError("cutoff_hours must be >= 0")

    @classmethod
    def from_row(cls, row) -> "MarketRecord":
        return cls(
            id=int(row.id),
            name=row.name or "",
            market_type=(row.market_type or "traditional"),
            timezone=(row.timezone or "America/Chicago"),
            cutoff_hours=float(row.cutoff_hours) if row.cutoff_hours is not None else None,
            active=bool(row.active),
            schedules=tuple(ScheduleRecord.from_row(s) for s in (row.schedules or [])),
            address=row.address or "",
            city=row.city or "",
            state=row.state or "",
        )


@dataclass(frozen=True)
class ListingRecord:
    id: int
    vendor_profile_id: int
    title: str
    status: str
    price_cents: int
    quantity: int | None
    vertical_id: str = ""

    @property
    def is_published(self) -> bool:
        return self.status == "published"

    @classmethod
    def from_row(cls, row) -> "ListingRecord":
        return cls(
            id=int(row.id),
            vendor_profile_id=int(row.vendor_profile_id),
            title=row.title or "",
            status=row.status or "draft",
            price_cents=int(row.price_cents or 0),
            quantity=int(row.quantity) if row.quantity is not None else None,
            vertical_id=row.vertical_id or "",
        )


@dataclass(frozen=True)
class VendorRecord:
    id: int
    user_id: int
    business_name: str
    stripe_account_id: str | None
    stripe_payouts_enabled: bool
    orders_confirmed_count: int
    orders_cancelled_count: int
    cancellation_warning_sent_at: datetime | None

    @classmethod
    def from_row(cls, row) -> "VendorRecord":
        return cls(
            id=int(row.id),
            user_id=int(row.user_id),
            business_name=row.business_name or "",
            stripe_account_id=(row.stripe_account_id or None),
            stripe_payouts_enabled=bool(row.stripe_payouts_enabled),
            orders_confirmed_count=int(row.orders_confirmed_count or 0),
            orders_cancelled_count=int(row.orders_cancelled_count or 0),
            cancellation_warning_sent_at=as_utc(row.cancellation_warning_sent_at),
        )


@dataclass(frozen=True)
class OrderRecord:
    id: int
    order_number: str
    buyer_user_id: int
    status: str
    payment_method: str
    vertical_id: str
    created_at: datetime
    item_count: int

    @classmethod
    def from_row(cls, row) -> "OrderRecord":
        return cls(
            id=int(row.id),
            order_number=row.order_number or "",
            buyer_user_id=int(row.buyer_user_id),
            status=row.status or "pending",
            payment_method=row.payment_method or "stripe",
            vertical_id=row.vertical_id or "",
            created_at=as_utc(row.created_at),
            item_count=len(row.items or []),
        )


@dataclass(frozen=True)
class OrderItemRecord:
    id: int
    order: OrderRecord
    listing_id: int | None
    listing_title: str
    vendor_profile_id: int
    market_id: int | None
    quantity: int
    unit_price_cents: int
    subtotal_cents: int
    status: str
    cancelled_at: datetime | None
    refund_amount_cents: int | None
    refund_status: str
    issue_status: str | None
    issue_reported_at: datetime | None

    @property
    def order_id(self) -> int:
        return self.order.id

    @classmethod
    def from_row(cls, row, *, listing_title: str = "") -> "OrderItemRecord":
        return cls(
            id=int(row.id),
            order=OrderRecord.from_row(row.order),
            listing_id=int(row.listing_id) if row.listing_id is not None else None,
            listing_title=listing_title,
            vendor_profile_id=int(row.vendor_profile_id),
            market_id=int(row.market_id) if row.market_id is not None else None,
            quantity=int(row.quantity or 0),
            unit_price_cents=int(row.unit_price_cents or 0),
            subtotal_cents=int(row.subtotal_cents or 0),
            status=row.status or "pending",
            cancelled_at=as_utc(row.cancelled_at),
            refund_amount_cents=int(row.refund_amount_cents) if row.refund_amount_cents is not None else None,
            refund_status=row.refund_status or "none",
            issue_status=row.issue_status or None,
            issue_reported_at=as_utc(row.issue_reported_at),
        )


@dataclass(frozen=True)
class PaymentRecord:
    id: int
    order_id: int
    payment_intent_id: str
    amount_cents: int
    status: str

    @classmethod
    def from_row(cls, row) -> "PaymentRecord":
        return cls(
            id=int(row.id),
            order_id=int(row.order_id),
            payment_intent_id=row.stripe_payment_intent_id or "",
            amount_cents=int(row.amount_cents or 0),
            status=row.status or "pending",
        )


@dataclass(frozen=True)
class PayoutRecord:
    id: int
    order_id: int
    order_item_id: int
    vendor_profile_id: int
    destination_account_id: str | None
    payouts_enabled: bool
    amount_cents: int
    status: str
    created_at: datetime
