"""Datastore boundary for availability and the order-item lifecycle.

Every method returns typed records from ``marketday.services.dto`` or plain
values. Writes that guard a lifecycle step are single conditional UPDATEs whose
row count tells the caller whether it won; each write commits before returning.
"""
from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime

from sqlalchemy import exists, or_

from marketday.extensions import db
from marketday.models import (
    Listing,
    ListingMarket,
    Market,
    Order,
    OrderItem,
    OrderItemTransition,
    Payment,
    User,
    VendorPayout,
    VendorProfile,
)
from marketday.services.dto import (
    ListingRecord,
    MarketRecord,
    OrderItemRecord,
    OrderRecord,
    PaymentRecord,
    PayoutRecord,
    VendorRecord,
    as_utc,
    to_naive_utc,
)
from marketday.services.order_item_state import IssueStatus, OrderItemStatus
from marketday.utils.money import BUYER_FEE_BPS, BUYER_FLAT_FEE_CENTS, bps_half_up

logger = logging.getLogger(__name__)


class MarketplaceStore:
    def __init__(self, session=None):
        self.session = session or db.session

    def rollback(self) -> None:
        self.session.rollback()

    # -- reads -------------------------------------------------------------

    def get_listing(self, listing_id: int) -> ListingRecord | None:
        row = self.session.get(Listing, int(listing_id))
        if row is None or row.deleted_at is not None:
            return None
        return ListingRecord.from_row(row)

    def list_listing_markets(self, listing_id: int) -> list[MarketRecord]:
        rows = (
            Market.query.join(ListingMarket, ListingMarket.market_id == Market.id)
            .filter(ListingMarket.listing_id == int(listing_id))
            .order_by(Market.id.asc())
            .all()
        )
        return [MarketRecord.from_row(r) for r in rows]

    def get_market(self, market_id: int) -> MarketRecord | None:
        row = self.session.get(Market, int(market_id))
        return MarketRecord.from_row(row) if row is not None else None

    def listing_sold_at_market(self, listing_id: int, market_id: int) -> bool:
        return (
            ListingMarket.query.filter_by(listing_id=int(listing_id), market_id=int(market_id)).first()
            is not None
        )

    def _item_record(self, row: OrderItem | None) -> OrderItemRecord | None:
        if row is None:
            return None
        title = ""
        if row.listing_id is not None:
            listing = self.session.get(Listing, int(row.listing_id))
            title = (listing.title or "") if listing is not None else ""
        return OrderItemRecord.from_row(row, listing_title=title)

    def get_item(self, item_id: int) -> OrderItemRecord | None:
        return self._item_record(self.session.get(OrderItem, int(item_id)))

    def get_item_for_buyer(self, item_id: int, buyer_user_id: int) -> OrderItemRecord | None:
        row = (
            OrderItem.query.join(Order, Order.id == OrderItem.order_id)
            .filter(OrderItem.id == int(item_id), Order.buyer_user_id == int(buyer_user_id))
            .first()
        )
        return self._item_record(row)

    def get_item_for_vendor(self, item_id: int, vendor_profile_id: int) -> OrderItemRecord | None:
        row = OrderItem.query.filter_by(id=int(item_id), vendor_profile_id=int(vendor_profile_id)).first()
        return self._item_record(row)

    def get_item_by_refund_reference(self, reference: str) -> OrderItemRecord | None:
        if not reference:
            return None
        return self._item_record(OrderItem.query.filter_by(refund_reference=reference[:120]).first())

    def get_order(self, order_id: int) -> OrderRecord | None:
        row = self.session.get(Order, int(order_id))
        return OrderRecord.from_row(row) if row is not None else None

    def get_vendor(self, vendor_profile_id: int) -> VendorRecord | None:
        row = self.session.get(VendorProfile, int(vendor_profile_id))
        return VendorRecord.from_row(row) if row is not None else None

    def get_vendor_by_user(self, user_id: int) -> VendorRecord | None:
        row = VendorProfile.query.filter_by(user_id=int(user_id)).first()
        return VendorRecord.from_row(row) if row is not None else None

    def get_user_contact(self, user_id: int) -> dict | None:
        row = self.session.get(User, int(user_id))
        if row is None:
            return None
        return {"id": int(row.id), "name": row.name or "", "phone": row.phone or "", "role": row.role or "buyer"}

    def list_admin_user_ids(self, limit: int = 5) -> list[int]:
        rows = (
            User.query.filter(User.role == "admin", User.is_active.is_(True))
            .order_by(User.id.asc())
            .limit(int(limit))
            .all()
        )
        return [int(r.id) for r in rows]

    def find_succeeded_payment(self, order_id: int) -> PaymentRecord | None:
        row = (
            Payment.query.filter_by(order_id=int(order_id), status="succeeded")
            .order_by(Payment.id.desc())
            .first()
        )
        if row is None or not row.stripe_payment_intent_id:
            return None
        return PaymentRecord.from_row(row)

    # -- item lifecycle writes ----------------------------------------------

    def cancel_item_if_active(
        self,
        item_id: int,
        *,
        cancelled_by: str,
        reason: str,
        refund_amount_cents: int,
        refund_pending: bool,
        now: datetime,
        via_open_issue: bool = False,
    ) -> bool:
        """Mark the item cancelled unless someone already did. Returns True if this call won.

        ``via_open_issue`` is the issue-refund path: the item may already be
        fulfilled, but it must carry an unresolved buyer issue.
        """
        ts = to_naive_utc(now)
        q = OrderItem.query.filter(OrderItem.id == int(item_id), OrderItem.cancelled_at.is_(None))
        if via_open_issue:
            q = q.filter(
                OrderItem.issue_status.in_(tuple(IssueStatus.OPEN)),
                OrderItem.status.in_((OrderItemStatus.READY, OrderItemStatus.FULFILLED)),
            )
        else:
            q = q.filter(OrderItem.status.notin_(tuple(OrderItemStatus.NOT_CANCELLABLE)))
        count = q.update(
            {
                OrderItem.status: OrderItemStatus.CANCELLED,
                OrderItem.cancelled_at: ts,
                OrderItem.cancelled_by: (cancelled_by or "system")[:24],
                OrderItem.cancellation_reason: reason[:500] if reason else None,
                OrderItem.refund_amount_cents: int(refund_amount_cents),
                OrderItem.refund_status: "pending" if refund_pending else "none",
                OrderItem.updated_at: ts,
            },
            synchronize_session=False,
        )
        self.session.commit()
        return count == 1

    def advance_item_status(self, item_id: int, *, from_statuses, to_status: str, now: datetime) -> bool:
        ts = to_naive_utc(now)
        values = {OrderItem.status: to_status, OrderItem.updated_at: ts}
        stamp = {
            OrderItemStatus.CONFIRMED: OrderItem.confirmed_at,
            OrderItemStatus.READY: OrderItem.ready_at,
            OrderItemStatus.FULFILLED: OrderItem.fulfilled_at,
        }.get(to_status)
        if stamp is not None:
            values[stamp] = ts
        count = OrderItem.query.filter(
            OrderItem.id == int(item_id),
            OrderItem.cancelled_at.is_(None),
            OrderItem.status.in_(tuple(from_statuses)),
        ).update(values, synchronize_session=False)
        self.session.commit()
        return count == 1

    def report_issue_if_none(self, item_id: int, *, description: str, now: datetime) -> bool:
        count = OrderItem.query.filter(
            OrderItem.id == int(item_id),
            OrderItem.cancelled_at.is_(None),
            OrderItem.issue_status.is_(None),
        ).update(
            {
                OrderItem.issue_reported_at: to_naive_utc(now),
                OrderItem.issue_description: (description or "")[:1000],
                OrderItem.issue_status: IssueStatus.NEW,
            },
            synchronize_session=False,
        )
        self.session.commit()
        return count == 1

    def resolve_issue_if_open(
        self,
        item_id: int,
        *,
        resolved_by: int,
        notes: str | None,
        now: datetime,
        escalate: bool = False,
    ) -> bool:
        ts = to_naive_utc(now)
        values = {
            OrderItem.issue_status: IssueStatus.RESOLVED,
            OrderItem.issue_resolved_at: ts,
            OrderItem.issue_resolved_by: int(resolved_by),
            OrderItem.issue_notes: notes[:1000] if notes else None,
            OrderItem.updated_at: ts,
        }
        if escalate:
            values[OrderItem.issue_escalated_at] = ts
        count = OrderItem.query.filter(
            OrderItem.id == int(item_id),
            OrderItem.issue_status.in_(tuple(IssueStatus.OPEN)),
        ).update(values, synchronize_session=False)
        self.session.commit()
        return count == 1

    def mark_refund_result(
        self,
        item_id: int,
        *,
        status: str,
        reference: str = "",
        now: datetime | None = None,
    ) -> bool:
        """Record the processor outcome; a succeeded refund moves cancelled -> refunded."""
        succeeded = status == "succeeded"
        values = {
            OrderItem.refund_status: status,
            OrderItem.updated_at: to_naive_utc(now) if now is not None else datetime.utcnow(),
        }
        if reference:
            values[OrderItem.refund_reference] = reference[:120]
        q = OrderItem.query.filter(OrderItem.id == int(item_id))
        if succeeded:
            values[OrderItem.status] = OrderItemStatus.REFUNDED
            q = q.filter(OrderItem.status == OrderItemStatus.CANCELLED)
        count = q.update(values, synchronize_session=False)
        self.session.commit()
        return count == 1

    def record_transition(
        self,
        item: OrderItemRecord,
        *,
        from_status: str,
        to_status: str,
        actor_type: str,
        actor_id: int | None = None,
        reason: str = "",
        metadata: dict | None = None,
    ) -> None:
        row = OrderItemTransition(
            order_item_id=int(item.id),
            order_id=int(item.order_id),
            from_status=(from_status or "")[:24],
            to_status=(to_status or "")[:24],
            actor_type=(actor_type or "system")[:32],
            actor_id=int(actor_id) if actor_id is not None else None,
            reason=(reason or "")[:240] or None,
            metadata_json=json.dumps(metadata or {})[:4000],
            created_at=datetime.utcnow(),
        )
        self.session.add(row)
        self.session.commit()

    def cancel_order_if_all_items_cancelled(self, order_id: int) -> bool:
        open_items = exists().where(
            OrderItem.order_id == int(order_id),
            OrderItem.cancelled_at.is_(None),
        )
        count = Order.query.filter(
            Order.id == int(order_id),
            Order.status != OrderItemStatus.CANCELLED,
            ~open_items,
        ).update(
            {Order.status: OrderItemStatus.CANCELLED, Order.updated_at: datetime.utcnow()},
            synchronize_session=False,
        )
        self.session.commit()
        return count == 1

    # -- inventory -------------------------------------------------------------

    def restore_inventory(self, listing_id: int, quantity: int) -> bool:
        """Add stock back. Listings with unmanaged stock (NULL quantity) are left alone."""
        count = Listing.query.filter(
            Listing.id == int(listing_id),
            Listing.quantity.isnot(None),
        ).update({Listing.quantity: Listing.quantity + int(quantity)}, synchronize_session=False)
        self.session.commit()
        return count == 1

    def decrement_inventory(self, listing_id: int, quantity: int) -> bool:
        """Take stock only if enough remains. NULL quantity means unlimited."""
        count = Listing.query.filter(
            Listing.id == int(listing_id),
            or_(Listing.quantity.is_(None), Listing.quantity >= int(quantity)),
        ).update({Listing.quantity: Listing.quantity - int(quantity)}, synchronize_session=False)
        self.session.commit()
        return count == 1

    # -- vendor reliability ----------------------------------------------------

    def increment_vendor_counter(self, vendor_profile_id: int, field: str) -> VendorRecord | None:
        column = {
            "confirmed": VendorProfile.orders_confirmed_count,
            "cancelled": VendorProfile.orders_cancelled_count,
        }[field]
        VendorProfile.query.filter(VendorProfile.id == int(vendor_profile_id)).update(
            {column: column + 1}, synchronize_session=False
        )
        self.session.commit()
        return self.get_vendor(vendor_profile_id)

    def set_cancellation_warning(self, vendor_profile_id: int, sent_at: datetime | None) -> bool:
        q = VendorProfile.query.filter(VendorProfile.id == int(vendor_profile_id))
        if sent_at is not None:
            # Only one request gets to send the warning.
            q = q.filter(VendorProfile.cancellation_warning_sent_at.is_(None))
        count = q.update(
            {VendorProfile.cancellation_warning_sent_at: to_naive_utc(sent_at)},
            synchronize_session=False,
        )
        self.session.commit()
        return count == 1

    # -- payouts ------------------------------------------------------------------

    def record_vendor_payout(
        self,
        *,
        item: OrderItemRecord,
        amount_cents: int,
        status: str,
        transfer_id: str = "",
        error: str = "",
    ) -> int:
        row = VendorPayout(
            order_item_id=int(item.id),
            vendor_profile_id=int(item.vendor_profile_id),
            kind="cancellation_fee",
            amount_cents=int(amount_cents),
            status=status,
            stripe_transfer_id=transfer_id or None,
            last_error=(error or "")[:240] or None,
        )
        self.session.add(row)
        self.session.commit()
        return int(row.id)

    def list_failed_payouts(self) -> list[PayoutRecord]:
        rows = (
            self.session.query(VendorPayout, OrderItem, VendorProfile)
            .join(OrderItem, OrderItem.id == VendorPayout.order_item_id)
            .join(VendorProfile, VendorProfile.id == VendorPayout.vendor_profile_id)
            .filter(VendorPayout.status == "failed")
            .order_by(VendorPayout.created_at.asc(), VendorPayout.id.asc())
            .all()
        )
        out = []
        for payout, item, vendor in rows:
            out.append(
                PayoutRecord(
                    id=int(payout.id),
                    order_id=int(item.order_id),
                    order_item_id=int(item.id),
                    vendor_profile_id=int(vendor.id),
                    destination_account_id=vendor.stripe_account_id or None,
                    payouts_enabled=bool(vendor.stripe_payouts_enabled),
                    amount_cents=int(payout.amount_cents or 0),
                    status=payout.status,
                    created_at=as_utc(payout.created_at),
                )
            )
        return out

    def update_payout(self, payout_id: int, *, status: str, transfer_id: str = "", error: str = "") -> bool:
        values = {VendorPayout.status: status, VendorPayout.updated_at: datetime.utcnow()}
        if transfer_id:
            values[VendorPayout.stripe_transfer_id] = transfer_id
        if error:
            values[VendorPayout.last_error] = error[:240]
        count = VendorPayout.query.filter(
            VendorPayout.id == int(payout_id),
            VendorPayout.status == "failed",
        ).update(values, synchronize_session=False)
        self.session.commit()
        return count == 1

    # -- checkout -----------------------------------------------------------------

    def create_order(
        self,
        *,
        buyer_user_id: int,
        payment_method: str,
        lines: list[dict],
        vertical_id: str = "",
        actor_id: int | None = None,
    ) -> OrderRecord:
        """Persist a pending order. ``lines`` carry listing, market, quantity and unit price."""
        subtotal = sum(int(line["unit_price_cents"]) * int(line["quantity"]) for line in lines)
        order = Order(
            order_number=f"MD-{uuid.uuid4().hex[:10].upper()}",
            buyer_user_id=int(buyer_user_id),
            vertical_id=vertical_id or None,
            status=OrderItemStatus.PENDING,
            payment_method=payment_method,
            subtotal_cents=subtotal,
            total_cents=subtotal + bps_half_up(subtotal, BUYER_FEE_BPS) + BUYER_FLAT_FEE_CENTS,
        )
        self.session.add(order)
        self.session.flush()
        for line in lines:
            qty = int(line["quantity"])
            unit = int(line["unit_price_cents"])
            item = OrderItem(
                order_id=int(order.id),
                listing_id=int(line["listing_id"]),
                vendor_profile_id=int(line["vendor_profile_id"]),
                market_id=int(line["market_id"]),
                quantity=qty,
                unit_price_cents=unit,
                subtotal_cents=unit * qty,
                status=OrderItemStatus.PENDING,
            )
            self.session.add(item)
            self.session.flush()
            self.session.add(
                OrderItemTransition(
                    order_item_id=int(item.id),
                    order_id=int(order.id),
                    from_status="",
                    to_status=OrderItemStatus.PENDING,
                    actor_type="buyer",
                    actor_id=actor_id,
                    reason="order_placed",
                    created_at=datetime.utcnow(),
                )
            )
        self.session.commit()
        return OrderRecord.from_row(self.session.get(Order, int(order.id)))
