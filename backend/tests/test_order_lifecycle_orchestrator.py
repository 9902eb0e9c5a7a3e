from __future__ import annotations

import unittest
from datetime import timedelta

from marketday.extensions import db
from marketday.models import Listing, Notification, OrderItem, OrderItemTransition, PlatformEvent, VendorPayout, VendorProfile
from marketday.services.marketplace_store import MarketplaceStore
from marketday.services.order_lifecycle import MSG_FULL_REFUND, MSG_REFUND_ISSUE, OrderLifecycleOrchestrator
from marketday.services.result import ErrorKind

from marketday.services.wiring import notification_dispatcher

from marketday_testkit import NOW, MarketdayTestCase


class _RacedStore(MarketplaceStore):
    """Hands out the item as read, then lets another writer cancel it first."""

    def get_item_for_buyer(self, item_id, buyer_user_id):
        record = super().get_item_for_buyer(item_id, buyer_user_id)
        MarketplaceStore().cancel_item_if_active(
            item_id,
            cancelled_by="vendor",
            reason="rejected concurrently",
            refund_amount_cents=0,
            refund_pending=False,
            now=NOW,
        )
        return record


class BuyerCancelTestCase(MarketdayTestCase):
    def setUp(self):
        super().setUp()
        self.buyer = self.make_user("Pat Buyer")
        self.vendor = self.make_vendor()
        self.market = self.make_market()
        self.listing = self.make_listing(self.vendor, [self.market], price_cents=2000, quantity=4)

    def _item(self, status="confirmed", created_at=NOW - timedelta(hours=2), **kw):
        _order, items = self.make_order(self.buyer, [(self.listing, self.market, 1, status)], created_at=created_at, **kw)
        return items[0]

    def test_full_refund_inside_grace_period(self):
        item = self._item(created_at=NOW - timedelta(minutes=30))
        result = self.orchestrator().buyer_cancel(item.id, self.buyer.id, "changed my mind")
        self.assertTrue(result.ok)
        self.assertEqual(result.value["refund_amount_cents"], 2000)
        self.assertFalse(result.value["fee_applied"])
        self.assertEqual(result.value["message"], MSG_FULL_REFUND)

        row = db.session.get(OrderItem, item.id)
        self.assertEqual(row.status, "refunded")
        self.assertEqual(row.refund_status, "succeeded")
        self.assertEqual(row.cancelled_by, "buyer")
        self.assertTrue(row.refund_reference.startswith("re_mock_"))
        self.assertEqual(db.session.get(Listing, self.listing.id).quantity, 5)
        self.assertEqual(self.payments.transfers, [])

    def test_fee_after_grace_pays_vendor_share(self):
        item = self._item()
        result = self.orchestrator().buyer_cancel(item.id, self.buyer.id)
        self.assertTrue(result.ok)
        self.assertEqual(result.value["cancellation_fee_cents"], 500)
        self.assertEqual(result.value["refund_amount_cents"], 1500)
        self.assertIn("$5.00", result.value["message"])
        self.assertEqual(self.payments.refunds[0]["amount_cents"], 1500)
        self.assertEqual(self.payments.transfers[0]["amount_cents"], 435)
        self.assertEqual(self.payments.transfers[0]["destination_account_id"], "acct_vendor")

        payout = VendorPayout.query.filter_by(order_item_id=item.id).one()
        self.assertEqual(payout.status, "processing")
        self.assertEqual(payout.amount_cents, 435)

        vendor_note = Notification.query.filter_by(user_id=self.vendor.user_id, type="order_cancelled_by_buyer").first()
        self.assertIsNotNone(vendor_note)

    def test_second_cancel_is_rejected_without_second_refund(self):
        item = self._item()
        first = self.orchestrator().buyer_cancel(item.id, self.buyer.id)
        second = self.orchestrator().buyer_cancel(item.id, self.buyer.id)
        self.assertTrue(first.ok)
        self.assertFalse(second.ok)
        self.assertEqual(second.kind, ErrorKind.VALIDATION)
        self.assertEqual(len(self.payments.refunds), 1)
        self.assertEqual(db.session.get(Listing, self.listing.id).quantity, 5)

    def test_losing_a_concurrent_cancel_moves_no_money(self):
        item = self._item()
        orchestrator = OrderLifecycleOrchestrator(
            _RacedStore(), self.payments, notification_dispatcher(self.app), clock=lambda: NOW
        )
        result = orchestrator.buyer_cancel(item.id, self.buyer.id)
        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.VALIDATION)
        self.assertEqual(self.payments.refunds, [])
        self.assertEqual(self.payments.transfers, [])
        self.assertEqual(db.session.get(Listing, self.listing.id).quantity, 4)
        self.assertEqual(db.session.get(OrderItem, item.id).cancelled_by, "vendor")

    def test_vendor_reject_after_buyer_cancel_is_rejected(self):
        item = self._item()
        self.assertTrue(self.orchestrator().buyer_cancel(item.id, self.buyer.id).ok)
        result = self.orchestrator().vendor_reject(item.id, self.vendor.user_id, "Sold out")
        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.VALIDATION)
        self.assertEqual(len(self.payments.refunds), 1)
        self.assertEqual(db.session.get(Listing, self.listing.id).quantity, 5)
        self.assertEqual(db.session.get(OrderItem, item.id).cancelled_by, "buyer")

    def test_same_priced_items_refund_separately(self):
        _order, items = self.make_order(
            self.buyer,
            [(self.listing, self.market, 1, "paid"), (self.listing, self.market, 1, "paid")],
        )
        for item in items:
            self.assertTrue(self.orchestrator().buyer_cancel(item.id, self.buyer.id).ok)

        self.assertEqual([r["amount_cents"] for r in self.payments.refunds], [2000, 2000])
        keys = [r["key"] for r in self.payments.refunds]
        self.assertEqual(len(set(keys)), 2)
        self.assertIn(f"-{items[0].id}-", keys[0])
        rows = [db.session.get(OrderItem, item.id) for item in items]
        self.assertEqual([row.status for row in rows], ["refunded", "refunded"])
        self.assertNotEqual(rows[0].refund_reference, rows[1].refund_reference)

    def test_refund_failure_keeps_cancellation(self):
        self.payments.fail_refunds = True
        item = self._item()
        result = self.orchestrator().buyer_cancel(item.id, self.buyer.id)
        self.assertTrue(result.ok)
        self.assertTrue(result.value["refund_failed"])
        self.assertEqual(result.value["message"], MSG_REFUND_ISSUE)

        row = db.session.get(OrderItem, item.id)
        self.assertEqual(row.status, "cancelled")
        self.assertEqual(row.refund_status, "failed")
        event = PlatformEvent.query.filter_by(event_type="refund_failed").one()
        self.assertTrue(event.needs_reconciliation)

    def test_external_payment_skips_processor(self):
        item = self._item(payment_method="venmo")
        result = self.orchestrator().buyer_cancel(item.id, self.buyer.id)
        self.assertTrue(result.ok)
        self.assertIn("venmo", result.value["message"])
        self.assertEqual(self.payments.refunds, [])
        self.assertEqual(db.session.get(OrderItem, item.id).status, "cancelled")

    def test_other_buyer_cannot_cancel(self):
        item = self._item()
        stranger = self.make_user("Stranger")
        result = self.orchestrator().buyer_cancel(item.id, stranger.id)
        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.NOT_FOUND)

    def test_fulfilled_item_cannot_be_cancelled(self):
        item = self._item(status="fulfilled")
        result = self.orchestrator().buyer_cancel(item.id, self.buyer.id)
        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.VALIDATION)

    def test_order_cancelled_once_every_item_is(self):
        order, items = self.make_order(
            self.buyer,
            [(self.listing, self.market, 1, "paid"), (self.listing, self.market, 1, "paid")],
        )
        self.orchestrator().buyer_cancel(items[0].id, self.buyer.id)
        db.session.refresh(order)
        self.assertNotEqual(order.status, "cancelled")
        self.orchestrator().buyer_cancel(items[1].id, self.buyer.id)
        db.session.refresh(order)
        self.assertEqual(order.status, "cancelled")


class VendorRejectTestCase(MarketdayTestCase):
    def setUp(self):
        super().setUp()
        self.buyer = self.make_user("Pat Buyer")
        self.vendor = self.make_vendor(confirmed=10, cancelled=1)
        self.market = self.make_market()
        self.listing = self.make_listing(self.vendor, [self.market], price_cents=1000, quantity=None)

    def test_reason_is_required(self):
        _order, items = self.make_order(self.buyer, [(self.listing, self.market, 1, "confirmed")])
        result = self.orchestrator().vendor_reject(items[0].id, self.vendor.user_id, "  ")
        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.VALIDATION)

    def test_refund_covers_buyer_fees(self):
        _order, items = self.make_order(
            self.buyer,
            [(self.listing, self.market, 1, "confirmed")] * 3,
        )
        result = self.orchestrator().vendor_reject(items[0].id, self.vendor.user_id, "Frost took the crop")
        self.assertTrue(result.ok)
        self.assertEqual(result.value["refund_amount_cents"], 1070)
        self.assertEqual(self.payments.refunds[0]["amount_cents"], 1070)
        self.assertEqual(db.session.get(OrderItem, items[0].id).cancelled_by, "vendor")
        transitions = OrderItemTransition.query.filter_by(order_item_id=items[0].id).all()
        self.assertEqual({t.to_status for t in transitions}, {"cancelled", "refunded"})

    def test_high_cancellation_rate_warns_once(self):
        _order, items = self.make_order(self.buyer, [(self.listing, self.market, 1, "confirmed")] * 2)
        first = self.orchestrator().vendor_reject(items[0].id, self.vendor.user_id, "Out of stock")
        second = self.orchestrator().vendor_reject(items[1].id, self.vendor.user_id, "Out of stock")
        self.assertTrue(first.value["warning_sent"])
        self.assertFalse(second.value["warning_sent"])

        profile = db.session.get(VendorProfile, self.vendor.id)
        self.assertEqual(profile.orders_cancelled_count, 3)
        self.assertIsNotNone(profile.cancellation_warning_sent_at)
        warnings = Notification.query.filter_by(
            user_id=self.vendor.user_id, type="vendor_cancellation_warning", channel="in_app"
        ).count()
        self.assertEqual(warnings, 1)

    def test_non_vendor_is_forbidden(self):
        _order, items = self.make_order(self.buyer, [(self.listing, self.market, 1, "confirmed")])
        result = self.orchestrator().vendor_reject(items[0].id, self.buyer.id, "nope")
        self.assertFalse(result.ok)
        self.assertEqual(result.http_status, 403)

    def test_other_vendors_item_is_not_found(self):
        _order, items = self.make_order(self.buyer, [(self.listing, self.market, 1, "confirmed")])
        other = self.make_vendor("Other Farm")
        result = self.orchestrator().vendor_reject(items[0].id, other.user_id, "not mine")
        self.assertEqual(result.kind, ErrorKind.NOT_FOUND)


class IssueResolutionTestCase(MarketdayTestCase):
    def setUp(self):
        super().setUp()
        self.buyer = self.make_user("Pat Buyer")
        self.admin = self.make_user("Ops", role="admin")
        self.vendor = self.make_vendor()
        self.market = self.make_market()
        self.listing = self.make_listing(self.vendor, [self.market], price_cents=1200)
        _order, items = self.make_order(self.buyer, [(self.listing, self.market, 1, "fulfilled")])
        self.item = items[0]

    def test_report_requires_ready_or_fulfilled(self):
        _order, items = self.make_order(self.buyer, [(self.listing, self.market, 1, "paid")])
        result = self.orchestrator().report_issue(items[0].id, self.buyer.id, "missing")
        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.VALIDATION)

    def test_report_only_once(self):
        first = self.orchestrator().report_issue(self.item.id, self.buyer.id, "Bag was empty")
        second = self.orchestrator().report_issue(self.item.id, self.buyer.id, "Bag was empty")
        self.assertTrue(first.ok)
        self.assertFalse(second.ok)
        self.assertEqual(db.session.get(OrderItem, self.item.id).issue_status, "new")

    def test_resolve_without_issue_is_rejected(self):
        result = self.orchestrator().resolve_issue(self.item.id, self.vendor.user_id, "confirm_delivery")
        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.VALIDATION)

    def test_unknown_action_is_rejected(self):
        self.orchestrator().report_issue(self.item.id, self.buyer.id, "Bag was empty")
        result = self.orchestrator().resolve_issue(self.item.id, self.vendor.user_id, "shrug")
        self.assertEqual(result.kind, ErrorKind.VALIDATION)

    def test_confirm_delivery_escalates_to_admin(self):
        self.orchestrator().report_issue(self.item.id, self.buyer.id, "Bag was empty")
        result = self.orchestrator().resolve_issue(self.item.id, self.vendor.user_id, "confirm_delivery", "Handed over at 9am")
        self.assertTrue(result.ok)

        row = db.session.get(OrderItem, self.item.id)
        self.assertEqual(row.issue_status, "resolved")
        self.assertIsNotNone(row.issue_escalated_at)
        self.assertEqual(row.status, "fulfilled")
        self.assertEqual(Notification.query.filter_by(user_id=self.admin.id, type="issue_disputed").count(), 1)
        self.assertEqual(Notification.query.filter_by(user_id=self.buyer.id, type="issue_resolved").count(), 1)

        again = self.orchestrator().resolve_issue(self.item.id, self.vendor.user_id, "issue_refund")
        self.assertFalse(again.ok)

    def test_issue_refund_cancels_fulfilled_item(self):
        self.orchestrator().report_issue(self.item.id, self.buyer.id, "Bag was empty")
        result = self.orchestrator().resolve_issue(self.item.id, self.vendor.user_id, "issue_refund")
        self.assertTrue(result.ok)
        self.assertEqual(result.value["refund_amount_cents"], 1200)

        row = db.session.get(OrderItem, self.item.id)
        self.assertEqual(row.status, "refunded")
        self.assertEqual(row.issue_status, "resolved")
        self.assertEqual(self.payments.refunds[0]["amount_cents"], 1200)

    def test_second_issue_refund_is_rejected(self):
        self.orchestrator().report_issue(self.item.id, self.buyer.id, "Bag was empty")
        first = self.orchestrator().resolve_issue(self.item.id, self.vendor.user_id, "issue_refund")
        second = self.orchestrator().resolve_issue(self.item.id, self.vendor.user_id, "issue_refund")
        self.assertTrue(first.ok)
        self.assertFalse(second.ok)
        self.assertEqual(second.kind, ErrorKind.VALIDATION)
        self.assertEqual(len(self.payments.refunds), 1)
        self.assertEqual(db.session.get(Listing, self.listing.id).quantity, 6)


class ForwardMovesTestCase(MarketdayTestCase):
    def setUp(self):
        super().setUp()
        self.buyer = self.make_user("Pat Buyer")
        self.vendor = self.make_vendor()
        self.market = self.make_market()
        self.listing = self.make_listing(self.vendor, [self.market])

    def test_confirm_ready_fulfill(self):
        _order, items = self.make_order(self.buyer, [(self.listing, self.market, 1, "paid")])
        item_id = items[0].id
        self.assertTrue(self.orchestrator().vendor_confirm(item_id, self.vendor.user_id).ok)
        self.assertTrue(self.orchestrator().vendor_mark_ready(item_id, self.vendor.user_id).ok)
        self.assertTrue(self.orchestrator().vendor_fulfill(item_id, self.vendor.user_id).ok)

        row = db.session.get(OrderItem, item_id)
        self.assertEqual(row.status, "fulfilled")
        self.assertIsNotNone(row.confirmed_at)
        self.assertIsNotNone(row.fulfilled_at)
        self.assertEqual(db.session.get(VendorProfile, self.vendor.id).orders_confirmed_count, 1)
        self.assertEqual(Notification.query.filter_by(user_id=self.buyer.id, type="order_ready").count(), 1)

    def test_skipping_a_step_is_rejected(self):
        _order, items = self.make_order(self.buyer, [(self.listing, self.market, 1, "paid")])
        result = self.orchestrator().vendor_fulfill(items[0].id, self.vendor.user_id)
        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.VALIDATION)

    def test_confirm_refund_completes_pending_refund(self):
        _order, items = self.make_order(self.buyer, [(self.listing, self.market, 1, "paid")])
        row = db.session.get(OrderItem, items[0].id)
        row.status = "cancelled"
        row.cancelled_at = NOW.replace(tzinfo=None)
        row.refund_status = "pending"
        row.refund_reference = "re_pending_1"
        row.refund_amount_cents = 800
        db.session.commit()

        result = self.orchestrator().confirm_refund(refund_reference="re_pending_1")
        self.assertTrue(result.ok)
        self.assertEqual(db.session.get(OrderItem, items[0].id).status, "refunded")
        again = self.orchestrator().confirm_refund(refund_reference="re_pending_1")
        self.assertFalse(again.ok)


class PlaceOrderTestCase(MarketdayTestCase):
    def setUp(self):
        super().setUp()
        self.buyer = self.make_user("Pat Buyer")
        self.vendor = self.make_vendor()
        self.market = self.make_market()
        self.listing = self.make_listing(self.vendor, [self.market], price_cents=800, quantity=5)

    def _line(self, **kw):
        line = {"listing_id": self.listing.id, "market_id": self.market.id, "quantity": 2}
        line.update(kw)
        return line

    def test_order_placed_before_cutoff(self):
        result = self.orchestrator().place_order(self.buyer.id, [self._line()], "stripe")
        self.assertTrue(result.ok)
        order = result.value
        self.assertEqual(order.item_count, 1)
        self.assertTrue(order.order_number.startswith("MD-"))
        self.assertEqual(db.session.get(Listing, self.listing.id).quantity, 3)
        item = OrderItem.query.filter_by(order_id=order.id).one()
        self.assertEqual(item.subtotal_cents, 1600)
        self.assertEqual(OrderItemTransition.query.filter_by(order_item_id=item.id, to_status="pending").count(), 1)

    def test_order_refused_after_cutoff(self):
        # Friday 15:00 CDT, after the Friday 14:00 cutoff for Saturday 08:00.
        late = NOW + timedelta(days=2, hours=5)
        result = self.orchestrator(late).place_order(self.buyer.id, [self._line()], "stripe")
        self.assertFalse(result.ok)
        self.assertEqual(result.message, "Order cutoff has passed for this market")
        self.assertEqual(db.session.get(Listing, self.listing.id).quantity, 5)

    def test_order_refused_for_unlisted_market(self):
        other = self.make_market("Elsewhere")
        result = self.orchestrator().place_order(self.buyer.id, [self._line(market_id=other.id)])
        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.VALIDATION)

    def test_not_enough_stock(self):
        result = self.orchestrator().place_order(self.buyer.id, [self._line(quantity=6)])
        self.assertFalse(result.ok)
        self.assertEqual(db.session.get(Listing, self.listing.id).quantity, 5)

    def test_unknown_payment_method(self):
        result = self.orchestrator().place_order(self.buyer.id, [self._line()], "bitcoin")
        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.VALIDATION)

    def test_unpublished_listing(self):
        draft = self.make_listing(self.vendor, [self.market], status="draft")
        result = self.orchestrator().place_order(self.buyer.id, [self._line(listing_id=draft.id)])
        self.assertFalse(result.ok)
        self.assertEqual(result.message, "Listing is not published")


if __name__ == "__main__":
    unittest.main()
