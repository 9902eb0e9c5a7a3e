from __future__ import annotations

import unittest
from datetime import datetime, timezone

from marketday import create_app
from marketday.extensions import db
from marketday.models import (
    Listing,
    ListingMarket,
    Market,
    MarketSchedule,
    Order,
    OrderItem,
    Payment,
    User,
    VendorProfile,
)
from marketday.services.dto import to_naive_utc
from marketday.services.wiring import PAYMENTS_EXTENSION, lifecycle_orchestrator
from marketday.utils.jwt_utils import create_access_token

# Wednesday 2025-06-04 10:00 in Chicago (CDT).
NOW = datetime(2025, 6, 4, 15, 0, tzinfo=timezone.utc)

TEST_CONFIG = {
    "TESTING": True,
    "SECRET_KEY": "test-secret-key-0123456789",
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "SQLALCHEMY_ENGINE_OPTIONS": {},
    "PAYMENTS_PROVIDER": "mock",
    "MESSAGING_PROVIDER": "mock",
    "STRIPE_WEBHOOK_SECRET": "",
}


class MarketdayTestCase(unittest.TestCase):
    """Fresh app and in-memory database per test."""

    def setUp(self):
        self.app = create_app(dict(TEST_CONFIG))
        self.client = self.app.test_client()
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.create_all()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.ctx.pop()

    @property
    def payments(self):
        return self.app.extensions[PAYMENTS_EXTENSION]

    def orchestrator(self, now: datetime = NOW):
        return lifecycle_orchestrator(self.app, clock=lambda: now)

    def auth(self, user) -> dict:
        return {"Authorization": f"Bearer {create_access_token(int(user.id))}"}

    # -- seeding -------------------------------------------------------------

    def make_user(self, name="Buyer", *, role="buyer", phone=None, email=None):
        user = User(name=name, role=role, phone=phone, email=email)
        db.session.add(user)
        db.session.commit()
        return user

    def make_vendor(
        self,
        name="Green Acres",
        *,
        stripe_account_id="acct_vendor",
        payouts_enabled=True,
        confirmed=0,
        cancelled=0,
        phone="+15555550100",
    ):
        user = self.make_user(f"{name} Owner", role="vendor", phone=phone)
        vendor = VendorProfile(
            user_id=user.id,
            business_name=name,
            stripe_account_id=stripe_account_id,
            stripe_payouts_enabled=payouts_enabled,
            orders_confirmed_count=confirmed,
            orders_cancelled_count=cancelled,
        )
        db.session.add(vendor)
        db.session.commit()
        return vendor

    def make_market(
        self,
        name="Downtown Saturday",
        *,
        schedules=((6, "08:00", "12:00"),),
        tz="America/Chicago",
        market_type="traditional",
        cutoff_hours=None,
        active=True,
    ):
        market = Market(
            name=name,
            market_type=market_type,
            timezone=tz,
            cutoff_hours=cutoff_hours,
            active=active,
        )
        db.session.add(market)
        db.session.flush()
        for day, start, end in schedules:
            db.session.add(MarketSchedule(market_id=market.id, day_of_week=day, start_time=start, end_time=end))
        db.session.commit()
        return market

    def make_listing(self, vendor, markets=(), *, title="Heirloom Tomatoes", price_cents=800, quantity=5, status="published"):
        listing = Listing(
            vendor_profile_id=vendor.id,
            title=title,
            price_cents=price_cents,
            quantity=quantity,
            status=status,
            vertical_id="farmers-market",
        )
        db.session.add(listing)
        db.session.flush()
        for market in markets:
            db.session.add(ListingMarket(listing_id=listing.id, market_id=market.id))
        db.session.commit()
        return listing

    def make_order(
        self,
        buyer,
        lines,
        *,
        created_at: datetime = NOW,
        payment_method="stripe",
        paid=True,
    ):
        """``lines`` are (listing, market, quantity, status) tuples."""
        subtotal = sum(listing.price_cents * qty for listing, _m, qty, _s in lines)
        order = Order(
            order_number=f"MD-T{Order.query.count() + 1:04d}",
            buyer_user_id=buyer.id,
            vertical_id="farmers-market",
            status="paid",
            payment_method=payment_method,
            subtotal_cents=subtotal,
            total_cents=subtotal,
            created_at=to_naive_utc(created_at),
        )
        db.session.add(order)
        db.session.flush()
        items = []
        for listing, market, qty, status in lines:
            item = OrderItem(
                order_id=order.id,
                listing_id=listing.id,
                vendor_profile_id=listing.vendor_profile_id,
                market_id=market.id if market is not None else None,
                quantity=qty,
                unit_price_cents=listing.price_cents,
                subtotal_cents=listing.price_cents * qty,
                status=status,
            )
            db.session.add(item)
            items.append(item)
        if paid and payment_method == "stripe":
            db.session.add(
                Payment(
                    order_id=order.id,
                    stripe_payment_intent_id=f"pi_test_{order.id}",
                    amount_cents=subtotal,
                    status="succeeded",
                )
            )
        db.session.commit()
        return order, items
