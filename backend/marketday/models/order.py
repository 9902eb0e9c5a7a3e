from datetime import datetime

from marketday.extensions import db


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    buyer_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    vertical_id = db.Column(db.String(48), nullable=True, index=True)

    # pending | paid | confirmed | ready | fulfilled | cancelled
    status = db.Column(db.String(24), nullable=False, default="pending", server_default="pending", index=True)
    # stripe | venmo | cashapp | paypal | cash
    payment_method = db.Column(db.String(24), nullable=False, default="stripe", server_default="stripe")

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    total_cents = db.Column(db.Integer, nullable=False, default=0, server_default="0")

    # Anchors the cancellation grace period.
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = db.relationship("OrderItem", backref="order", lazy="selectin")

    def to_dict(self):
        return {
            "id": self.id,
            "order_number": self.order_number,
            "buyer_user_id": self.buyer_user_id,
            "vertical_id": self.vertical_id or "",
            "status": self.status or "pending",
            "payment_method": self.payment_method or "stripe",
            "subtotal_cents": int(self.subtotal_cents or 0),
            "total_cents": int(self.total_cents or 0),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "items": [i.to_dict() for i in (self.items or [])],
        }


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=True, index=True)
    vendor_profile_id = db.Column(db.Integer, db.ForeignKey("vendor_profiles.id"), nullable=False, index=True)
    market_id = db.Column(db.Integer, db.ForeignKey("markets.id"), nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=1, server_default="1")
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0, server_default="0")

    # pending | paid | confirmed | ready | fulfilled | cancelled | refunded
    status = db.Column(db.String(24), nullable=False, default="pending", server_default="pending", index=True)

    confirmed_at = db.Column(db.DateTime, nullable=True)
    ready_at = db.Column(db.DateTime, nullable=True)
    fulfilled_at = db.Column(db.DateTime, nullable=True)

    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by = db.Column(db.String(24), nullable=True)  # buyer | vendor | system
    cancellation_reason = db.Column(db.String(500), nullable=True)
    refund_amount_cents = db.Column(db.Integer, nullable=True)
    # none | pending | succeeded | failed
    refund_status = db.Column(db.String(24), nullable=False, default="none", server_default="none")
    refund_reference = db.Column(db.String(120), nullable=True)

    issue_reported_at = db.Column(db.DateTime, nullable=True)
    issue_description = db.Column(db.String(1000), nullable=True)
    # new | in_review | resolved | closed
    issue_status = db.Column(db.String(24), nullable=True)
    issue_resolved_at = db.Column(db.DateTime, nullable=True)
    issue_resolved_by = db.Column(db.Integer, nullable=True)
    issue_notes = db.Column(db.String(1000), nullable=True)
    issue_escalated_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        def _iso(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "order_id": self.order_id,
            "listing_id": self.listing_id,
            "vendor_profile_id": self.vendor_profile_id,
            "market_id": self.market_id,
            "quantity": int(self.quantity or 0),
            "unit_price_cents": int(self.unit_price_cents or 0),
            "subtotal_cents": int(self.subtotal_cents or 0),
            "status": self.status or "pending",
            "confirmed_at": _iso(self.confirmed_at),
            "ready_at": _iso(self.ready_at),
            "fulfilled_at": _iso(self.fulfilled_at),
            "cancelled_at": _iso(self.cancelled_at),
            "cancelled_by": self.cancelled_by or "",
            "cancellation_reason": self.cancellation_reason or "",
            "refund_amount_cents": int(self.refund_amount_cents) if self.refund_amount_cents is not None else None,
            "refund_status": self.refund_status or "none",
            "issue_reported_at": _iso(self.issue_reported_at),
            "issue_status": self.issue_status or "",
            "issue_resolved_at": _iso(self.issue_resolved_at),
        }
