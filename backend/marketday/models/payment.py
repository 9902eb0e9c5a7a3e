from datetime import datetime

from marketday.extensions import db


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    stripe_payment_intent_id = db.Column(db.String(120), nullable=True, index=True)
    amount_cents = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    # pending | succeeded | failed
    status = db.Column(db.String(24), nullable=False, default="pending", server_default="pending")

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


class VendorPayout(db.Model):
    __tablename__ = "vendor_payouts"

    id = db.Column(db.Integer, primary_key=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True)
    vendor_profile_id = db.Column(db.Integer, db.ForeignKey("vendor_profiles.id"), nullable=False, index=True)

    # cancellation_fee
    kind = db.Column(db.String(32), nullable=False, default="cancellation_fee", server_default="cancellation_fee")
    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    # processing | failed | cancelled
    status = db.Column(db.String(24), nullable=False, default="processing", index=True)
    stripe_transfer_id = db.Column(db.String(120), nullable=True)
    last_error = db.Column(db.String(240), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_item_id": int(self.order_item_id),
            "vendor_profile_id": int(self.vendor_profile_id),
            "kind": self.kind or "cancellation_fee",
            "amount_cents": int(self.amount_cents or 0),
            "status": self.status or "",
            "stripe_transfer_id": self.stripe_transfer_id or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
