from datetime import datetime

import sqlalchemy as sa

from marketday.extensions import db


class VendorProfile(db.Model):
    __tablename__ = "vendor_profiles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    vertical_id = db.Column(db.String(48), nullable=True, index=True)

    business_name = db.Column(db.String(160), nullable=False, default="", server_default="")

    # Connected payout account at the payment processor.
    stripe_account_id = db.Column(db.String(64), nullable=True)
    stripe_payouts_enabled = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))

    # Reliability tracking for vendor-initiated cancellations.
    orders_confirmed_count = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    orders_cancelled_count = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    cancellation_warning_sent_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "vertical_id": self.vertical_id or "",
            "business_name": self.business_name or "",
            "stripe_account_id": self.stripe_account_id or "",
            "stripe_payouts_enabled": bool(self.stripe_payouts_enabled),
            "orders_confirmed_count": int(self.orders_confirmed_count or 0),
            "orders_cancelled_count": int(self.orders_cancelled_count or 0),
            "cancellation_warning_sent_at": (
                self.cancellation_warning_sent_at.isoformat() if self.cancellation_warning_sent_at else None
            ),
        }
