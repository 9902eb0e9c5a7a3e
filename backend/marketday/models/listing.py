from datetime import datetime

from marketday.extensions import db


class Listing(db.Model):
    __tablename__ = "listings"

    id = db.Column(db.Integer, primary_key=True)

    vendor_profile_id = db.Column(db.Integer, db.ForeignKey("vendor_profiles.id"), nullable=False, index=True)
    vertical_id = db.Column(db.String(48), nullable=True, index=True)

    title = db.Column(db.String(160), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # draft | published | paused
    status = db.Column(db.String(24), nullable=False, default="draft", server_default="draft", index=True)
    price_cents = db.Column(db.Integer, nullable=False, default=0, server_default="0")

    # Null means the vendor does not track stock for this listing.
    quantity = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "vendor_profile_id": self.vendor_profile_id,
            "vertical_id": self.vertical_id or "",
            "title": self.title,
            "description": self.description or "",
            "status": self.status or "draft",
            "price_cents": int(self.price_cents or 0),
            "quantity": int(self.quantity) if self.quantity is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
