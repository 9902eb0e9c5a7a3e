from datetime import datetime

import sqlalchemy as sa

from marketday.extensions import db


class Market(db.Model):
    __tablename__ = "markets"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(160), nullable=False)
    # traditional | private_pickup
    market_type = db.Column(db.String(24), nullable=False, default="traditional", server_default="traditional")
    vertical_id = db.Column(db.String(48), nullable=True, index=True)

    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(80), nullable=True)
    state = db.Column(db.String(64), nullable=True)

    # IANA zone name; pickup times are local wall-clock in this zone.
    timezone = db.Column(db.String(64), nullable=False, default="America/Chicago", server_default="America/Chicago")
    # Null means "use the market type default".
    cutoff_hours = db.Column(db.Float, nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True, server_default=sa.text("true"))

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    schedules = db.relationship(
        "MarketSchedule",
        backref="market",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "market_type": self.market_type or "traditional",
            "vertical_id": self.vertical_id or "",
            "address": self.address or "",
            "city": self.city or "",
            "state": self.state or "",
            "timezone": self.timezone or "America/Chicago",
            "cutoff_hours": float(self.cutoff_hours) if self.cutoff_hours is not None else None,
            "active": bool(self.active),
            "schedules": [s.to_dict() for s in (self.schedules or [])],
        }


class MarketSchedule(db.Model):
    __tablename__ = "market_schedules"

    id = db.Column(db.Integer, primary_key=True)
    market_id = db.Column(db.Integer, db.ForeignKey("markets.id"), nullable=False, index=True)

    # 0=Sunday .. 6=Saturday
    day_of_week = db.Column(db.Integer, nullable=False)
    start_time = db.Column(db.String(8), nullable=False)
    end_time = db.Column(db.String(8), nullable=False)
    active = db.Column(db.Boolean, nullable=False, default=True, server_default=sa.text("true"))

    def to_dict(self):
        return {
            "id": self.id,
            "market_id": self.market_id,
            "day_of_week": int(self.day_of_week),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "active": bool(self.active),
        }


class ListingMarket(db.Model):
    __tablename__ = "listing_markets"
    __table_args__ = (
        db.UniqueConstraint("listing_id", "market_id", name="uq_listing_market"),
    )

    id = db.Column(db.Integer, primary_key=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=False, index=True)
    market_id = db.Column(db.Integer, db.ForeignKey("markets.id"), nullable=False, index=True)
