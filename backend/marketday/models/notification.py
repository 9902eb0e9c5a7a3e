from datetime import datetime
import json

from marketday.extensions import db


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Template key from the notification registry, e.g. order_cancelled_by_buyer.
    type = db.Column(db.String(64), nullable=False, index=True)
    channel = db.Column(db.String(32), nullable=False, default="in_app")  # in_app | sms
    title = db.Column(db.String(160), nullable=True)
    message = db.Column(db.Text, nullable=False)
    action_url = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(24), nullable=False, default="queued")  # queued | sent | failed
    provider = db.Column(db.String(64), nullable=True)
    provider_ref = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    sent_at = db.Column(db.DateTime, nullable=True)
    read_at = db.Column(db.DateTime, nullable=True)

    meta = db.Column(db.Text, nullable=True)  # JSON string

    def meta_dict(self):
        raw = (self.meta or "").strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
            return data if isinstance(data, dict) else {}
        except Exception:
            return {}

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "channel": self.channel or "in_app",
            "title": self.title or "",
            "message": self.message or "",
            "action_url": self.action_url or "",
            "status": self.status or "queued",
            "provider": self.provider or "",
            "provider_ref": self.provider_ref or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "is_read": self.read_at is not None,
            "meta": self.meta_dict(),
        }
