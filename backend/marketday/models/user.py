from datetime import datetime

from marketday.extensions import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), nullable=True, unique=True, index=True)
    phone = db.Column(db.String(32), nullable=True)

    # buyer | vendor | admin
    role = db.Column(db.String(24), nullable=False, default="buyer", server_default="buyer", index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name or "",
            "email": self.email or "",
            "phone": self.phone or "",
            "role": (self.role or "buyer"),
            "is_active": bool(self.is_active),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
