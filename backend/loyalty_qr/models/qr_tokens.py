from __future__ import annotations

from ..extensions import db
from .tenancy import new_id
from loyalty_qr.time_utils import to_utc_z


class QRToken(db.Model):
    """
    Single-use, time-limited capability behind a customer or redemption QR code.

    MULTI-TENANT: Every token is bound to one restaurant and one customer.
    Verification always filters on both, so a token presented to the wrong
    restaurant looks exactly like a token that never existed.

    LIFECYCLE:
    - Created with used=False and expires_at = now + ttl
    - used flips to True at most once, through a conditional update
    - Never updated otherwise; removed only by the expiry sweep

    reward_id is set only for redemption tokens.
    """
    __tablename__ = "qr_tokens"
    __table_args__ = (
        db.Index("ix_qr_tokens_lookup", "token", "customer_id", "restaurant_id", "used"),
        db.Index("ix_qr_tokens_restaurant_expires", "restaurant_id", "expires_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    customer_id = db.Column(db.String(36), db.ForeignKey("customers.id"), nullable=False, index=True)
    restaurant_id = db.Column(db.String(36), db.ForeignKey("restaurants.id"), nullable=False, index=True)

    token = db.Column(db.String(64), nullable=False, unique=True)
    reward_id = db.Column(db.String(36), db.ForeignKey("rewards.id"), nullable=True, index=True)

    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    used = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("qr_tokens", lazy=True))
    restaurant = db.relationship("Restaurant", backref=db.backref("qr_tokens", lazy=True))
    reward = db.relationship("Reward", backref=db.backref("qr_tokens", lazy=True))

    def __repr__(self) -> str:
        return f"<QRToken id={self.id} restaurant_id={self.restaurant_id} used={self.used}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "restaurant_id": self.restaurant_id,
            "token": self.token,
            "reward_id": self.reward_id,
            "expires_at": to_utc_z(self.expires_at),
            "used": self.used,
            "created_at": to_utc_z(self.created_at),
        }
