from __future__ import annotations

from ..extensions import db
from .tenancy import new_id
from loyalty_qr.time_utils import to_utc_z


class Customer(db.Model):
    """
    Loyalty customer of a restaurant.

    MULTI-TENANT: Customers are scoped to restaurants via restaurant_id.
    Email is unique per restaurant, not globally.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("restaurant_id", "email", name="uq_customers_restaurant_email"),
        db.Index("ix_customers_restaurant_active", "restaurant_id", "is_active"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    restaurant_id = db.Column(db.String(36), db.ForeignKey("restaurants.id"), nullable=False, index=True)

    first_name = db.Column(db.String(128), nullable=False)
    last_name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    restaurant = db.relationship("Restaurant", backref=db.backref("customers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "restaurant_id": self.restaurant_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Reward(db.Model):
    """
    A reward a customer can redeem in person with a redemption QR code.
    """
    __tablename__ = "rewards"
    __table_args__ = (
        db.Index("ix_rewards_restaurant_active", "restaurant_id", "is_active"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    restaurant_id = db.Column(db.String(36), db.ForeignKey("restaurants.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    points_cost = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    restaurant = db.relationship("Restaurant", backref=db.backref("rewards", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "restaurant_id": self.restaurant_id,
            "name": self.name,
            "description": self.description,
            "points_cost": self.points_cost,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
