from __future__ import annotations

import uuid

from ..extensions import db
from loyalty_qr.time_utils import to_utc_z


def new_id() -> str:
    return str(uuid.uuid4())


class Restaurant(db.Model):
    """
    Multi-tenant root: Every tenant is a Restaurant.

    WHY: Customers, rewards and QR tokens all belong to exactly one
    restaurant. No token may be verified outside the restaurant that
    issued it.

    IDs are UUID strings because they travel inside QR payloads.
    """
    __tablename__ = "restaurants"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)  # Short code for lookups

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Restaurant id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
