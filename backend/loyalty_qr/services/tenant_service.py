"""
Multi-Tenant Service: Restaurant-scoped lookups for customers and rewards

WHY: Token issuance takes restaurant, customer and reward IDs from the
request path. Each one must be checked against the restaurant before a
token is minted, and a foreign record must look exactly like a missing one.

SECURITY INVARIANTS:
1. A customer or reward from another restaurant is reported as "not found"
2. Inactive restaurants cannot issue tokens
3. Inactive customers and rewards cannot be bound to new tokens

USAGE:
    from loyalty_qr.services.tenant_service import require_customer_in_restaurant

    customer = require_customer_in_restaurant(customer_id, restaurant_id)
"""

from __future__ import annotations

from ..extensions import db
from ..models import Restaurant, Customer, Reward


class NotFoundError(Exception):
    """Raised when a record does not exist inside the requested restaurant."""
    pass


def require_restaurant(restaurant_id: str) -> Restaurant:
    restaurant = db.session.query(Restaurant).filter_by(id=restaurant_id).first()
    if not restaurant or not restaurant.is_active:
        raise NotFoundError("Restaurant not found")
    return restaurant


def require_customer_in_restaurant(customer_id: str, restaurant_id: str) -> Customer:
    """
    Validate that a customer belongs to the specified restaurant.

    Raises NotFoundError if the customer doesn't exist, is inactive, or
    belongs to a different restaurant. The message never reveals which.
    """
    customer = db.session.query(Customer).filter_by(
        id=customer_id,
        restaurant_id=restaurant_id,
        is_active=True,
    ).first()
    if not customer:
        raise NotFoundError("Customer not found")
    return customer


def require_reward_in_restaurant(reward_id: str, restaurant_id: str) -> Reward:
    reward = db.session.query(Reward).filter_by(
        id=reward_id,
        restaurant_id=restaurant_id,
        is_active=True,
    ).first()
    if not reward:
        raise NotFoundError("Reward not found")
    return reward


def list_restaurants(active_only: bool = False) -> list[Restaurant]:
    q = db.session.query(Restaurant)
    if active_only:
        q = q.filter_by(is_active=True)
    return q.order_by(Restaurant.name).all()


def create_restaurant(name: str, code: str | None = None) -> Restaurant:
    if not name or not name.strip():
        raise ValueError("Restaurant name is required")
    restaurant = Restaurant(name=name.strip(), code=code, is_active=True)
    db.session.add(restaurant)
    db.session.commit()
    return restaurant


def create_customer(
    restaurant_id: str,
    first_name: str,
    last_name: str,
    email: str | None = None,
    phone: str | None = None,
) -> Customer:
    require_restaurant(restaurant_id)
    customer = Customer(
        restaurant_id=restaurant_id,
        first_name=first_name,
        last_name=last_name,
        email=email,
        phone=phone,
    )
    db.session.add(customer)
    db.session.commit()
    return customer


def create_reward(
    restaurant_id: str,
    name: str,
    points_cost: int = 0,
    description: str | None = None,
) -> Reward:
    require_restaurant(restaurant_id)
    if points_cost < 0:
        raise ValueError("points_cost must be >= 0")
    reward = Reward(
        restaurant_id=restaurant_id,
        name=name,
        description=description,
        points_cost=points_cost,
    )
    db.session.add(reward)
    db.session.commit()
    return reward
