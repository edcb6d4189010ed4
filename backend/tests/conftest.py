"""
Pytest fixtures for loyalty QR backend tests.

Provides test database setup, two-tenant fixtures, and test client.
"""

import pytest
from loyalty_qr import create_app
from loyalty_qr.extensions import db
from loyalty_qr.models import Restaurant, Customer, Reward


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def restaurant_a(db_session):
    """Create Restaurant A (first tenant)."""
    restaurant = Restaurant(name="Trattoria Alpha", code="ALPHA", is_active=True)
    db_session.add(restaurant)
    db_session.commit()
    return restaurant


@pytest.fixture(scope='function')
def restaurant_b(db_session):
    """Create Restaurant B (second tenant)."""
    restaurant = Restaurant(name="Bistro Beta", code="BETA", is_active=True)
    db_session.add(restaurant)
    db_session.commit()
    return restaurant


@pytest.fixture(scope='function')
def customer_a(db_session, restaurant_a):
    """Create a customer of Restaurant A."""
    customer = Customer(
        restaurant_id=restaurant_a.id,
        first_name="Ana",
        last_name="Alvarez",
        email="ana@alpha.test",
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_b(db_session, restaurant_b):
    """Create a customer of Restaurant B."""
    customer = Customer(
        restaurant_id=restaurant_b.id,
        first_name="Ben",
        last_name="Brown",
        email="ben@beta.test",
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def reward_a(db_session, restaurant_a):
    """Create a redeemable reward in Restaurant A."""
    reward = Reward(restaurant_id=restaurant_a.id, name="Free espresso", points_cost=100)
    db_session.add(reward)
    db_session.commit()
    return reward


@pytest.fixture(scope='function')
def reward_b(db_session, restaurant_b):
    """Create a redeemable reward in Restaurant B."""
    reward = Reward(restaurant_id=restaurant_b.id, name="Free dessert", points_cost=150)
    db_session.add(reward)
    db_session.commit()
    return reward
