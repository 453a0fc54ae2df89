"""
Pytest fixtures for storepos backend tests.

Provides test database setup, operators for every role, a small catalog,
customers, and test client helpers.
"""

from datetime import datetime
from decimal import Decimal

import pytest
from storepos import create_app
from storepos.extensions import db
from storepos.permissions import Role
from storepos.services import catalog_service, loyalty_service
from storepos.services.auth_service import create_user


PASSWORD = "Password123!"

# A fixed instant inside the 2026-10-18 business day (UTC)
SALE_TIME = datetime(2026, 10, 18, 15, 30)

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'BCRYPT_ROUNDS': 4,
    'POS_TAX_RATE': Decimal("0.10"),
    'POS_REPORT_TIMEZONE': 'UTC',
    'POS_REPORT_TOP_PRODUCTS': 5,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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


def make_user(username: str, role: Role):
    return create_user(
        username=username,
        email=f"{username}@storepos.test",
        password=PASSWORD,
        full_name=username.replace("_", " ").title(),
        role=role,
    )


@pytest.fixture(scope='function')
def admin_user(db_session):
    return make_user("admin", Role.ADMIN)


@pytest.fixture(scope='function')
def manager_user(db_session):
    return make_user("manager", Role.MANAGER)


@pytest.fixture(scope='function')
def cashier_user(db_session):
    return make_user("cashier", Role.CASHIER)


@pytest.fixture(scope='function')
def other_cashier(db_session):
    return make_user("cashier_two", Role.CASHIER)


@pytest.fixture(scope='function')
def laptop(db_session):
    """1999.99 each, 5 on hand."""
    return catalog_service.create_product(sku="LAP-001", name="Laptop", price="1999.99", quantity_on_hand=5, reorder_level=2)


@pytest.fixture(scope='function')
def cable(db_session):
    """29.99 each, 50 on hand."""
    return catalog_service.create_product(sku="CBL-001", name="USB Cable", price="29.99", quantity_on_hand=50)


@pytest.fixture(scope='function')
def regular_customer(db_session):
    return loyalty_service.create_customer(phone="555-0100", full_name="Rita Regular")


@pytest.fixture(scope='function')
def loyal_customer(db_session):
    """Already past the purchase-count threshold."""
    customer = loyalty_service.create_customer(phone="555-0199", full_name="Larry Loyal")
    customer.purchase_count = 10
    customer.total_spent_cents = 50_000
    customer.is_eligible_for_discount = True
    customer.discount_percentage = 5
    db_session.commit()
    return customer


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, admin_user.username))


@pytest.fixture(scope='function')
def manager_headers(client, manager_user):
    return auth_headers(get_auth_token(client, manager_user.username))


@pytest.fixture(scope='function')
def cashier_headers(client, cashier_user):
    return auth_headers(get_auth_token(client, cashier_user.username))


@pytest.fixture(scope='function')
def other_cashier_headers(client, other_cashier):
    return auth_headers(get_auth_token(client, other_cashier.username))
