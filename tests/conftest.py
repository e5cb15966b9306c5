"""
Pytest fixtures for the stock management backend tests.

Provides an in-memory database, master data (locations, items, supplier),
one user per role, an OPEN period with locked prices, and the test client.
"""

import pytest

from stockms import create_app
from stockms.extensions import db
from stockms.models import Item, Location, Supplier
from stockms.models.auth import (
    ACCESS_POST,
    ROLE_ADMIN,
    ROLE_OPERATOR,
    ROLE_PROCUREMENT_SPECIALIST,
    ROLE_SUPERVISOR,
)
from stockms.services import auth_service, period_service, pricing_service
from stockms.time_utils import last_day_of_month, today


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'NCR_VARIANCE_THRESHOLD_PERCENT': 0,
        'NCR_VARIANCE_THRESHOLD_AMOUNT': 0,
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


# =============================================================================
# MASTER DATA
# =============================================================================


@pytest.fixture(scope='function')
def kitchen(db_session):
    location = Location(code="KITCHEN", name="Main Kitchen", type="KITCHEN")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def store(db_session):
    location = Location(code="STORE", name="Central Store", type="STORE")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def items(db_session):
    """Two active items: rice (KG) and oil (LTR)."""
    rice = Item(code="RICE-01", name="Basmati Rice", unit="KG", category="DRY")
    oil = Item(code="OIL-01", name="Sunflower Oil", unit="LTR", category="DRY")
    db_session.add_all([rice, oil])
    db_session.commit()
    return rice, oil


@pytest.fixture(scope='function')
def supplier(db_session):
    sup = Supplier(code="SUP-01", name="Gulf Foods Trading")
    db_session.add(sup)
    db_session.commit()
    return sup


# =============================================================================
# USERS
# =============================================================================


@pytest.fixture(scope='function')
def admin(db_session):
    return auth_service.create_user("admin", "admin@example.com", PASSWORD, role=ROLE_ADMIN)


@pytest.fixture(scope='function')
def supervisor(db_session):
    return auth_service.create_user("supervisor", "supervisor@example.com", PASSWORD, role=ROLE_SUPERVISOR)


@pytest.fixture(scope='function')
def operator(db_session, kitchen):
    """Operator with POST access to the kitchen only."""
    user = auth_service.create_user(
        "operator", "operator@example.com", PASSWORD,
        role=ROLE_OPERATOR, default_location_id=kitchen.id,
    )
    auth_service.grant_location_access(user.id, kitchen.id, ACCESS_POST)
    return user


@pytest.fixture(scope='function')
def procurement(db_session, kitchen):
    user = auth_service.create_user(
        "procurement", "procurement@example.com", PASSWORD, role=ROLE_PROCUREMENT_SPECIALIST,
    )
    auth_service.grant_location_access(user.id, kitchen.id, ACCESS_POST)
    return user


# =============================================================================
# PERIODS
# =============================================================================


def current_month_dates():
    start = today().replace(day=1)
    return start, last_day_of_month(start)


@pytest.fixture(scope='function')
def open_period(db_session, admin, kitchen, store, items):
    """
    OPEN period covering the current month.

    Locked prices: rice 10.00, oil 20.00.
    """
    rice, oil = items
    start, end = current_month_dates()
    period = period_service.create_period(name="Current", start_date=start, end_date=end, user=admin)
    pricing_service.set_period_prices(
        period.id,
        [{"item_id": rice.id, "price": "10.00"}, {"item_id": oil.id, "price": "20.00"}],
        user=admin,
    )
    return period_service.open_period(period.id, user=admin)


# =============================================================================
# AUTH HELPERS
# =============================================================================


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post(
        '/api/auth/login',
        json={'username': username, 'password': password},
    )
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, admin.username))


@pytest.fixture(scope='function')
def supervisor_headers(client, supervisor):
    return auth_headers(get_auth_token(client, supervisor.username))


@pytest.fixture(scope='function')
def operator_headers(client, operator):
    return auth_headers(get_auth_token(client, operator.username))


@pytest.fixture(scope='function')
def procurement_headers(client, procurement):
    return auth_headers(get_auth_token(client, procurement.username))
