"""
Pytest fixtures for store ledger backend tests.

Provides test database setup, users per role, products with stock, and
an authenticated test client.
"""

import pytest

from storeledger import create_app
from storeledger.extensions import db
from storeledger.models import User, Product, Stock
from storeledger.services.auth_service import hash_password
from storeledger.services.session_service import Principal


TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STORE_TIMEZONE': 'UTC',
        'RECEIPT_WEBHOOK_URL': '',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    # Clear all data but keep schema
    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt is slow by design; hash the shared test password once."""
    return hash_password(TEST_PASSWORD)


def _make_user(db_session, password_hash, email, role, name):
    user = User(
        email=email,
        name=name,
        password_hash=password_hash,
        role=role,
        is_active=True,
        failed_login_attempts=0,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin(db_session, password_hash):
    return _make_user(db_session, password_hash, "admin@store.local", "ADMIN", "Ana Admin")


@pytest.fixture(scope='function')
def manager(db_session, password_hash):
    return _make_user(db_session, password_hash, "manager@store.local", "MANAGER", "Marco Manager")


@pytest.fixture(scope='function')
def operator(db_session, password_hash):
    return _make_user(db_session, password_hash, "operator@store.local", "OPERATOR", "Olga Operator")


def principal_for(user) -> Principal:
    return Principal(user_id=user.id, role=user.role)


def make_product(db_session, code, name, *, price_cents, cost_cents=0, tax_rate_bps=0,
                 min_stock_level=0, stock=(), is_active=True):
    """
    Create a product with one stock row per entry in `stock`.

    Entries are quantities (location auto-named) or (location, quantity,
    reserved) tuples; rows are inserted in the given order.
    """
    product = Product(
        code=code,
        name=name,
        price_cents=price_cents,
        cost_cents=cost_cents,
        tax_rate_bps=tax_rate_bps,
        min_stock_level=min_stock_level,
        is_active=is_active,
        track_inventory=True,
    )
    db_session.add(product)
    db_session.flush()

    for index, entry in enumerate(stock):
        if isinstance(entry, tuple):
            location, quantity, reserved = entry
        else:
            location, quantity, reserved = f"LOC-{index + 1}", entry, 0
        db_session.add(Stock(product_id=product.id, location=location, quantity=quantity, reserved=reserved))
        db_session.flush()

    db_session.commit()
    return product


def get_auth_token(client, email: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, admin.email))


@pytest.fixture(scope='function')
def manager_headers(client, manager):
    return auth_headers(get_auth_token(client, manager.email))


@pytest.fixture(scope='function')
def operator_headers(client, operator):
    return auth_headers(get_auth_token(client, operator.email))
