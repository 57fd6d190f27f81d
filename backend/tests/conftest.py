"""
Pytest fixtures for CounterPOS backend tests.

Provides test database setup, actor/product/customer factories, and an
authenticated test client.
"""

import pytest
from counterpos import create_app
from counterpos.extensions import db
from counterpos.models import User, UserRole
from counterpos.services import customer_service, products_service
from counterpos.services.session_service import create_session


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_SECONDS': 0,
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
    """Fresh data for each test; the schema is kept."""
    db.session.rollback()
    db.session.expunge_all()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


def _make_user(username: str, role: UserRole) -> User:
    user = User(username=username, name=username.title(), role=role, is_active=True)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture(scope='function')
def cashier(db_session):
    return _make_user("cashier", UserRole.CASHIER)


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user("admin", UserRole.ADMIN)


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: products are created through the service so starting stock is ledgered."""
    counter = {"n": 0}

    def _make(stock=10, cost=500, price=1000, **fields):
        counter["n"] += 1
        patch = {
            "name": fields.pop("name", f"Product {counter['n']}"),
            "cost_price_cents": cost,
            "sale_price_cents": price,
            "stock_quantity": stock,
        }
        patch.update(fields)
        return products_service.create_product(patch)

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    return make_product(stock=10, cost=500, price=1000, name="Widget")


@pytest.fixture(scope='function')
def customer(db_session):
    return customer_service.create_customer("Dana Buyer", email="dana@example.com")


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def cashier_headers(cashier):
    _, token = create_session(cashier.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def admin_headers(admin):
    _, token = create_session(admin.id)
    return auth_headers(token)
