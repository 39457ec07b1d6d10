"""
Pytest fixtures for inventory_flow backend tests.

Provides a fresh in-memory database per test, approved users, seeded
products (stock booked through the ledger) and bearer-token headers.
"""

import pytest

from inventory_flow import create_app
from inventory_flow.extensions import db
from inventory_flow.models import User
from inventory_flow.services import customer_service, products_service, session_service


def base_config(tmp_path, **overrides):
    config = {
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'INVOICE_STORAGE_DIR': str(tmp_path / 'invoices'),
        'LOCK_RETRY_BACKOFF_SECONDS': 0,
        'LOG_LEVEL': 'WARNING',
    }
    config.update(overrides)
    return config


@pytest.fixture(scope='function')
def app(tmp_path):
    """Create application with an empty schema for each test."""
    app = create_app(base_config(tmp_path))

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


def make_user(username: str, role: str = 'staff', approved: bool = True) -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        role=role,
        is_approved=approved,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def make_product(admin_id: int, sku: str, *, price: int = 100, pieces_per_case: int = 1,
                 initial_pieces: int = 0, cost: int | None = None, threshold: int = 0):
    return products_service.create_product(
        payload={
            'sku': sku,
            'name': f"Product {sku}",
            'price_per_piece_cents': price,
            'pieces_per_case': pieces_per_case,
            'wholesale_cost_per_piece_cents': cost,
            'low_stock_threshold': threshold,
        },
        actor_user_id=admin_id,
        initial_pieces=initial_pieces,
    )


def make_customer(admin_id: int, name: str = "Ana Reyes", *, phone: str = "0917-555-0100", **fields):
    return customer_service.create_customer(
        payload={"name": name, "phone": phone, "customer_type": "retail", **fields},
        actor_user_id=admin_id,
    )


@pytest.fixture(scope='function')
def admin(app):
    return make_user('admin', role='admin')


@pytest.fixture(scope='function')
def staff(app):
    return make_user('staff')


@pytest.fixture(scope='function')
def other_staff(app):
    return make_user('other_staff')


@pytest.fixture(scope='function')
def pending_user(app):
    return make_user('pending', approved=False)


@pytest.fixture(scope='function')
def soda(admin):
    """Soda: 5 pieces per case, 10 pieces on hand, 250 cents a piece."""
    return make_product(admin.id, 'SODA-5', price=250, pieces_per_case=5, initial_pieces=10, cost=150)


@pytest.fixture(scope='function')
def chips(admin):
    """Chips: 12 pieces per case, 48 pieces on hand, 100 cents a piece."""
    return make_product(admin.id, 'CHIPS-12', price=100, pieces_per_case=12, initial_pieces=48, threshold=12)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(admin):
    _, token = session_service.create_session(admin.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def staff_headers(staff):
    _, token = session_service.create_session(staff.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def other_staff_headers(other_staff):
    _, token = session_service.create_session(other_staff.id)
    return auth_headers(token)


class RecordingRenderer:
    """Stand-in document renderer that counts calls and can be told to fail."""

    def __init__(self, fail_times: int = 0):
        self.calls = []
        self.fail_times = fail_times

    def render(self, document) -> str:
        self.calls.append(document.invoice_number)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise OSError("storage unavailable")
        return f"invoices/{document.invoice_number}.pdf"


@pytest.fixture(scope='function')
def renderer():
    return RecordingRenderer()


@pytest.fixture(scope='function')
def customer(admin):
    """Retail customer with a zero balance."""
    return make_customer(admin.id)
