"""
Pytest fixtures for shopledger backend tests.

Provides test database setup, catalog fixtures, actor headers, and a mock
payment provider.
"""

import httpx
import pytest

from shopledger import create_app
from shopledger.extensions import db
from shopledger.models import LedgerEntry, Order, Transaction
from shopledger.services import catalog_service, order_service, sale_service
from shopledger.services.payment_provider import PaymentProviderClient


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_BACKOFF': 0,
        'PAYMENT_VERIFY_BACKOFF': 0,
        'PAYMENT_WEBHOOK_SECRET': '',
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
        # Clear all data but keep schema (Core deletes bypass the ledger's ORM guards)
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        app.extensions.pop('payment_provider', None)
        app.config['PAYMENT_WEBHOOK_SECRET'] = ''


# =============================================================================
# ACTOR HEADERS
# =============================================================================


@pytest.fixture
def staff_headers():
    return {"X-Actor-Id": "staff-1", "X-Actor-Role": "STAFF"}


@pytest.fixture
def customer_headers():
    return {"X-Actor-Id": "cust-1", "X-Actor-Role": "CUSTOMER"}


@pytest.fixture
def other_customer_headers():
    return {"X-Actor-Id": "cust-2", "X-Actor-Role": "CUSTOMER"}


# =============================================================================
# CATALOG
# =============================================================================


@pytest.fixture
def make_product(db_session):
    """Factory: make_product(name, price_cents, [(sku, stock), ...]) -> Product."""
    def _make(name="Linen Shirt", price_cents=2000, variants=(("SHIRT-M", 10),), **kwargs):
        return catalog_service.create_product(
            name=name,
            base_price_cents=price_cents,
            variants=[{"sku": sku, "size": "M", "color": "Blue", "initial_stock": stock} for sku, stock in variants],
            performed_by="fixture",
            **kwargs,
        )
    return _make


@pytest.fixture
def shirt(make_product):
    """A single variant with 10 units at $20.00."""
    product = make_product()
    return product.variants[0]


@pytest.fixture
def hat(make_product):
    """A single variant with 5 units at $12.50."""
    product = make_product(name="Straw Hat", price_cents=1250, variants=(("HAT-OS", 5),))
    return product.variants[0]


# =============================================================================
# ORDERS
# =============================================================================


HOME_ADDRESS = {
    "recipient_name": "Amani K.",
    "phone": "+243810000000",
    "street": "12 Avenue du Commerce",
    "commune": "Gombe",
    "city": "Kinshasa",
}


@pytest.fixture
def home_address():
    return dict(HOME_ADDRESS)


@pytest.fixture
def place_order(db_session):
    """Factory for online orders placed by cust-1."""
    def _place(variant, quantity=1, *, payment_method="MOBILE_MONEY", delivery_method="HOME_DELIVERY",
               customer_id="cust-1"):
        return order_service.create_order(
            customer_id=customer_id,
            payment_method=payment_method,
            delivery_method=delivery_method,
            items=[{"variant_id": variant.id, "quantity": quantity}],
            delivery_address=dict(HOME_ADDRESS) if delivery_method == "HOME_DELIVERY" else None,
        )
    return _place


@pytest.fixture
def cash_sale(db_session):
    """Factory for paid POS sales attributed to a customer."""
    def _sell(variant, quantity=1, customer_id="cust-1"):
        return sale_service.execute_sale(
            customer_id=customer_id,
            payment_method="CASH",
            payment_details={"amount_received_cents": variant.unit_price_cents * quantity},
            line_items=[{"variant_id": variant.id, "quantity": quantity}],
            performed_by="staff-1",
        )
    return _sell


# =============================================================================
# PAYMENT PROVIDER
# =============================================================================


@pytest.fixture
def provider(app, db_session):
    """
    Install a provider client backed by httpx.MockTransport.

    Tests set provider.responses[(method, path)] to a status code and JSON
    body (or a list of them, consumed in order); provider.calls records
    every request made.
    """
    class FakeProvider:
        def __init__(self):
            self.responses = {}
            self.calls = []

        def handler(self, request: httpx.Request) -> httpx.Response:
            key = (request.method, request.url.path)
            self.calls.append(key)
            planned = self.responses.get(key)
            if isinstance(planned, list):
                planned = planned.pop(0) if len(planned) > 1 else planned[0]
            if planned is None:
                return httpx.Response(404, json={"error": "not found"})
            if isinstance(planned, Exception):
                raise planned
            status, body = planned
            return httpx.Response(status, json=body)

    fake = FakeProvider()
    app.extensions['payment_provider'] = PaymentProviderClient(
        "http://provider.test/v1",
        "sk_test",
        verify_attempts=3,
        verify_backoff=0,
        transport=httpx.MockTransport(fake.handler),
    )
    return fake


# =============================================================================
# ASSERTION HELPERS
# =============================================================================


def ledger_sum(variant_id):
    return sum(e.quantity_change for e in db.session.query(LedgerEntry).filter_by(variant_id=variant_id))


def row_counts():
    return {
        "orders": db.session.query(Order).count(),
        "ledger": db.session.query(LedgerEntry).count(),
        "transactions": db.session.query(Transaction).count(),
    }
