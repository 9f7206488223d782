"""
Shared fixtures.

Every test gets its own file-backed SQLite database so two sessions can
race on the same rows. The payment gateway, shipment provider and
notifier are in-memory fakes.
"""

import hashlib
import hmac
from decimal import Decimal

import pytest
from sqlmodel import Session

from resell_core.config import settings
from resell_core.database import build_engine, create_db_and_tables
from resell_core.exceptions import ExternalServiceError
from resell_core.models.product import Product
from resell_core.services import order_service


ADDRESS = {
    "name": "Asha Rao",
    "phone": "9876543210",
    "email": "asha@example.com",
    "address_line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
}

ADMIN_ID = 1
CUSTOMER_ID = 10
RESELLER_ID = 99


# ============================================================================
# DATABASE
# ============================================================================


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'resell_core_test.db'}")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def session_factory(engine):
    return lambda: Session(engine)


@pytest.fixture(autouse=True)
def _settings(monkeypatch):
    monkeypatch.setattr(settings, "return_window_days", 7)
    monkeypatch.setattr(settings, "min_withdrawal_amount", Decimal("100"))
    monkeypatch.setattr(settings, "verify_payment_with_gateway", True)
    monkeypatch.setattr(settings, "admin_emails", [])
    monkeypatch.setattr(settings, "shiprocket_webhook_token", "")


# ============================================================================
# COLLABORATOR FAKES
# ============================================================================


class FakeGateway:
    """Razorpay stand-in signing with real HMAC-SHA256."""

    key_secret = b"test_key_secret"
    webhook_secret = b"test_webhook_secret"

    def __init__(self):
        self.payment_status = "captured"
        self.fetch_error = None
        self.payment_fields = {}
        self.fetched = []
        self.created = []

    def sign(self, gateway_order_id, payment_id):
        message = f"{gateway_order_id}|{payment_id}".encode()
        return hmac.new(self.key_secret, message, hashlib.sha256).hexdigest()

    def sign_webhook(self, raw_body: bytes):
        return hmac.new(self.webhook_secret, raw_body, hashlib.sha256).hexdigest()

    def create_payable_order(self, order):
        self.created.append(order.order_no)
        return {"id": f"order_rzp_{order.id}", "amount": int(order.total * 100)}

    def fetch_payment(self, payment_id):
        self.fetched.append(payment_id)
        if self.fetch_error is not None:
            raise self.fetch_error
        return {"id": payment_id, "status": self.payment_status, "method": "upi", **self.payment_fields}

    def verify_payment_signature(self, gateway_order_id, payment_id, signature):
        return hmac.compare_digest(self.sign(gateway_order_id, payment_id), signature or "")

    def verify_webhook_signature(self, raw_body, signature):
        return hmac.compare_digest(self.sign_webhook(raw_body), signature or "")


class FakeProvider:
    """Shiprocket stand-in; names listed in ``fail_on`` raise a provider error."""

    def __init__(self):
        self.calls = []
        self.fail_on = set()
        self.tracking = {}
        self._seq = 0

    def _call(self, name):
        self.calls.append(name)
        if name in self.fail_on:
            raise ExternalServiceError("shiprocket", f"{name} failed")

    def create_shipment(self, order):
        self._call("create_shipment")
        self._seq += 1
        return {"shipment_id": f"SHP{self._seq}", "provider_order_id": f"SR{self._seq}"}

    def generate_tracking_number(self, shipment_id):
        self._call("generate_tracking_number")
        return {"tracking_number": f"AWB{shipment_id}", "courier_name": "Delhivery"}

    def schedule_pickup(self, shipment_id):
        self._call("schedule_pickup")
        return {"pickup_scheduled_date": None}

    def fetch_tracking(self, shipment_id):
        self._call("fetch_tracking")
        return self.tracking.get(shipment_id, {"status": None, "delivered_at": None, "events": []})

    def create_return_shipment(self, return_request, order):
        self._call("create_return_shipment")
        return {
            "shipment_id": f"RSHP{return_request.id}",
            "provider_order_id": f"RSR{return_request.id}",
            "tracking_number": f"RAWB{return_request.id}",
            "courier_name": "Delhivery",
        }

    def cancel_shipment(self, tracking_id):
        self._call("cancel_shipment")
        return {"status": "cancelled"}


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)

    def types(self):
        return [event.type for event in self.events]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def notifier():
    return RecordingNotifier()


# ============================================================================
# DATA FACTORIES
# ============================================================================


@pytest.fixture
def make_product(session):
    def _make(name="Cotton Kurta", price="200.00", stock=10):
        product = Product(name=name, base_price=Decimal(price), stock=stock)
        session.add(product)
        session.commit()
        session.refresh(product)
        return product

    return _make


@pytest.fixture
def place_order(session, make_product, notifier):
    """Place an order for one fresh product unless explicit lines are given."""

    def _place(payment_method="cod", items=None, price="500.00", quantity=1, markup="0",
               reseller_id=None, user_id=CUSTOMER_ID):
        if items is None:
            product = make_product(price=price, stock=10)
            items = [{
                "product_id": product.id,
                "quantity": quantity,
                "resell_price": Decimal(markup),
                "reseller_id": reseller_id,
            }]
        return order_service.place_order(
            session,
            user_id=user_id,
            payment_method=payment_method,
            shipping_address=dict(ADDRESS),
            items=items,
            notifier=notifier,
        )

    return _place


@pytest.fixture
def advance(session):
    """Walk an order through admin status updates."""

    def _advance(order, *statuses):
        for status in statuses:
            order = order_service.update_status(session, order_id=order.id, status=status, admin_id=ADMIN_ID)
        return order

    return _advance


@pytest.fixture
def delivered_order(place_order, advance):
    def _deliver(**kwargs):
        order = place_order(**kwargs)
        if order.status == "pending":
            order = advance(order, "confirmed")
        return advance(order, "processing", "packed", "shipped", "delivered")

    return _deliver
