from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from resell_core.config import settings
from resell_core.database import get_session
from resell_core.main import app
from resell_core.services import order_service, payment_service, wallet_service

from conftest import ADDRESS, ADMIN_ID, CUSTOMER_ID, RESELLER_ID


@pytest.fixture
def client(engine, gateway, provider, notifier):
    def _session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.state.gateway = gateway
    app.state.provider = provider
    app.state.notifier = notifier
    # no context manager: the lifespan (real clients, scheduler) stays off
    yield TestClient(app)
    app.dependency_overrides.clear()


def _error(response):
    body = response.json()
    assert body["success"] is False
    return body


# ============================================================================
# ORDERS
# ============================================================================


class TestOrderEndpoints:
    def test_place_order(self, client, make_product):
        product = make_product(price="300.00")

        response = client.post("/checkout/orders", json={
            "user_id": CUSTOMER_ID,
            "payment_method": "cod",
            "shipping_address": ADDRESS,
            "items": [{"product_id": product.id, "quantity": 2}],
        })

        assert response.status_code == 201
        order = response.json()["order"]
        assert order["status"] == "confirmed"
        assert order["order_no"].startswith("ORD")
        assert order["items"][0]["quantity"] == 2

    def test_skipping_states_is_a_conflict(self, client, place_order):
        order = place_order()

        response = client.put(f"/admin/orders/{order.id}/status",
                              json={"admin_id": ADMIN_ID, "status": "delivered"})

        assert response.status_code == 409
        body = _error(response)
        assert body["error"] == "invalid_transition"
        assert body["details"] == {"entity": "order", "current": "confirmed", "target": "delivered"}

    def test_unknown_order_is_not_found(self, client):
        response = client.get("/orders/999999")
        assert response.status_code == 404
        assert _error(response)["error"] == "not_found"

    def test_cancel_needs_an_actor(self, client, place_order):
        order = place_order()
        response = client.post(f"/orders/{order.id}/cancel", json={"reason": "changed mind"})
        assert response.status_code == 400
        assert _error(response)["details"]["field"] == "user_id"

    def test_customer_cancel(self, client, place_order):
        order = place_order()

        response = client.post(f"/orders/{order.id}/cancel",
                               json={"user_id": CUSTOMER_ID, "reason": "changed mind"})

        assert response.status_code == 200
        assert response.json()["order"]["status"] == "cancelled"
        history = client.get(f"/orders/{order.id}/history").json()["history"]
        assert history[-1]["actor"] == f"user:{CUSTOMER_ID}"

    def test_provider_outage_hides_internal_detail(self, client, place_order, provider):
        order = place_order()
        provider.fail_on.add("create_shipment")

        response = client.post(f"/admin/orders/{order.id}/shipment", json={"admin_id": ADMIN_ID})

        assert response.status_code == 502
        body = _error(response)
        assert body["details"] == {"service": "shiprocket"}
        assert "create_shipment" not in body["message"]
        assert client.get(f"/orders/{order.id}").json()["order"]["status"] == "confirmed"


# ============================================================================
# WEBHOOKS
# ============================================================================


class TestRazorpayWebhook:
    def test_signed_raw_body_confirms_order(self, client, session, place_order, gateway):
        order = place_order(payment_method="upi")
        gateway_order_id = payment_service.create_payment_order(session, gateway, order_id=order.id)[
            "razorpay_order_id"]
        body = (
            '{"event":"payment.captured","payload":{"payment":{"entity":'
            '{"id":"pay_9","order_id":"%s","status":"captured"}}}}' % gateway_order_id
        ).encode()

        response = client.post("/webhooks/razorpay", content=body,
                               headers={"X-Razorpay-Signature": gateway.sign_webhook(body),
                                        "Content-Type": "application/json"})

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert client.get(f"/orders/{order.id}").json()["order"]["status"] == "confirmed"

    def test_bad_signature_is_rejected(self, client):
        response = client.post("/webhooks/razorpay", content=b'{"event":"payment.captured"}',
                               headers={"X-Razorpay-Signature": "deadbeef"})
        assert response.status_code == 400
        assert _error(response)["error"] == "signature_mismatch"


class TestShiprocketWebhook:
    def test_delivery_scan(self, client, session, place_order, provider):
        order = place_order()
        order = order_service.create_shipment(session, provider, order_id=order.id, admin_id=ADMIN_ID)

        response = client.post("/webhooks/shiprocket", json={
            "awb": order.tracking_number,
            "current_status": "Delivered",
            "updated_at": "2026-10-05 11:20:00",
        })

        assert response.status_code == 200
        assert response.json()["status"] == "delivered"
        order = client.get(f"/orders/{order.id}").json()["order"]
        assert order["delivered_at"].startswith("2026-10-05T11:20:00")

    def test_token_is_enforced_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "shiprocket_webhook_token", "s3cret")

        denied = client.post("/webhooks/shiprocket", json={"awb": "X1", "current_status": "DELIVERED"})
        allowed = client.post("/webhooks/shiprocket", json={"awb": "X1", "current_status": "DELIVERED"},
                              headers={"x-api-key": "s3cret"})

        assert denied.status_code == 400
        assert allowed.json() == {"success": True, "message": "Shipment not found"}

    def test_payload_without_status(self, client):
        response = client.post("/webhooks/shiprocket", json={"awb": "X1"})
        assert response.json() == {"success": True, "message": "No status in payload"}


# ============================================================================
# WALLET
# ============================================================================


class TestWalletEndpoints:
    @pytest.fixture(autouse=True)
    def _funded(self, session):
        wallet_service.credit(session, user_id=RESELLER_ID, amount=Decimal("500"), source="resell_earning")
        session.commit()

    def test_withdrawal_flow(self, client):
        response = client.post("/wallet/withdrawals", json={
            "user_id": RESELLER_ID,
            "amount": "200",
            "bank_details": {
                "account_holder_name": "Ravi Kumar",
                "account_number": "001234567890",
                "ifsc_code": "HDFC0000123",
                "bank_name": "HDFC Bank",
            },
        })
        assert response.status_code == 201
        withdrawal = response.json()["withdrawal"]

        completed = client.post(f"/admin/wallets/withdrawals/{withdrawal['id']}/complete",
                                json={"admin_id": ADMIN_ID, "utr_number": "UTR42"})

        assert completed.status_code == 200
        wallet = client.get(f"/wallet/{RESELLER_ID}").json()["wallet"]
        assert Decimal(wallet["balance"]) == Decimal("300")
        assert Decimal(wallet["total_withdrawn"]) == Decimal("200")
        audit = client.get(f"/admin/wallets/{RESELLER_ID}/audit").json()["audit"]
        assert audit["consistent"] is True

    def test_overdraw_is_rejected(self, client):
        response = client.post("/wallet/withdrawals", json={
            "user_id": RESELLER_ID,
            "amount": "900",
            "bank_details": {
                "account_holder_name": "Ravi Kumar",
                "account_number": "001234567890",
                "ifsc_code": "HDFC0000123",
                "bank_name": "HDFC Bank",
            },
        })
        assert response.status_code == 409
        assert _error(response)["error"] == "insufficient_balance"

    def test_freeze_notifies_reseller(self, client, notifier):
        response = client.post(f"/admin/wallets/{RESELLER_ID}/freeze",
                               json={"admin_id": ADMIN_ID, "reason": "KYC pending"})

        assert response.status_code == 200
        assert "wallet_frozen" in [t.value for t in notifier.types()]
