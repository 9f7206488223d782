import json

import pytest

from resell_core.exceptions import (
    ExternalServiceError,
    PaymentNotCaptured,
    SignatureMismatch,
    ValidationError,
)
from resell_core.notifications import EventType
from resell_core.services import order_service, payment_service

from conftest import CUSTOMER_ID


@pytest.fixture
def prepaid(session, place_order, gateway):
    order = place_order(payment_method="upi")
    data = payment_service.create_payment_order(session, gateway, order_id=order.id, user_id=CUSTOMER_ID)
    return order, data["razorpay_order_id"]


def _webhook_body(event, gateway_order_id, payment_id="pay_1"):
    # irregular spacing on purpose: the HMAC must be over these exact bytes
    return (
        '{"event":  "%s", "payload": {"payment": {"entity": '
        '{"id": "%s", "order_id": "%s", "status": "x", "amount": 100}}}}'
        % (event, payment_id, gateway_order_id)
    ).encode()


class TestPayableOrder:
    def test_gateway_order_is_created_once(self, session, place_order, gateway):
        order = place_order(payment_method="upi")
        first = payment_service.create_payment_order(session, gateway, order_id=order.id)
        second = payment_service.create_payment_order(session, gateway, order_id=order.id)

        assert first["razorpay_order_id"] == second["razorpay_order_id"] == f"order_rzp_{order.id}"
        assert gateway.created == [order.order_no]

    def test_cod_orders_are_not_payable(self, session, place_order, gateway):
        order = place_order(payment_method="cod")
        with pytest.raises(ValidationError):
            payment_service.create_payment_order(session, gateway, order_id=order.id)


class TestVerifyPayment:
    def test_valid_signature_confirms_order(self, session, prepaid, gateway, notifier):
        order, gateway_order_id = prepaid
        signature = gateway.sign(gateway_order_id, "pay_1")

        result = payment_service.verify_payment(
            session, gateway, order_id=order.id, gateway_order_id=gateway_order_id,
            payment_id="pay_1", signature=signature, notifier=notifier,
        )

        assert result["success"] is True
        order = order_service.get_order(session, order.id)
        assert order.status == "confirmed"
        assert order.payment_status == "completed"
        assert order.gateway_payment_id == "pay_1"
        assert order.paid_at is not None
        assert EventType.PAYMENT_SUCCESS in notifier.types()

    def test_reverifying_is_idempotent(self, session, prepaid, gateway):
        order, gateway_order_id = prepaid
        signature = gateway.sign(gateway_order_id, "pay_1")
        kwargs = dict(order_id=order.id, gateway_order_id=gateway_order_id, payment_id="pay_1", signature=signature)

        payment_service.verify_payment(session, gateway, **kwargs)
        history_before = len(order_service.get_history(session, order.id))

        result = payment_service.verify_payment(session, gateway, **kwargs)

        assert result["success"] is True
        assert result["message"] == "Payment already processed"
        assert len(order_service.get_history(session, order.id)) == history_before == 2
        assert gateway.fetched == ["pay_1"]

    def test_tampered_signature_never_confirms(self, session, prepaid, gateway, notifier):
        order, gateway_order_id = prepaid
        valid = gateway.sign(gateway_order_id, "pay_1")
        signature = valid[:-1] + ("1" if valid[-1] == "0" else "0")

        with pytest.raises(SignatureMismatch):
            payment_service.verify_payment(
                session, gateway, order_id=order.id, gateway_order_id=gateway_order_id,
                payment_id="pay_1", signature=signature, notifier=notifier,
            )

        order = order_service.get_order(session, order.id)
        assert order.status == "pending"
        assert order.payment_status == "verification_failed"
        assert gateway.fetched == []
        assert EventType.PAYMENT_VERIFICATION_FAILED in notifier.types()

    def test_signature_for_another_gateway_order_rejected(self, session, prepaid, gateway):
        order, _ = prepaid
        signature = gateway.sign("order_rzp_other", "pay_1")
        with pytest.raises(ValidationError):
            payment_service.verify_payment(
                session, gateway, order_id=order.id, gateway_order_id="order_rzp_other",
                payment_id="pay_1", signature=signature,
            )
        assert order_service.get_order(session, order.id).status == "pending"

    def test_another_orders_payment_cannot_confirm(self, session, place_order, gateway):
        cheap = place_order(payment_method="upi", price="10.00")
        cheap_gateway_order = payment_service.create_payment_order(session, gateway, order_id=cheap.id)[
            "razorpay_order_id"]
        signature = gateway.sign(cheap_gateway_order, "pay_A")
        payment_service.verify_payment(
            session, gateway, order_id=cheap.id, gateway_order_id=cheap_gateway_order,
            payment_id="pay_A", signature=signature,
        )
        expensive = place_order(payment_method="upi", price="1000.00")

        with pytest.raises(ValidationError):
            payment_service.verify_payment(
                session, gateway, order_id=expensive.id, gateway_order_id=cheap_gateway_order,
                payment_id="pay_A", signature=signature,
            )

        session.expire_all()
        expensive = order_service.get_order(session, expensive.id)
        assert expensive.status == "pending"
        assert expensive.payment_status == "pending"
        assert expensive.gateway_order_id is None

    def test_fetched_payment_must_match_order(self, session, prepaid, gateway):
        order, gateway_order_id = prepaid
        gateway.payment_fields = {"order_id": "order_rzp_other"}

        with pytest.raises(ValidationError):
            payment_service.verify_payment(
                session, gateway, order_id=order.id, gateway_order_id=gateway_order_id,
                payment_id="pay_1", signature=gateway.sign(gateway_order_id, "pay_1"),
            )
        assert order_service.get_order(session, order.id).status == "pending"

    def test_short_payment_amount_rejected(self, session, prepaid, gateway):
        order, gateway_order_id = prepaid
        gateway.payment_fields = {"order_id": gateway_order_id, "amount": 1000}

        with pytest.raises(ValidationError) as exc:
            payment_service.verify_payment(
                session, gateway, order_id=order.id, gateway_order_id=gateway_order_id,
                payment_id="pay_1", signature=gateway.sign(gateway_order_id, "pay_1"),
            )

        assert exc.value.details["field"] == "amount"
        assert order_service.get_order(session, order.id).payment_status == "pending"

    def test_uncaptured_payment_marks_failed(self, session, prepaid, gateway):
        order, gateway_order_id = prepaid
        gateway.payment_status = "failed"

        with pytest.raises(PaymentNotCaptured) as exc:
            payment_service.verify_payment(
                session, gateway, order_id=order.id, gateway_order_id=gateway_order_id,
                payment_id="pay_1", signature=gateway.sign(gateway_order_id, "pay_1"),
            )

        assert exc.value.details["gateway_status"] == "failed"
        order = order_service.get_order(session, order.id)
        assert order.status == "pending"
        assert order.payment_status == "failed"

    def test_gateway_timeout_leaves_order_as_it_was(self, session, prepaid, gateway):
        order, gateway_order_id = prepaid
        gateway.fetch_error = ExternalServiceError("razorpay", "Timed out fetching payment")

        with pytest.raises(ExternalServiceError):
            payment_service.verify_payment(
                session, gateway, order_id=order.id, gateway_order_id=gateway_order_id,
                payment_id="pay_1", signature=gateway.sign(gateway_order_id, "pay_1"),
            )

        session.expire_all()
        order = order_service.get_order(session, order.id)
        assert order.status == "pending"
        assert order.payment_status == "pending"

    def test_client_reported_failure_cannot_undo_payment(self, session, prepaid, gateway):
        order, gateway_order_id = prepaid
        payment_service.verify_payment(
            session, gateway, order_id=order.id, gateway_order_id=gateway_order_id,
            payment_id="pay_1", signature=gateway.sign(gateway_order_id, "pay_1"),
        )

        order = payment_service.report_payment_failure(session, order_id=order.id, error="closed popup")
        assert order.payment_status == "completed"


class TestPaymentWebhook:
    def test_captured_webhook_confirms_order(self, session, prepaid, gateway, notifier):
        order, gateway_order_id = prepaid
        body = _webhook_body("payment.captured", gateway_order_id)

        result = payment_service.handle_payment_webhook(
            session, gateway, raw_body=body, signature=gateway.sign_webhook(body), notifier=notifier
        )

        assert result["success"] is True
        order = order_service.get_order(session, order.id)
        assert order.status == "confirmed"
        assert order.payment_status == "completed"

    def test_signature_is_checked_against_raw_bytes(self, session, prepaid, gateway):
        order, gateway_order_id = prepaid
        body = _webhook_body("payment.captured", gateway_order_id)
        reserialized = json.dumps(json.loads(body)).encode()

        with pytest.raises(SignatureMismatch):
            payment_service.handle_payment_webhook(
                session, gateway, raw_body=reserialized, signature=gateway.sign_webhook(body)
            )
        assert order_service.get_order(session, order.id).status == "pending"

    def test_missing_signature_rejected(self, session, prepaid, gateway):
        _, gateway_order_id = prepaid
        with pytest.raises(SignatureMismatch):
            payment_service.handle_payment_webhook(
                session, gateway, raw_body=_webhook_body("payment.captured", gateway_order_id), signature=None
            )

    def test_late_failure_does_not_clobber_verified_payment(self, session, prepaid, gateway):
        order, gateway_order_id = prepaid
        payment_service.verify_payment(
            session, gateway, order_id=order.id, gateway_order_id=gateway_order_id,
            payment_id="pay_1", signature=gateway.sign(gateway_order_id, "pay_1"),
        )

        body = _webhook_body("payment.failed", gateway_order_id)
        payment_service.handle_payment_webhook(session, gateway, raw_body=body, signature=gateway.sign_webhook(body))

        order = order_service.get_order(session, order.id)
        assert order.payment_status == "completed"
        assert order.status == "confirmed"

    def test_failure_webhook_marks_payment_failed(self, session, prepaid, gateway, notifier):
        order, gateway_order_id = prepaid
        body = _webhook_body("payment.failed", gateway_order_id)

        payment_service.handle_payment_webhook(
            session, gateway, raw_body=body, signature=gateway.sign_webhook(body), notifier=notifier
        )

        order = order_service.get_order(session, order.id)
        assert order.payment_status == "failed"
        assert order.status == "pending"
        assert EventType.PAYMENT_FAILED in notifier.types()

    def test_webhook_then_verify_converge(self, session, prepaid, gateway):
        order, gateway_order_id = prepaid
        body = _webhook_body("payment.captured", gateway_order_id)
        payment_service.handle_payment_webhook(session, gateway, raw_body=body, signature=gateway.sign_webhook(body))

        result = payment_service.verify_payment(
            session, gateway, order_id=order.id, gateway_order_id=gateway_order_id,
            payment_id="pay_1", signature=gateway.sign(gateway_order_id, "pay_1"),
        )

        assert result["message"] == "Payment already processed"
        assert [h.to_status for h in order_service.get_history(session, order.id)] == ["pending", "confirmed"]

    def test_unknown_order_is_acknowledged(self, session, gateway):
        body = _webhook_body("payment.captured", "order_rzp_missing")
        result = payment_service.handle_payment_webhook(
            session, gateway, raw_body=body, signature=gateway.sign_webhook(body)
        )
        assert result == {"success": True, "message": "Order not found"}

    def test_capture_after_expiry_is_flagged_for_refund(self, session, prepaid, gateway):
        order, gateway_order_id = prepaid
        order_service.cancel_order(session, order_id=order.id, actor="system")

        body = _webhook_body("payment.captured", gateway_order_id)
        payment_service.handle_payment_webhook(session, gateway, raw_body=body, signature=gateway.sign_webhook(body))

        order = order_service.get_order(session, order.id)
        assert order.status == "cancelled"
        assert order.payment_status == "completed"
        assert "refund required" in order.payment_error
