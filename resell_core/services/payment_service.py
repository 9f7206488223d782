"""
Payment reconciliation.

Two entry points can complete a prepaid order: the browser calling
``verify_payment`` after checkout, and the gateway's ``payment.captured``
webhook. Both go through ``_complete_payment`` so whichever arrives second
finds the payment completed and does nothing.
"""

import json
import logging
from typing import Optional

from sqlmodel import Session, select

from resell_core.config import settings
from resell_core.constants.order_status import OrderStatus, PaymentMethod, PaymentStatus
from resell_core.exceptions import (
    InvalidTransition,
    PaymentNotCaptured,
    SignatureMismatch,
    ValidationError,
)
from resell_core.models.order import Order
from resell_core.notifications import EventType, NotificationEvent, notify
from resell_core.services.concurrency import bump_version, run_with_retry
from resell_core.services.order_service import get_order
from resell_core.services.order_state_machine import transition
from resell_core.utils.clock import utcnow
from resell_core.utils.money import to_paise

logger = logging.getLogger(__name__)

CAPTURED_STATES = {"captured", "authorized"}


def create_payment_order(session: Session, gateway, *, order_id: int, user_id: Optional[int] = None) -> dict:
    """Create (or reuse) the gateway order the checkout widget pays against."""
    order = get_order(session, order_id, user_id)
    if order.payment_method == PaymentMethod.COD:
        raise ValidationError("COD orders are paid on delivery", field="payment_method")
    if order.payment_status == PaymentStatus.COMPLETED:
        raise ValidationError("Order is already paid", field="payment_status")
    if order.status != OrderStatus.PENDING:
        raise InvalidTransition("order", order.status, OrderStatus.CONFIRMED, "order is not awaiting payment")

    if not order.gateway_order_id:
        gateway_order = gateway.create_payable_order(order)
        bump_version(session, order)
        # 🔐 Store gateway order id
        order.gateway_order_id = gateway_order["id"]
        order.updated_at = utcnow()
        session.add(order)
        session.commit()
        session.refresh(order)

    return {
        "order_id": order.id,
        "order_no": order.order_no,
        "razorpay_order_id": order.gateway_order_id,
        "razorpay_key": settings.RAZORPAY_KEY_ID,
        "amount": str(order.total),
        "currency": settings.currency,
    }


def _find_by_gateway_order(session: Session, gateway_order_id: str) -> Optional[Order]:
    return session.exec(select(Order).where(Order.gateway_order_id == gateway_order_id)).first()


def _complete_payment(
    session: Session,
    order: Order,
    *,
    payment_id: str,
    signature: Optional[str],
    actor: str,
) -> bool:
    """
    Mark ``order`` paid and confirm it. Returns False if it already was.

    A capture that lands after the order was cancelled or expired is still
    recorded (the money did move) and flagged for a manual refund.
    """
    if order.payment_status == PaymentStatus.COMPLETED:
        return False

    bump_version(session, order)
    now = utcnow()
    order.payment_status = PaymentStatus.COMPLETED
    order.gateway_payment_id = payment_id
    order.gateway_signature = signature or order.gateway_signature
    order.paid_at = now
    order.updated_at = now

    if order.status == OrderStatus.PENDING:
        order.payment_error = None
        transition(session, order, OrderStatus.CONFIRMED, actor=actor, reason=f"Payment {payment_id} captured", at=now)
    else:
        order.payment_error = f"Payment {payment_id} captured while order was {order.status}; refund required"
        logger.error(f"Late capture for order {order.order_no} in status {order.status}, refund required")

    session.add(order)
    return True


def _check_payment_matches(order: Order, payment: dict):
    """The fetched payment must be for this gateway order and for the full total."""
    paid_for = payment.get("order_id")
    if paid_for is not None and paid_for != order.gateway_order_id:
        logger.error(f"SECURITY: payment {payment.get('id')} belongs to {paid_for}, not order {order.order_no}")
        raise ValidationError("Payment does not belong to this order", field="razorpay_order_id")

    amount = payment.get("amount")
    if amount is not None and int(amount) != to_paise(order.total):
        logger.error(f"SECURITY: payment {payment.get('id')} amount {amount} does not match order {order.order_no}")
        raise ValidationError("Payment amount does not match the order total", field="amount",
                              expected=to_paise(order.total), received=int(amount))


def _payment_success_event(order: Order) -> NotificationEvent:
    return NotificationEvent(
        user_id=order.user_id,
        type=EventType.PAYMENT_SUCCESS,
        title="Payment Successful",
        message=f"Payment for order {order.order_no} was received.",
        data={"order_no": order.order_no, "amount": str(order.total)},
        reference_id=str(order.id),
        reference_model="Order",
    )


def verify_payment(
    session: Session,
    gateway,
    *,
    order_id: int,
    gateway_order_id: str,
    payment_id: str,
    signature: str,
    user_id: Optional[int] = None,
    notifier=None,
) -> dict:
    """
    Synchronous verification after the customer pays.

    1. signature check, before anything else is trusted
    2. the gateway order must be the one issued for this order
    3. optionally re-query the gateway for the real payment state
    4. complete the payment (idempotent)
    """
    order = get_order(session, order_id, user_id)

    # 1️⃣ Verify signature
    if not gateway.verify_payment_signature(gateway_order_id, payment_id, signature):
        logger.error(
            f"SECURITY: payment signature mismatch for order {order.order_no} "
            f"(gateway order {gateway_order_id}, payment {payment_id})"
        )
        if order.payment_status != PaymentStatus.COMPLETED:
            bump_version(session, order)
            order.payment_status = PaymentStatus.VERIFICATION_FAILED
            order.payment_error = "Payment signature verification failed"
            order.updated_at = utcnow()
            session.add(order)
            session.commit()
        notify(notifier, NotificationEvent(
            user_id=None,
            type=EventType.PAYMENT_VERIFICATION_FAILED,
            title="Payment Verification Failed",
            message=f"Signature mismatch on order {order.order_no}.",
            data={"order_no": order.order_no, "payment_id": payment_id},
            reference_id=str(order.id),
            reference_model="Order",
        ))
        raise SignatureMismatch(
            "Payment verification failed",
            {"order_id": order.id, "payment_id": payment_id},
        )

    # 2️⃣ Gateway order must be the one issued for this order
    if not order.gateway_order_id:
        raise ValidationError("No payment was started for this order", field="razorpay_order_id")
    if order.gateway_order_id != gateway_order_id:
        raise ValidationError("Payment does not belong to this order", field="razorpay_order_id")

    # 3️⃣ 🔒 Idempotency guard
    if order.payment_status == PaymentStatus.COMPLETED:
        return {"success": True, "message": "Payment already processed", "order_id": order.id,
                "status": order.status}

    # 4️⃣ Re-query the gateway; a timeout raises and leaves the order untouched
    if settings.verify_payment_with_gateway:
        payment = gateway.fetch_payment(payment_id)
        _check_payment_matches(order, payment)
        gateway_status = payment.get("status")
        if gateway_status not in CAPTURED_STATES:
            bump_version(session, order)
            order.payment_status = PaymentStatus.FAILED
            order.payment_error = f"Gateway reports payment status '{gateway_status}'"
            order.updated_at = utcnow()
            session.add(order)
            session.commit()
            raise PaymentNotCaptured(payment_id, gateway_status)

    # 5️⃣ Finalize payment (idempotent)
    def _finalize():
        fresh = get_order(session, order_id)
        changed = _complete_payment(session, fresh, payment_id=payment_id, signature=signature,
                                    actor="payment:verify")
        session.commit()
        session.refresh(fresh)
        return fresh, changed

    order, changed = run_with_retry(session, _finalize)
    if changed:
        logger.info(f"Payment {payment_id} verified for order {order.order_no}")
        notify(notifier, _payment_success_event(order))

    return {"success": True, "message": "Payment verified", "order_id": order.id, "status": order.status}


def report_payment_failure(
    session: Session,
    *,
    order_id: int,
    error: Optional[str] = None,
    user_id: Optional[int] = None,
) -> Order:
    """Client-side failure callback; never overrides a completed payment."""
    order = get_order(session, order_id, user_id)
    if order.payment_status == PaymentStatus.COMPLETED:
        return order
    bump_version(session, order)
    order.payment_status = PaymentStatus.FAILED
    order.payment_error = error or "Payment failed"
    order.updated_at = utcnow()
    session.add(order)
    session.commit()
    session.refresh(order)
    return order


def handle_payment_webhook(
    session: Session,
    gateway,
    *,
    raw_body: bytes,
    signature: Optional[str],
    notifier=None,
) -> dict:
    """
    Asynchronous gateway notification.

    The HMAC is computed over the exact bytes received; the body is only
    parsed after it verifies. Unknown orders are acknowledged so the
    gateway stops retrying.
    """
    if not signature or not gateway.verify_webhook_signature(raw_body, signature):
        logger.error("SECURITY: invalid payment webhook signature")
        raise SignatureMismatch("Invalid webhook signature")

    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise ValidationError("Webhook body is not valid JSON", field="body")

    event = payload.get("event")
    entity = ((payload.get("payload") or {}).get("payment") or {}).get("entity") or {}
    gateway_order_id = entity.get("order_id")
    payment_id = entity.get("id")

    if event not in ("payment.captured", "payment.failed"):
        logger.info(f"Ignoring payment webhook event {event}")
        return {"success": True, "message": "Event ignored"}

    order = _find_by_gateway_order(session, gateway_order_id) if gateway_order_id else None
    if order is None:
        logger.warning(f"Payment webhook {event} for unknown gateway order {gateway_order_id}")
        return {"success": True, "message": "Order not found"}

    if event == "payment.captured":
        def _capture():
            fresh = get_order(session, order.id)
            changed = _complete_payment(session, fresh, payment_id=payment_id, signature=None,
                                        actor="payment:webhook")
            session.commit()
            session.refresh(fresh)
            return fresh, changed

        captured, changed = run_with_retry(session, _capture)
        if changed:
            logger.info(f"Payment {payment_id} captured via webhook for order {captured.order_no}")
            notify(notifier, _payment_success_event(captured))
        return {"success": True, "message": "Payment captured"}

    # payment.failed
    def _fail():
        fresh = get_order(session, order.id)
        if fresh.payment_status == PaymentStatus.COMPLETED:
            return fresh, False
        bump_version(session, fresh)
        fresh.payment_status = PaymentStatus.FAILED
        fresh.payment_error = entity.get("error_description") or "Payment failed"
        fresh.updated_at = utcnow()
        session.add(fresh)
        session.commit()
        session.refresh(fresh)
        return fresh, True

    failed, changed = run_with_retry(session, _fail)
    if changed:
        notify(notifier, NotificationEvent(
            user_id=failed.user_id,
            type=EventType.PAYMENT_FAILED,
            title="Payment Failed",
            message=f"Payment for order {failed.order_no} failed. You can retry from your orders page.",
            data={"order_no": failed.order_no, "error": failed.payment_error},
            reference_id=str(failed.id),
            reference_model="Order",
        ))
    return {"success": True, "message": "Payment failure recorded"}

