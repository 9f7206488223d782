"""
Return requests and refunds.

A return has its own state machine (RETURN_TRANSITIONS) and mirrors each
step onto its order (return_initiated, return_approved, ...). Creation is
gated on the order being delivered, on the stored return window and on
there being no other active return for the order.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlmodel import Session, select

from resell_core.constants.order_status import EarningStatus, OrderStatus, PaymentMethod, PaymentStatus
from resell_core.constants.return_status import (
    ORDER_STATUS_FOR_RETURN,
    RETURN_REASONS,
    RETURN_TRANSITIONS,
    RefundMethod,
    RefundStatus,
    ReturnStatus,
)
from resell_core.constants.wallet import TransactionSource
from resell_core.exceptions import (
    InvalidTransition,
    NotFound,
    ReturnWindowExpired,
    ValidationError,
)
from resell_core.models.order import Order
from resell_core.models.order_item import OrderItem
from resell_core.models.return_request import ReturnItem, ReturnRequest
from resell_core.notifications import EventType, NotificationEvent, notify
from resell_core.services import wallet_service
from resell_core.services.concurrency import bump_version, run_with_retry
from resell_core.services.earning_service import has_active_return, reverse_earning
from resell_core.services.inventory_service import release_stock
from resell_core.services.order_service import get_order
from resell_core.services.order_state_machine import can_transition, transition
from resell_core.services.sequence_service import next_return_no
from resell_core.utils.clock import utcnow
from resell_core.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)

# order statuses a return walks through, in order
ORDER_RETURN_PATH = [
    OrderStatus.RETURN_INITIATED,
    OrderStatus.RETURN_APPROVED,
    OrderStatus.RETURN_PICKED_UP,
    OrderStatus.RETURN_RECEIVED,
    OrderStatus.RETURNED,
]

RETURN_TIMESTAMP_FIELDS = {
    ReturnStatus.APPROVED: "approved_at",
    ReturnStatus.PICKUP_SCHEDULED: "pickup_scheduled_at",
    ReturnStatus.PICKED_UP: "picked_up_at",
    ReturnStatus.RECEIVED: "received_at",
    ReturnStatus.REFUNDED: "refunded_at",
    ReturnStatus.CANCELLED: "cancelled_at",
}

RETURN_EVENTS = {
    ReturnStatus.APPROVED: (EventType.RETURN_APPROVED, "Return Approved"),
    ReturnStatus.REJECTED: (EventType.RETURN_REJECTED, "Return Rejected"),
    ReturnStatus.CANCELLED: (EventType.RETURN_CANCELLED, "Return Cancelled"),
    ReturnStatus.PICKUP_SCHEDULED: (EventType.RETURN_PICKUP_SCHEDULED, "Return Pickup Scheduled"),
    ReturnStatus.PICKED_UP: (EventType.RETURN_PICKED_UP, "Return Picked Up"),
    ReturnStatus.RECEIVED: (EventType.RETURN_RECEIVED, "Return Received"),
    ReturnStatus.REFUNDED: (EventType.REFUND_PROCESSED, "Refund Processed"),
}


def _event(ret: ReturnRequest) -> NotificationEvent:
    event_type, title = RETURN_EVENTS[ret.status]
    return NotificationEvent(
        user_id=ret.user_id,
        type=event_type,
        title=title,
        message=f"Your return {ret.return_no} is now {ret.status.replace('_', ' ')}.",
        data={"return_no": ret.return_no, "status": ret.status, "refund_amount": str(ret.refund_amount)},
        reference_id=str(ret.id),
        reference_model="ReturnRequest",
    )


def get_return(session: Session, return_id: int, user_id: Optional[int] = None) -> ReturnRequest:
    ret = session.get(ReturnRequest, return_id)
    if not ret or (user_id is not None and ret.user_id != user_id):
        raise NotFound("ReturnRequest", return_id)
    return ret


def find_by_tracking_number(session: Session, awb: str) -> Optional[ReturnRequest]:
    return session.exec(
        select(ReturnRequest).where(
            (ReturnRequest.tracking_number == awb) | (ReturnRequest.return_no == awb)
        )
    ).first()


def list_returns(session: Session, *, user_id: Optional[int] = None, status: Optional[str] = None,
                 limit: int = 50, offset: int = 0) -> List[ReturnRequest]:
    query = select(ReturnRequest)
    if user_id is not None:
        query = query.where(ReturnRequest.user_id == user_id)
    if status:
        query = query.where(ReturnRequest.status == status)
    return list(session.exec(query.order_by(ReturnRequest.id.desc()).offset(offset).limit(limit)).all())


def _mirror_order(session: Session, order: Order, target: str, actor: str, at: Optional[datetime] = None):
    """Advance the order to ``target``, stepping through skipped return states."""
    if order.status == target:
        return
    if (
        not can_transition(order.status, target)
        and order.status in ORDER_RETURN_PATH
        and target in ORDER_RETURN_PATH
    ):
        start = ORDER_RETURN_PATH.index(order.status)
        end = ORDER_RETURN_PATH.index(target)
        for step in ORDER_RETURN_PATH[start + 1:end]:
            transition(session, order, step, actor=actor, at=at)
    transition(session, order, target, actor=actor, at=at)


def _move(session: Session, ret: ReturnRequest, order: Order, target: str, actor: str,
          at: Optional[datetime] = None):
    if target not in RETURN_TRANSITIONS.get(ret.status, []):
        raise InvalidTransition("return", ret.status, target)

    bump_version(session, ret)
    now = at or utcnow()
    ret.status = target
    ret.updated_at = utcnow()
    field = RETURN_TIMESTAMP_FIELDS.get(target)
    if field and getattr(ret, field) is None:
        setattr(ret, field, now)
    session.add(ret)

    order_target = ORDER_STATUS_FOR_RETURN.get(target)
    if target == ReturnStatus.CANCELLED:
        _mirror_order(session, order, OrderStatus.RETURN_CANCELLED, actor, now)
        # back to delivered; delivered_at and the return window stay as they were
        transition(session, order, OrderStatus.DELIVERED, actor=actor, reason=f"Return {ret.return_no} cancelled")
    elif order_target:
        _mirror_order(session, order, order_target, actor, now)

    logger.info(f"Return {ret.return_no} -> {target} by {actor}")


# -------------------------
# CREATE
# -------------------------

def create_return(
    session: Session,
    *,
    order_id: int,
    user_id: int,
    items: List[dict],
    reason: str,
    description: Optional[str] = None,
    now: Optional[datetime] = None,
    notifier=None,
) -> ReturnRequest:
    """
    Open a return for some or all items of a delivered order.

    ``items`` are {order_item_id, quantity, reason?}. The window check
    compares ``now`` against the ``return_window_end`` stored at delivery.
    """
    now = now or utcnow()
    order = get_order(session, order_id, user_id)

    if reason not in RETURN_REASONS:
        raise ValidationError(f"Unknown return reason '{reason}'", field="reason",
                              allowed=sorted(RETURN_REASONS))
    if order.status != OrderStatus.DELIVERED:
        raise ValidationError(
            f"Only delivered orders can be returned (order is {order.status})",
            field="order_status",
            current=order.status,
        )
    if order.return_window_end is None:
        raise ValidationError("Order has no return window", field="return_window_end")
    if now > order.return_window_end:
        overdue = now - order.return_window_end
        days_expired = max(1, overdue.days + (1 if overdue.seconds or overdue.microseconds else 0))
        raise ReturnWindowExpired(order.id, days_expired)
    if has_active_return(session, order.id):
        raise ValidationError("An active return already exists for this order", field="order_id")

    if not items:
        raise ValidationError("Select at least one item to return", field="items")

    order_items = {item.id: item for item in order.items}
    seen = set()
    return_items = []
    refund_amount = ZERO
    for line in items:
        item: Optional[OrderItem] = order_items.get(line.get("order_item_id"))
        if item is None:
            raise ValidationError("Item does not belong to this order", field="order_item_id",
                                  order_item_id=line.get("order_item_id"))
        if item.id in seen:
            raise ValidationError("Item listed twice", field="order_item_id", order_item_id=item.id)
        seen.add(item.id)

        quantity = int(line.get("quantity") or 0)
        if quantity < 1 or quantity > item.quantity:
            raise ValidationError(
                f"Return quantity must be between 1 and {item.quantity}",
                field="quantity",
                order_item_id=item.id,
            )
        refund_amount += to_money(item.final_price) * quantity
        return_items.append(ReturnItem(
            order_item_id=item.id,
            product_id=item.product_id,
            quantity=quantity,
            unit_price=item.final_price,
            reason=line.get("reason") or reason,
        ))

    refund_method = (
        RefundMethod.WALLET
        if order.payment_method in (PaymentMethod.COD, PaymentMethod.WALLET)
        else RefundMethod.ORIGINAL_PAYMENT
    )

    try:
        ret = ReturnRequest(
            return_no=next_return_no(session, now),
            order_id=order.id,
            user_id=user_id,
            reason=reason,
            description=description,
            refund_amount=to_money(refund_amount),
            refund_method=refund_method,
            refund_status=RefundStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        ret.items = return_items
        session.add(ret)
        session.flush()

        transition(session, order, OrderStatus.RETURN_INITIATED, actor=f"user:{user_id}",
                   reason=f"Return {ret.return_no} requested", at=now)
        session.commit()
    except Exception:
        session.rollback()
        raise

    session.refresh(ret)
    logger.info(f"Return {ret.return_no} created for order {order.order_no}, refund {ret.refund_amount}")

    notify(notifier, NotificationEvent(
        user_id=user_id,
        type=EventType.RETURN_REQUESTED,
        title="Return Requested",
        message=f"Your return request {ret.return_no} for order {order.order_no} was received.",
        data={"return_no": ret.return_no, "order_no": order.order_no, "refund_amount": str(ret.refund_amount)},
        reference_id=str(ret.id),
        reference_model="ReturnRequest",
    ))
    return ret


# -------------------------
# REVIEW / CUSTOMER ACTIONS
# -------------------------

def _apply(session: Session, return_id: int, target: str, actor: str, notifier=None,
           user_id: Optional[int] = None, mutate=None, at: Optional[datetime] = None) -> ReturnRequest:
    def _work():
        ret = get_return(session, return_id, user_id)
        if ret.status == target:
            return ret, False
        order = session.get(Order, ret.order_id)
        if mutate:
            mutate(ret)
        _move(session, ret, order, target, actor, at)
        session.commit()
        session.refresh(ret)
        return ret, True

    ret, changed = run_with_retry(session, _work)
    if changed:
        notify(notifier, _event(ret))
    return ret


def approve_return(session: Session, *, return_id: int, admin_id: int, notifier=None) -> ReturnRequest:
    def _review(ret):
        ret.reviewed_by = admin_id
        ret.reviewed_at = utcnow()

    return _apply(session, return_id, ReturnStatus.APPROVED, f"admin:{admin_id}", notifier, mutate=_review)


def reject_return(session: Session, *, return_id: int, admin_id: int, reason: str, notifier=None) -> ReturnRequest:
    if not reason:
        raise ValidationError("Rejection reason is required", field="reason")

    def _review(ret):
        ret.reviewed_by = admin_id
        ret.reviewed_at = utcnow()
        ret.rejection_reason = reason

    return _apply(session, return_id, ReturnStatus.REJECTED, f"admin:{admin_id}", notifier, mutate=_review)


def cancel_return(session: Session, *, return_id: int, user_id: int, notifier=None) -> ReturnRequest:
    return _apply(session, return_id, ReturnStatus.CANCELLED, f"user:{user_id}", notifier, user_id=user_id)


def update_return_status(session: Session, *, return_id: int, status: str, actor: str,
                         at: Optional[datetime] = None, notifier=None) -> ReturnRequest:
    """Manual or tracking-driven pickup/receipt updates."""
    if status not in (ReturnStatus.PICKED_UP, ReturnStatus.RECEIVED):
        raise ValidationError("Only picked_up and received can be set directly", field="status")

    ret = get_return(session, return_id)
    if status == ReturnStatus.RECEIVED and ret.status in (ReturnStatus.APPROVED, ReturnStatus.PICKUP_SCHEDULED):
        # parcel arrived without a pickup scan
        ret = _apply(session, return_id, ReturnStatus.PICKED_UP, actor, notifier, at=at)
    return _apply(session, return_id, status, actor, notifier, at=at)


def schedule_return_pickup(session: Session, provider, *, return_id: int, admin_id: int,
                           notifier=None) -> ReturnRequest:
    """
    Book the reverse shipment. If the provider fails the return stays
    ``approved`` and the error propagates.
    """
    ret = get_return(session, return_id)
    if ret.status != ReturnStatus.APPROVED:
        raise InvalidTransition("return", ret.status, ReturnStatus.PICKUP_SCHEDULED)
    order = session.get(Order, ret.order_id)

    booked = provider.create_return_shipment(ret, order)

    def _record(r):
        r.shipment_id = booked["shipment_id"]
        r.tracking_number = booked.get("tracking_number")
        r.courier_name = booked.get("courier_name")

    return _apply(session, return_id, ReturnStatus.PICKUP_SCHEDULED, f"admin:{admin_id}", notifier,
                  mutate=_record)


# -------------------------
# REFUND
# -------------------------

def process_refund(
    session: Session,
    *,
    return_id: int,
    admin_id: int,
    refund_reference: Optional[str] = None,
    notifier=None,
) -> ReturnRequest:
    """
    Refund a received return.

    Credits the customer's wallet (COD / wallet orders) or records the
    refund against the original payment, gives the returned units back to
    stock, reverses the reseller earning and moves the order to returned.
    All of it commits together.
    """
    actor = f"admin:{admin_id}"

    def _refund():
        ret = get_return(session, return_id)
        if ret.status == ReturnStatus.REFUNDED or ret.refund_status == RefundStatus.COMPLETED:
            raise InvalidTransition("return", ret.status, ReturnStatus.REFUNDED, "refund already processed")
        if ret.status != ReturnStatus.RECEIVED:
            raise InvalidTransition("return", ret.status, ReturnStatus.REFUNDED,
                                    "returned items must be received first")

        order = session.get(Order, ret.order_id)
        amount = to_money(ret.refund_amount)

        if ret.refund_method == RefundMethod.WALLET:
            txn = wallet_service.credit(
                session,
                user_id=ret.user_id,
                amount=amount,
                source=TransactionSource.REFUND,
                description=f"Refund for return {ret.return_no}",
                reference_id=str(ret.id),
                reference_model="ReturnRequest",
            )
            ret.refund_reference = str(txn.id)
        else:
            if not refund_reference:
                raise ValidationError("Refund reference is required for original-payment refunds",
                                      field="refund_reference")
            ret.refund_reference = refund_reference
            order.payment_status = PaymentStatus.REFUNDED

        release_stock(session, [(item.product_id, item.quantity) for item in ret.items])
        order.stock_restored = True

        earning_status = order.reseller_earning_status
        reverse_earning(session, order, f"return {ret.return_no}")

        ret.refund_status = RefundStatus.COMPLETED
        _move(session, ret, order, ReturnStatus.REFUNDED, actor)
        session.commit()
        session.refresh(ret)
        return ret, order, earning_status

    ret, order, earning_status = run_with_retry(session, _refund)
    logger.info(f"Refund of {ret.refund_amount} processed for return {ret.return_no} ({ret.refund_method})")

    notify(notifier, _event(ret))
    if earning_status == EarningStatus.CREDITED:
        notify(notifier, NotificationEvent(
            user_id=order.reseller_id,
            type=EventType.EARNING_REVERSED,
            title="Earning Reversed",
            message=f"Your earning of {order.reseller_earning} for order {order.order_no} was reversed after a return.",
            data={"order_no": order.order_no, "amount": str(order.reseller_earning)},
            reference_id=str(order.id),
            reference_model="Order",
        ))
        wallet = wallet_service.get_or_create_wallet(session, order.reseller_id)
        if wallet.is_frozen and order.order_no in (wallet.freeze_reason or ""):
            notify(notifier, wallet_service.frozen_event(wallet))
    return ret
