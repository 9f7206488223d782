"""
The only code path that writes ``Order.status``.

``transition`` validates the move against ALLOWED_TRANSITIONS, claims the
order with a version compare-and-swap, appends a history row, stamps the
status timestamp and applies the side effects tied to entering a status
(stock restore, return window, COD settlement, earning cancellation).
Nothing is committed here; callers commit once their unit of work is done.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlmodel import Session

from resell_core.constants.order_status import (
    ALLOWED_TRANSITIONS,
    STATUS_TIMESTAMP_FIELDS,
    STOCK_RESTORING_STATUSES,
    EarningStatus,
    OrderStatus,
    PaymentStatus,
)
from resell_core.exceptions import InvalidTransition
from resell_core.models.order import Order
from resell_core.models.order_status_history import OrderStatusHistory
from resell_core.services.concurrency import bump_version
from resell_core.services.inventory_service import restore_order_stock
from resell_core.utils.clock import utcnow, to_naive_utc

logger = logging.getLogger(__name__)


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, [])


def transition(
    session: Session,
    order: Order,
    target: str,
    *,
    actor: str = "system",
    reason: Optional[str] = None,
    at: Optional[datetime] = None,
) -> bool:
    """
    Move ``order`` to ``target``.

    Returns False when the order already is in ``target`` (a replayed
    webhook or a double click); nothing is written in that case.
    ``at`` is the moment the change actually happened, e.g. the carrier's
    delivery time, and defaults to now.
    """
    current = order.status
    if current == target:
        return False

    if not can_transition(current, target):
        raise InvalidTransition("order", current, target)

    bump_version(session, order)

    at = to_naive_utc(at) if at else utcnow()

    order._write_status(target)
    order.updated_at = utcnow()
    session.add(OrderStatusHistory(
        order_id=order.id,
        from_status=current,
        to_status=target,
        actor=actor,
        reason=reason,
        created_at=at,
    ))

    field = STATUS_TIMESTAMP_FIELDS.get(target)
    if field and getattr(order, field) is None:
        setattr(order, field, at)

    if target == OrderStatus.DELIVERED:
        _on_delivered(order)

    if target in STOCK_RESTORING_STATUSES:
        restore_order_stock(session, order)

    if target in (OrderStatus.CANCELLED, OrderStatus.FAILED):
        if order.reseller_earning_status == EarningStatus.PENDING:
            order.reseller_earning_status = EarningStatus.CANCELLED

    if target == OrderStatus.CANCELLED:
        order.cancel_reason = order.cancel_reason or reason
        order.cancelled_by = order.cancelled_by or actor
        if not order.is_cod and order.payment_status == PaymentStatus.COMPLETED:
            # money came in for an order that will not ship; refunded by admin
            order.payment_status = PaymentStatus.REFUNDED
            logger.warning(f"Order {order.order_no} cancelled after payment, marked for refund")

    session.add(order)
    logger.info(f"Order {order.order_no}: {current} -> {target} by {actor}")
    return True


def _on_delivered(order: Order):
    # delivered_at was stamped above unless an earlier delivery already set it
    if order.return_window_end is None:
        order.return_window_end = order.delivered_at + timedelta(days=order.return_window_days)

    if order.is_cod and order.payment_status != PaymentStatus.COMPLETED:
        order.payment_status = PaymentStatus.COMPLETED
        order.paid_at = order.delivered_at
