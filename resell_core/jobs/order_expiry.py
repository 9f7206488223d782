import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlmodel import Session, select

from resell_core.config import settings
from resell_core.constants.order_status import OrderStatus, PaymentMethod, PaymentStatus
from resell_core.models.order import Order
from resell_core.notifications import notify
from resell_core.services.order_service import status_event
from resell_core.services.order_state_machine import transition
from resell_core.utils.clock import utcnow

logger = logging.getLogger(__name__)


def expire_unpaid_orders(session: Session, now: Optional[datetime] = None, notifier=None) -> dict:
    """
    Release stock held by prepaid orders that never got paid.

    Orders whose payment failed end ``failed``, orders never paid end
    ``cancelled``. Orders with a failed signature check are left for
    manual review.
    """
    now = now or utcnow()
    cutoff = now - timedelta(hours=settings.unpaid_order_expiry_hours)

    orders = session.exec(
        select(Order)
        .where(Order.status == OrderStatus.PENDING)
        .where(Order.payment_method != PaymentMethod.COD)
        .where(Order.payment_status.in_([PaymentStatus.PENDING, PaymentStatus.FAILED]))
        .where(Order.created_at < cutoff)
        .order_by(Order.id)
    ).all()
    order_ids = [order.id for order in orders]

    stats = {"checked": len(order_ids), "cancelled": 0, "failed": 0, "errors": 0}
    for order_id in order_ids:
        try:
            order = session.get(Order, order_id)
            # paid in the meantime, or already handled
            if order.status != OrderStatus.PENDING or order.payment_status == PaymentStatus.COMPLETED:
                continue
            if order.payment_status == PaymentStatus.FAILED:
                target, reason = OrderStatus.FAILED, "Payment failed"
            else:
                target, reason = OrderStatus.CANCELLED, "Payment not received in time"
            transition(session, order, target, actor="system", reason=reason, at=now)
            session.commit()
            session.refresh(order)
        except Exception:
            session.rollback()
            stats["errors"] += 1
            logger.exception(f"Unpaid order expiry failed for order {order_id}")
            continue

        stats["failed" if target == OrderStatus.FAILED else "cancelled"] += 1
        notify(notifier, status_event(order))

    logger.info(f"Unpaid order expiry: {stats}")
    return stats
