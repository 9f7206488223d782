import logging
from datetime import datetime
from typing import Optional

from sqlmodel import Session

from resell_core.constants.order_status import EarningStatus
from resell_core.models.order import Order
from resell_core.notifications import EventType, NotificationEvent, notify
from resell_core.services import earning_service
from resell_core.utils.clock import utcnow

logger = logging.getLogger(__name__)


def mature_earnings(session: Session, now: Optional[datetime] = None, notifier=None) -> dict:
    """
    Credit reseller earnings whose return window closed without a return.

    Each order is settled and committed on its own; one failure is logged
    and the sweep moves on.
    """
    now = now or utcnow()
    order_ids = [order.id for order in earning_service.find_maturable_orders(session, now)]
    stats = {"checked": len(order_ids), "settled": 0, "credited": 0, "failed": 0}

    for order_id in order_ids:
        try:
            order = session.get(Order, order_id)
            was_pending = order.reseller_earning_status == EarningStatus.PENDING
            if not earning_service.mature_order(session, order, now):
                session.rollback()
                continue
            session.commit()
            session.refresh(order)
        except Exception:
            session.rollback()
            stats["failed"] += 1
            logger.exception(f"Earning maturation failed for order {order_id}")
            continue

        stats["settled"] += 1
        if was_pending and order.reseller_earning_status == EarningStatus.CREDITED:
            stats["credited"] += 1
            notify(notifier, NotificationEvent(
                user_id=order.reseller_id,
                type=EventType.EARNING_CREDITED,
                title="Earning Credited",
                message=f"{order.reseller_earning} from order {order.order_no} was added to your wallet.",
                data={"order_no": order.order_no, "amount": str(order.reseller_earning)},
                reference_id=str(order.id),
                reference_model="Order",
            ))

    logger.info(f"Earning maturation: {stats}")
    return stats
