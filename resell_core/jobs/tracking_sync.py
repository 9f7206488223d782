import logging

from sqlmodel import Session

from resell_core.models.order import Order
from resell_core.models.return_request import ReturnRequest
from resell_core.services import fulfillment_service

logger = logging.getLogger(__name__)


def sync_tracking(session: Session, provider, notifier=None) -> dict:
    """Poll the shipping provider for every in-flight order and return parcel."""
    order_ids = [o.id for o in fulfillment_service.find_trackable_orders(session)]
    return_ids = [r.id for r in fulfillment_service.find_trackable_returns(session)]
    stats = {"orders": len(order_ids), "returns": len(return_ids), "changed": 0, "failed": 0}

    for order_id in order_ids:
        try:
            order = session.get(Order, order_id)
            result = fulfillment_service.refresh_order_tracking(session, provider, order, notifier)
            if result.get("changed"):
                stats["changed"] += 1
        except Exception:
            session.rollback()
            stats["failed"] += 1
            logger.exception(f"Tracking sync failed for order {order_id}")

    for return_id in return_ids:
        try:
            ret = session.get(ReturnRequest, return_id)
            fulfillment_service.refresh_return_tracking(session, provider, ret, notifier)
        except Exception:
            session.rollback()
            stats["failed"] += 1
            logger.exception(f"Tracking sync failed for return {return_id}")

    logger.info(f"Tracking sync: {stats}")
    return stats
