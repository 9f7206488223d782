"""
Fulfillment reconciliation: shipment webhooks and tracking polls.

Couriers report free-form status labels. They are mapped onto order
statuses, and when a report skips states (a parcel reported delivered
while we still think it is packed) the order is walked through the
intermediate fulfillment states so history stays complete. Reports that
cannot be applied are logged and acknowledged, never retried forever.
"""

import logging
from collections import deque
from datetime import datetime
from typing import List, Optional

from sqlmodel import Session, select

from resell_core.constants.order_status import ALLOWED_TRANSITIONS, OrderStatus
from resell_core.constants.return_status import ReturnStatus
from resell_core.exceptions import InvalidTransition
from resell_core.models.order import Order
from resell_core.models.return_request import ReturnRequest
from resell_core.models.tracking_event import TrackingEvent
from resell_core.notifications import notify
from resell_core.services import return_service
from resell_core.services.concurrency import run_with_retry
from resell_core.services.order_service import status_event
from resell_core.services.order_state_machine import transition
from resell_core.utils.clock import utcnow, to_naive_utc

logger = logging.getLogger(__name__)

SHIPMENT_STATUS_MAP = {
    "PICKUP SCHEDULED": OrderStatus.PROCESSING,
    "PICKUP GENERATED": OrderStatus.PROCESSING,
    "PACKED": OrderStatus.PACKED,
    "PICKED UP": OrderStatus.SHIPPED,
    "SHIPPED": OrderStatus.SHIPPED,
    "IN TRANSIT": OrderStatus.SHIPPED,
    "OUT FOR DELIVERY": OrderStatus.OUT_FOR_DELIVERY,
    "DELIVERED": OrderStatus.DELIVERED,
    "UNDELIVERED": OrderStatus.DELIVERY_FAILED,
    "NDR": OrderStatus.DELIVERY_FAILED,
    "DELIVERY FAILED": OrderStatus.DELIVERY_FAILED,
    "RTO": OrderStatus.CANCELLED,
    "RTO INITIATED": OrderStatus.CANCELLED,
    "CANCELED": OrderStatus.CANCELLED,
    "CANCELLED": OrderStatus.CANCELLED,
    "RETURNED": OrderStatus.RETURNED,
}

RETURN_SHIPMENT_STATUS_MAP = {
    "PICKED UP": ReturnStatus.PICKED_UP,
    "IN TRANSIT": ReturnStatus.PICKED_UP,
    "OUT FOR DELIVERY": ReturnStatus.PICKED_UP,
    "DELIVERED": ReturnStatus.RECEIVED,
}

# states a courier report may carry an order through on its way to the target
ROUTABLE_STATUSES = {
    OrderStatus.PROCESSING,
    OrderStatus.PACKED,
    OrderStatus.SHIPPED,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERY_FAILED,
}

TRACKABLE_ORDER_STATUSES = [
    OrderStatus.PROCESSING,
    OrderStatus.PACKED,
    OrderStatus.SHIPPED,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERY_FAILED,
]

TRACKABLE_RETURN_STATUSES = [ReturnStatus.PICKUP_SCHEDULED, ReturnStatus.PICKED_UP]


def normalize_status(raw: Optional[str]) -> str:
    return " ".join((raw or "").replace("_", " ").upper().split())


def route(current: str, target: str) -> Optional[List[str]]:
    """Shortest list of statuses leading from ``current`` to ``target``, or None."""
    if current == target:
        return []
    queue = deque([(current, [])])
    seen = {current}
    while queue:
        status, path = queue.popleft()
        for nxt in ALLOWED_TRANSITIONS.get(status, []):
            if nxt == target:
                return path + [nxt]
            if nxt in ROUTABLE_STATUSES and nxt not in seen:
                seen.add(nxt)
                queue.append((nxt, path + [nxt]))
    return None


def find_order_for_shipment(session: Session, awb: Optional[str], order_no: Optional[str]) -> Optional[Order]:
    if awb:
        order = session.exec(select(Order).where(Order.tracking_number == awb)).first()
        if order:
            return order
    if order_no:
        return session.exec(select(Order).where(Order.order_no == order_no)).first()
    return None


def record_tracking_event(
    session: Session,
    order: Order,
    *,
    status: str,
    description: Optional[str] = None,
    location: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
    source: str = "webhook",
    meta: Optional[dict] = None,
) -> Optional[TrackingEvent]:
    """Append to the tracking log unless the same scan was already recorded."""
    existing = session.exec(
        select(TrackingEvent)
        .where(TrackingEvent.order_id == order.id)
        .where(TrackingEvent.status == status)
        .where(TrackingEvent.occurred_at == occurred_at)
    ).first()
    if existing:
        return None
    event = TrackingEvent(
        order_id=order.id,
        status=status,
        description=description,
        location=location,
        occurred_at=occurred_at,
        source=source,
        meta=meta,
    )
    session.add(event)
    return event


def _advance(session: Session, order: Order, target: str, actor: str, at: Optional[datetime]) -> bool:
    path = route(order.status, target)
    if path is None:
        logger.warning(f"Order {order.order_no}: no route from {order.status} to {target}, update ignored")
        return False
    for step in path:
        transition(session, order, step, actor=actor, reason="Courier status update", at=at)
    return bool(path)


def _apply_return_update(session: Session, ret: ReturnRequest, label: str, at: Optional[datetime],
                         notifier=None) -> dict:
    target = RETURN_SHIPMENT_STATUS_MAP.get(label)
    if target is None:
        logger.info(f"Return {ret.return_no}: courier status '{label}' has no return mapping")
        return {"success": True, "message": "Status not mapped", "return_no": ret.return_no}
    late_scan = target == ReturnStatus.PICKED_UP and ret.status in (ReturnStatus.RECEIVED, ReturnStatus.REFUNDED)
    if ret.status == target or late_scan:
        return {"success": True, "message": "Already applied", "return_no": ret.return_no}
    try:
        return_service.update_return_status(session, return_id=ret.id, status=target,
                                            actor="courier", at=at, notifier=notifier)
    except InvalidTransition as exc:
        session.rollback()
        logger.warning(f"Return {ret.return_no}: {exc.message}; update ignored")
        return {"success": True, "message": "Transition not applicable", "return_no": ret.return_no}
    return {"success": True, "message": f"Return moved to {target}", "return_no": ret.return_no}


def apply_shipment_update(
    session: Session,
    *,
    awb: Optional[str],
    status: str,
    order_no: Optional[str] = None,
    location: Optional[str] = None,
    description: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
    source: str = "webhook",
    notifier=None,
) -> dict:
    """
    Apply one courier status report, from a webhook or a tracking poll.

    Safe to replay: a report matching the current status adds no history
    and changes no status.
    """
    label = normalize_status(status)
    at = to_naive_utc(occurred_at) if occurred_at else None

    order = find_order_for_shipment(session, awb, order_no)
    if order is None:
        ret = return_service.find_by_tracking_number(session, awb) if awb else None
        if ret is None and order_no:
            ret = return_service.find_by_tracking_number(session, order_no)
        if ret is not None:
            return _apply_return_update(session, ret, label, at, notifier)
        logger.warning(f"Shipment update for unknown AWB {awb} / order {order_no} ({label})")
        return {"success": True, "message": "Shipment not found"}

    target = SHIPMENT_STATUS_MAP.get(label)
    order_id = order.id

    def _apply():
        fresh = session.get(Order, order_id)
        before = fresh.status
        record_tracking_event(
            session, fresh,
            status=label, description=description, location=location,
            occurred_at=at, source=source,
            meta={"awb": awb} if awb else None,
        )
        fresh.last_tracked_at = utcnow()
        session.add(fresh)
        changed = False
        if target is None:
            logger.info(f"Order {fresh.order_no}: courier status '{label}' recorded without status change")
        elif fresh.status != target:
            changed = _advance(session, fresh, target, "courier", at)
        session.commit()
        session.refresh(fresh)
        return fresh, before, changed

    order, before, changed = run_with_retry(session, _apply)
    if changed:
        logger.info(f"Order {order.order_no}: {before} -> {order.status} from courier '{label}'")
        notify(notifier, status_event(order))
    return {"success": True, "order_no": order.order_no, "status": order.status, "changed": changed}


# -------------------------
# TRACKING POLLS
# -------------------------

def refresh_order_tracking(session: Session, provider, order: Order, notifier=None) -> dict:
    """Pull the provider's tracking for one order and apply anything new."""
    if not order.shipment_id:
        return {"success": False, "message": "Order has no shipment", "order_no": order.order_no}

    tracking = provider.fetch_tracking(order.shipment_id)
    order_id = order.id
    for scan in reversed(tracking.get("events") or []):
        record_tracking_event(
            session, order,
            status=normalize_status(scan.get("status")),
            description=scan.get("description"),
            location=scan.get("location"),
            occurred_at=to_naive_utc(scan["timestamp"]) if scan.get("timestamp") else None,
            source="poll",
        )
    session.commit()

    status = tracking.get("status")
    if not status:
        return {"success": True, "message": "No tracking status yet", "order_no": order.order_no}

    occurred_at = tracking.get("delivered_at")
    if occurred_at is None and tracking.get("events"):
        occurred_at = tracking["events"][0].get("timestamp")

    refreshed = session.get(Order, order_id)
    return apply_shipment_update(
        session,
        awb=refreshed.tracking_number,
        order_no=refreshed.order_no,
        status=status,
        occurred_at=occurred_at,
        description="Tracking poll",
        source="poll",
        notifier=notifier,
    )


def refresh_return_tracking(session: Session, provider, ret: ReturnRequest, notifier=None) -> dict:
    if not ret.shipment_id:
        return {"success": False, "message": "Return has no shipment", "return_no": ret.return_no}
    tracking = provider.fetch_tracking(ret.shipment_id)
    label = normalize_status(tracking.get("status"))
    if not label:
        return {"success": True, "message": "No tracking status yet", "return_no": ret.return_no}
    return _apply_return_update(session, ret, label, tracking.get("delivered_at"), notifier)


def find_trackable_orders(session: Session, limit: int = 200) -> List[Order]:
    return list(session.exec(
        select(Order)
        .where(Order.status.in_(TRACKABLE_ORDER_STATUSES))
        .where(Order.shipment_id != None)  # noqa: E711
        .order_by(Order.last_tracked_at, Order.id)
        .limit(limit)
    ).all())


def find_trackable_returns(session: Session, limit: int = 200) -> List[ReturnRequest]:
    return list(session.exec(
        select(ReturnRequest)
        .where(ReturnRequest.status.in_(TRACKABLE_RETURN_STATUSES))
        .where(ReturnRequest.shipment_id != None)  # noqa: E711
        .order_by(ReturnRequest.id)
        .limit(limit)
    ).all())
