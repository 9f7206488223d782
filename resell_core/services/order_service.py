import logging
from typing import List, Optional

from sqlmodel import Session, select

from resell_core.config import settings
from resell_core.constants.order_status import (
    CANCELLABLE_STATUSES,
    OrderStatus,
    PaymentMethod,
)
from resell_core.exceptions import (
    InvalidTransition,
    NotFound,
    ShipmentAlreadyCreated,
    ValidationError,
)
from resell_core.models.cart import CartItem
from resell_core.models.order import Order
from resell_core.models.order_item import OrderItem
from resell_core.models.order_status_history import OrderStatusHistory
from resell_core.models.product import Product
from resell_core.notifications import EventType, NotificationEvent, notify
from resell_core.services.concurrency import bump_version, run_with_retry
from resell_core.services.inventory_service import reserve_stock
from resell_core.services.order_state_machine import transition
from resell_core.services.pricing import compute_totals, reseller_earning
from resell_core.services.sequence_service import next_order_no
from resell_core.utils.clock import utcnow
from resell_core.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)

REQUIRED_ADDRESS_FIELDS = ("name", "phone", "address_line1", "city", "state", "pincode")

# statuses only the return flow may set
RETURN_DRIVEN_STATUSES = {
    OrderStatus.RETURN_INITIATED,
    OrderStatus.RETURN_APPROVED,
    OrderStatus.RETURN_REJECTED,
    OrderStatus.RETURN_CANCELLED,
    OrderStatus.RETURN_PICKED_UP,
    OrderStatus.RETURN_RECEIVED,
    OrderStatus.RETURNED,
    OrderStatus.REFUNDED,
}

# set by the earning maturation sweep once the return window has closed
SWEEP_DRIVEN_STATUSES = {OrderStatus.COMPLETED}

STATUS_EVENTS = {
    OrderStatus.CONFIRMED: (EventType.ORDER_STATUS_CHANGED, "Order Confirmed"),
    OrderStatus.SHIPPED: (EventType.ORDER_SHIPPED, "Order Shipped"),
    OrderStatus.OUT_FOR_DELIVERY: (EventType.ORDER_STATUS_CHANGED, "Out for Delivery"),
    OrderStatus.DELIVERED: (EventType.ORDER_DELIVERED, "Order Delivered"),
    OrderStatus.DELIVERY_FAILED: (EventType.DELIVERY_FAILED, "Delivery Attempt Failed"),
    OrderStatus.CANCELLED: (EventType.ORDER_CANCELLED, "Order Cancelled"),
    OrderStatus.COMPLETED: (EventType.ORDER_COMPLETED, "Order Completed"),
}


def status_event(order: Order) -> NotificationEvent:
    event_type, title = STATUS_EVENTS.get(order.status, (EventType.ORDER_STATUS_CHANGED, "Order Update"))
    return NotificationEvent(
        user_id=order.user_id,
        type=event_type,
        title=title,
        message=f"Your order {order.order_no} is now {order.status.replace('_', ' ')}.",
        data={"order_no": order.order_no, "status": order.status},
        reference_id=str(order.id),
        reference_model="Order",
    )


def get_order(session: Session, order_id: int, user_id: Optional[int] = None) -> Order:
    order = session.get(Order, order_id)
    # other users' orders look the same as missing ones
    if not order or (user_id is not None and order.user_id != user_id):
        raise NotFound("Order", order_id)
    return order


def get_order_by_no(session: Session, order_no: str) -> Optional[Order]:
    return session.exec(select(Order).where(Order.order_no == order_no)).first()


def list_orders(session: Session, *, user_id: Optional[int] = None, status: Optional[str] = None,
                limit: int = 50, offset: int = 0) -> List[Order]:
    query = select(Order)
    if user_id is not None:
        query = query.where(Order.user_id == user_id)
    if status:
        query = query.where(Order.status == status)
    return list(session.exec(query.order_by(Order.id.desc()).offset(offset).limit(limit)).all())


def _validate_address(address: dict):
    missing = [f for f in REQUIRED_ADDRESS_FIELDS if not (address or {}).get(f)]
    if missing:
        raise ValidationError(
            f"Shipping address is missing: {', '.join(missing)}",
            field="shipping_address",
            missing=missing,
        )


def _cart_lines(session: Session, user_id: int) -> List[CartItem]:
    return list(session.exec(select(CartItem).where(CartItem.user_id == user_id).order_by(CartItem.id)).all())


def place_order(
    session: Session,
    *,
    user_id: int,
    payment_method: str,
    shipping_address: dict,
    items: Optional[List[dict]] = None,
    notifier=None,
) -> Order:
    """
    Turn the user's cart (or an explicit list of lines) into an order.

    Lines are {product_id, quantity, resell_price, reseller_id}. Stock is
    reserved line by line with conditional updates; if any line cannot be
    satisfied the whole transaction is rolled back and nothing is reserved.
    COD orders start ``confirmed``, prepaid ones ``pending`` until payment
    is verified.
    """
    if payment_method not in PaymentMethod.ALL:
        raise ValidationError(f"Unsupported payment method '{payment_method}'", field="payment_method")
    _validate_address(shipping_address)

    from_cart = items is None
    if from_cart:
        cart = _cart_lines(session, user_id)
        lines = [
            {
                "product_id": c.product_id,
                "quantity": c.quantity,
                "resell_price": c.resell_price,
                "reseller_id": c.reseller_id,
            }
            for c in cart
        ]
    else:
        lines = items

    if not lines:
        raise ValidationError("Cart is empty", field="items")

    products = {}
    reseller_ids = set()
    for line in lines:
        quantity = int(line.get("quantity") or 0)
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", field="quantity", product_id=line.get("product_id"))
        markup = to_money(line.get("resell_price") or 0)
        if markup < ZERO:
            raise ValidationError("Resell price cannot be negative", field="resell_price")
        if markup > ZERO:
            if line.get("reseller_id") is None:
                raise ValidationError("Marked-up items need a reseller", field="reseller_id")
            reseller_ids.add(line["reseller_id"])

        product = session.get(Product, line["product_id"])
        if not product or not product.is_active:
            raise NotFound("Product", line["product_id"])
        products[product.id] = product

    if len(reseller_ids) > 1:
        raise ValidationError("All marked-up items must come from one reseller", field="reseller_id")
    reseller_id = next(iter(reseller_ids), None)

    try:
        # fixed lock order across concurrent checkouts
        reserve_stock(session, sorted(
            (int(line["product_id"]), int(line["quantity"])) for line in lines
        ))

        subtotal = ZERO
        order_items = []
        for line in lines:
            product = products[line["product_id"]]
            markup = to_money(line.get("resell_price") or 0)
            final_price = to_money(product.base_price + markup)
            subtotal += final_price * int(line["quantity"])
            order_items.append(OrderItem(
                product_id=product.id,
                product_name=product.name,
                quantity=int(line["quantity"]),
                base_price=to_money(product.base_price),
                resell_price=markup,
                final_price=final_price,
            ))

        shipping, tax, total = compute_totals(subtotal)
        now = utcnow()
        is_cod = payment_method == PaymentMethod.COD
        initial_status = OrderStatus.CONFIRMED if is_cod else OrderStatus.PENDING

        order = Order(
            order_no=next_order_no(session, now),
            user_id=user_id,
            reseller_id=reseller_id,
            shipping_address=dict(shipping_address),
            subtotal=to_money(subtotal),
            shipping=shipping,
            tax=tax,
            total=total,
            status=initial_status,
            payment_method=payment_method,
            reseller_earning=reseller_earning(
                (line.get("resell_price") or 0, int(line["quantity"])) for line in lines
            ),
            return_window_days=settings.return_window_days,
            confirmed_at=now if is_cod else None,
            created_at=now,
            updated_at=now,
        )
        order.items = order_items
        session.add(order)
        session.flush()

        session.add(OrderStatusHistory(
            order_id=order.id,
            from_status=None,
            to_status=initial_status,
            actor=f"user:{user_id}",
            reason="Order placed",
            created_at=now,
        ))

        if from_cart:
            for cart_item in cart:
                session.delete(cart_item)

        session.commit()
    except Exception:
        session.rollback()
        raise

    session.refresh(order)
    logger.info(f"Order {order.order_no} placed by user {user_id} ({payment_method}), total {order.total}")

    notify(notifier, NotificationEvent(
        user_id=user_id,
        type=EventType.ORDER_PLACED,
        title="Order Placed",
        message=f"Your order {order.order_no} has been placed successfully.",
        data={"order_no": order.order_no, "total": str(order.total), "payment_method": payment_method},
        reference_id=str(order.id),
        reference_model="Order",
    ))
    return order


def cancel_order(
    session: Session,
    *,
    order_id: int,
    actor: str,
    reason: Optional[str] = None,
    user_id: Optional[int] = None,
    notifier=None,
) -> Order:
    """
    Cancel an order that has not left the warehouse.

    Allowed from pending, confirmed and processing only, and never once a
    shipment exists with the provider (the shipment must be cancelled
    first). Cancelling twice is a no-op.
    """

    def _cancel():
        order = get_order(session, order_id, user_id)
        if order.status == OrderStatus.CANCELLED:
            return order, False
        if order.shipment_id:
            raise ShipmentAlreadyCreated(order.id, order.shipment_id)
        if order.status not in CANCELLABLE_STATUSES:
            raise InvalidTransition("order", order.status, OrderStatus.CANCELLED,
                                    "only pending, confirmed or processing orders can be cancelled")

        transition(session, order, OrderStatus.CANCELLED, actor=actor,
                   reason=reason or "Customer requested cancellation")
        session.commit()
        session.refresh(order)
        return order, True

    order, changed = run_with_retry(session, _cancel)
    if changed:
        notify(notifier, status_event(order))
    return order


def update_status(
    session: Session,
    *,
    order_id: int,
    status: str,
    admin_id: int,
    reason: Optional[str] = None,
    notifier=None,
) -> Order:
    """Admin-driven move along the fulfillment path."""
    if status in RETURN_DRIVEN_STATUSES:
        raise ValidationError("Return statuses are managed through the return request", field="status")
    if status in SWEEP_DRIVEN_STATUSES:
        raise ValidationError("Orders complete automatically once the return window closes", field="status")
    if status == OrderStatus.CANCELLED:
        return cancel_order(session, order_id=order_id, actor=f"admin:{admin_id}", reason=reason,
                            notifier=notifier)

    def _update():
        order = get_order(session, order_id)
        changed = transition(session, order, status, actor=f"admin:{admin_id}", reason=reason)
        session.commit()
        session.refresh(order)
        return order, changed

    order, changed = run_with_retry(session, _update)
    if changed:
        notify(notifier, status_event(order))
    return order


def get_history(session: Session, order_id: int) -> List[OrderStatusHistory]:
    return list(session.exec(
        select(OrderStatusHistory)
        .where(OrderStatusHistory.order_id == order_id)
        .order_by(OrderStatusHistory.id)
    ).all())


# -------------------------
# SHIPMENT LINKAGE
# -------------------------

def create_shipment(session: Session, provider, *, order_id: int, admin_id: int, notifier=None) -> Order:
    """
    Book the order with the shipping provider: shipment, AWB, then pickup.

    Each step is committed as soon as it succeeds so a retry after a
    provider failure resumes where it stopped instead of booking twice.
    """
    order = get_order(session, order_id)
    if order.status not in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.PACKED):
        raise InvalidTransition("order", order.status, OrderStatus.PROCESSING,
                                "only confirmed orders can be shipped")

    if not order.shipment_id:
        booked = provider.create_shipment(order)
        bump_version(session, order)
        order.shipment_id = booked["shipment_id"]
        order.provider_order_id = booked.get("provider_order_id")
        order.updated_at = utcnow()
        session.add(order)
        session.commit()
        logger.info(f"Shipment {order.shipment_id} created for order {order.order_no}")

    if not order.tracking_number:
        awb = provider.generate_tracking_number(order.shipment_id)
        bump_version(session, order)
        order.tracking_number = awb["tracking_number"]
        order.courier_name = awb.get("courier_name")
        session.add(order)
        session.commit()

    if not order.pickup_scheduled_at:
        pickup = provider.schedule_pickup(order.shipment_id)
        bump_version(session, order)
        order.pickup_scheduled_at = pickup.get("pickup_scheduled_date") or utcnow()
        session.add(order)
        session.commit()

    if order.status == OrderStatus.CONFIRMED:
        transition(session, order, OrderStatus.PROCESSING, actor=f"admin:{admin_id}",
                   reason=f"Shipment {order.shipment_id} booked")
        session.commit()
        notify(notifier, status_event(order))

    session.refresh(order)
    return order


def cancel_shipment(session: Session, provider, *, order_id: int, admin_id: int) -> Order:
    """Cancel the provider shipment so the order can be cancelled again."""
    order = get_order(session, order_id)
    if not order.shipment_id:
        raise ValidationError("Order has no shipment", field="shipment_id")
    if order.status not in CANCELLABLE_STATUSES | {OrderStatus.PACKED}:
        raise InvalidTransition("order", order.status, OrderStatus.CANCELLED,
                                "shipment already handed to the courier")

    if order.tracking_number:
        provider.cancel_shipment(order.tracking_number)

    bump_version(session, order)
    logger.info(f"Shipment {order.shipment_id} of order {order.order_no} cancelled by admin {admin_id}")
    order.shipment_id = None
    order.provider_order_id = None
    order.tracking_number = None
    order.courier_name = None
    order.pickup_scheduled_at = None
    order.updated_at = utcnow()
    session.add(order)
    session.commit()
    session.refresh(order)
    return order
