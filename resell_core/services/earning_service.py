import logging
from datetime import datetime
from typing import Optional

from sqlmodel import Session, select

from resell_core.constants.order_status import EarningStatus, OrderStatus
from resell_core.constants.return_status import ACTIVE_RETURN_STATUSES
from resell_core.constants.wallet import TransactionSource
from resell_core.exceptions import InvalidTransition
from resell_core.models.order import Order
from resell_core.models.return_request import ReturnRequest
from resell_core.services import wallet_service
from resell_core.services.concurrency import bump_version
from resell_core.services.order_state_machine import transition
from resell_core.utils.clock import utcnow
from resell_core.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)


def has_active_return(session: Session, order_id: int) -> bool:
    return session.exec(
        select(ReturnRequest.id)
        .where(ReturnRequest.order_id == order_id)
        .where(ReturnRequest.status.in_(ACTIVE_RETURN_STATUSES))
    ).first() is not None


def is_mature(session: Session, order: Order, now: datetime) -> bool:
    if order.status != OrderStatus.DELIVERED:
        return False
    if order.return_window_end is None or order.return_window_end >= now:
        return False
    return not has_active_return(session, order.id)


def credit_earning(session: Session, order: Order) -> bool:
    """Pay the reseller's markup into their wallet, at most once per order."""
    if order.reseller_earning_status != EarningStatus.PENDING:
        return False
    if order.reseller_id is None or to_money(order.reseller_earning) <= ZERO:
        return False

    bump_version(session, order)
    wallet_service.credit(
        session,
        user_id=order.reseller_id,
        amount=order.reseller_earning,
        source=TransactionSource.RESELL_EARNING,
        description=f"Resell earning for order {order.order_no}",
        reference_id=str(order.id),
        reference_model="Order",
    )
    order.reseller_earning_status = EarningStatus.CREDITED
    order.earning_credited_at = utcnow()
    session.add(order)
    logger.info(f"Credited earning {order.reseller_earning} for order {order.order_no} to reseller {order.reseller_id}")
    return True


def mature_order(session: Session, order: Order, now: Optional[datetime] = None) -> bool:
    """
    Settle one order whose return window has passed.

    Delivered orders get their earning credited and move to completed.
    Orders whose return was rejected keep their status; only the earning
    is released. Returns True if anything changed.
    """
    now = now or utcnow()

    if order.status == OrderStatus.RETURN_REJECTED:
        if order.return_window_end and order.return_window_end < now:
            return credit_earning(session, order)
        return False

    if not is_mature(session, order, now):
        return False

    credit_earning(session, order)
    transition(session, order, OrderStatus.COMPLETED, actor="system", reason="Return window closed", at=now)
    return True


def reverse_earning(session: Session, order: Order, reason: str) -> Optional[str]:
    """
    Undo the reseller earning of a refunded order.

    A pending earning is simply cancelled. A credited one is debited back
    from the reseller wallet as a reversal; if the wallet no longer holds
    enough, whatever is there is taken and the wallet is frozen with the
    shortfall recorded. Returns the resulting earning status.
    """
    status = order.reseller_earning_status
    if status == EarningStatus.PENDING:
        order.reseller_earning_status = EarningStatus.CANCELLED
        session.add(order)
        return EarningStatus.CANCELLED

    if status != EarningStatus.CREDITED:
        return status

    amount = to_money(order.reseller_earning)
    wallet = wallet_service.get_or_create_wallet(session, order.reseller_id)
    available = to_money(wallet.balance)
    description = f"Reversal of earning for order {order.order_no}: {reason}"

    if available >= amount:
        wallet_service.debit(
            session, user_id=order.reseller_id, amount=amount,
            source=TransactionSource.REVERSAL, description=description,
            reference_id=str(order.id), reference_model="Order",
        )
    else:
        if available > ZERO:
            wallet_service.debit(
                session, user_id=order.reseller_id, amount=available,
                source=TransactionSource.REVERSAL, description=description,
                reference_id=str(order.id), reference_model="Order",
            )
        shortfall = to_money(amount - available)
        wallet_service.freeze_wallet(
            session,
            user_id=order.reseller_id,
            reason=f"Earning reversal shortfall of {shortfall} for order {order.order_no}",
        )
        logger.warning(
            f"Reseller {order.reseller_id} could not cover reversal for order {order.order_no}, "
            f"shortfall {shortfall}; wallet frozen"
        )

    order.reseller_earning_status = EarningStatus.CANCELLED
    session.add(order)
    return EarningStatus.CANCELLED


def find_maturable_orders(session: Session, now: datetime, limit: int = 500):
    return session.exec(
        select(Order)
        .where(Order.status.in_([OrderStatus.DELIVERED, OrderStatus.RETURN_REJECTED]))
        .where(Order.return_window_end != None)  # noqa: E711
        .where(Order.return_window_end < now)
        .where(
            (Order.status == OrderStatus.DELIVERED)
            | ((Order.reseller_earning_status == EarningStatus.PENDING) & (Order.reseller_earning > 0))
        )
        .order_by(Order.id)
        .limit(limit)
    ).all()


def settle_order_by_id(session: Session, order_id: int, now: Optional[datetime] = None) -> bool:
    order = session.get(Order, order_id)
    if order is None:
        return False
    try:
        changed = mature_order(session, order, now)
    except InvalidTransition:
        session.rollback()
        return False
    session.commit()
    return changed
