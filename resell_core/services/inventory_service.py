import logging
from typing import Iterable, Tuple

from sqlalchemy import update
from sqlmodel import Session

from resell_core.exceptions import InsufficientStock
from resell_core.models.order import Order
from resell_core.models.product import Product

logger = logging.getLogger(__name__)


def reserve_stock(session: Session, lines: Iterable[Tuple[int, int]]):
    """
    Take ``quantity`` units of each product, all or nothing.

    Each line is a single conditional UPDATE (``stock >= quantity``), so two
    checkouts racing for the last unit cannot both win. The caller owns the
    transaction and rolls it back when InsufficientStock propagates, which
    releases the lines reserved before the failing one.
    """
    for product_id, quantity in lines:
        result = session.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(
                stock=Product.stock - quantity,
                sold_count=Product.sold_count + quantity,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            product = session.get(Product, product_id)
            available = product.stock if product else 0
            logger.info(
                f"Stock reservation failed for product {product_id}: "
                f"requested {quantity}, available {available}"
            )
            raise InsufficientStock(product_id, quantity, available)


def release_stock(session: Session, lines: Iterable[Tuple[int, int]]):
    for product_id, quantity in lines:
        session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(
                stock=Product.stock + quantity,
                sold_count=Product.sold_count - quantity,
            )
            .execution_options(synchronize_session=False)
        )


def restore_order_stock(session: Session, order: Order) -> bool:
    """Give every line of ``order`` back to stock, at most once per order."""
    if order.stock_restored:
        return False

    release_stock(session, [(item.product_id, item.quantity) for item in order.items])
    order.stock_restored = True
    logger.info(f"Restored stock for order {order.order_no}")
    return True
