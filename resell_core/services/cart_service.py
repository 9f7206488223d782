import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import delete, func
from sqlmodel import Session, select

from resell_core.config import settings
from resell_core.exceptions import NotFound, ValidationError
from resell_core.models.cart import CartItem
from resell_core.models.product import Product
from resell_core.utils.clock import utcnow
from resell_core.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)


def get_cart(session: Session, user_id: int) -> List[CartItem]:
    return list(session.exec(select(CartItem).where(CartItem.user_id == user_id).order_by(CartItem.id)).all())


def add_item(
    session: Session,
    *,
    user_id: int,
    product_id: int,
    quantity: int = 1,
    resell_price=ZERO,
    reseller_id: Optional[int] = None,
) -> CartItem:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1", field="quantity")
    product = session.get(Product, product_id)
    if not product or not product.is_active:
        raise NotFound("Product", product_id)

    markup = to_money(resell_price or 0)
    if markup < ZERO:
        raise ValidationError("Resell price cannot be negative", field="resell_price")
    if markup > ZERO and reseller_id is None:
        raise ValidationError("Marked-up items need a reseller", field="reseller_id")

    item = session.exec(
        select(CartItem)
        .where(CartItem.user_id == user_id)
        .where(CartItem.product_id == product_id)
        .where(CartItem.reseller_id == reseller_id)
    ).first()

    now = utcnow()
    if item:
        item.quantity += quantity
        item.resell_price = markup
    else:
        item = CartItem(
            user_id=user_id,
            product_id=product_id,
            quantity=quantity,
            resell_price=markup,
            reseller_id=reseller_id,
            created_at=now,
        )
    item.updated_at = now
    session.add(item)
    session.commit()
    session.refresh(item)
    return item


def remove_item(session: Session, *, user_id: int, item_id: int):
    item = session.get(CartItem, item_id)
    if not item or item.user_id != user_id:
        raise NotFound("CartItem", item_id)
    session.delete(item)
    session.commit()


def cleanup_stale_carts(session: Session, now: Optional[datetime] = None) -> int:
    """Drop whole carts whose newest line is older than ``stale_cart_days``."""
    cutoff = (now or utcnow()) - timedelta(days=settings.stale_cart_days)
    stale_users = (
        select(CartItem.user_id)
        .group_by(CartItem.user_id)
        .having(func.max(CartItem.updated_at) < cutoff)
    )
    result = session.execute(delete(CartItem).where(CartItem.user_id.in_(stale_users)))
    session.commit()
    return result.rowcount or 0
