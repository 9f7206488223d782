from sqlmodel import SQLModel, Field
from sqlalchemy import DateTime
from typing import Optional
from datetime import datetime
from decimal import Decimal

from resell_core.utils.clock import utcnow


class CartItem(SQLModel, table=True):
    __tablename__ = "cart_item"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    product_id: int = Field(foreign_key="product.id")
    quantity: int = 1

    # markup added by the reseller who shared the product
    resell_price: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    reseller_id: Optional[int] = None

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, index=True, sa_type=DateTime)
