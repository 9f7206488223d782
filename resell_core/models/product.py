from sqlmodel import SQLModel, Field
from sqlalchemy import DateTime
from typing import Optional
from datetime import datetime
from decimal import Decimal

from resell_core.utils.clock import utcnow


class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    sku: Optional[str] = Field(default=None, index=True)

    base_price: Decimal = Field(max_digits=12, decimal_places=2)

    # only ever changed through conditional UPDATEs (see inventory_service)
    stock: int = Field(default=0)
    sold_count: int = Field(default=0)

    weight_kg: Optional[float] = None
    is_active: bool = True

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
