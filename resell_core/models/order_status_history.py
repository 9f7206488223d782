from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import DateTime

from resell_core.utils.clock import utcnow

if TYPE_CHECKING:
    from resell_core.models.order import Order


class OrderStatusHistory(SQLModel, table=True):
    __tablename__ = "order_status_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="order.id", index=True)

    from_status: Optional[str] = None
    to_status: str
    actor: str = Field(default="system")
    reason: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    order: Optional["Order"] = Relationship(back_populates="history")
