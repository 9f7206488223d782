from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, DateTime, JSON

from resell_core.utils.clock import utcnow

if TYPE_CHECKING:
    from resell_core.models.order import Order


class TrackingEvent(SQLModel, table=True):
    __tablename__ = "tracking_event"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="order.id", index=True)

    status: str
    description: Optional[str] = None
    location: Optional[str] = None
    occurred_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    source: str = Field(default="webhook")  # webhook / poll / ndr
    meta: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    order: Optional["Order"] = Relationship(back_populates="tracking_events")
