from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field
from sqlalchemy import DateTime

from resell_core.utils.clock import utcnow


class ShippingSettings(SQLModel, table=True):
    """Single row holding the shipping provider auth token between restarts."""

    __tablename__ = "shipping_settings"

    id: Optional[int] = Field(default=None, primary_key=True)
    provider: str = Field(default="shiprocket", unique=True)

    token: Optional[str] = None
    token_expires_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    pickup_location: Optional[str] = None
    default_weight_kg: float = 0.5
    default_length_cm: float = 10
    default_breadth_cm: float = 10
    default_height_cm: float = 10

    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
