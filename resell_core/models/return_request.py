from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import DateTime
from datetime import datetime
from typing import List, Optional
from decimal import Decimal

from resell_core.utils.clock import utcnow


class ReturnItem(SQLModel, table=True):
    __tablename__ = "return_item"

    id: Optional[int] = Field(default=None, primary_key=True)
    return_id: int = Field(foreign_key="return_request.id", index=True)
    order_item_id: int = Field(foreign_key="order_item.id")
    product_id: int = Field(foreign_key="product.id")
    quantity: int
    unit_price: Decimal = Field(max_digits=12, decimal_places=2)
    reason: Optional[str] = None

    return_request: Optional["ReturnRequest"] = Relationship(back_populates="items")


class ReturnRequest(SQLModel, table=True):
    __tablename__ = "return_request"

    id: Optional[int] = Field(default=None, primary_key=True)
    return_no: str = Field(index=True, unique=True)
    order_id: int = Field(foreign_key="order.id", index=True)
    user_id: int = Field(index=True)

    # Request details
    reason: str
    description: Optional[str] = None
    status: str = Field(default="pending", index=True)
    version: int = Field(default=1)

    # Review
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    rejection_reason: Optional[str] = None

    # Return shipment
    shipment_id: Optional[str] = None
    tracking_number: Optional[str] = Field(default=None, index=True)
    courier_name: Optional[str] = None

    # Refund details
    refund_amount: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    refund_method: Optional[str] = None  # wallet, original_payment
    refund_status: str = Field(default="pending")
    refund_reference: Optional[str] = None

    # Timestamps
    approved_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    pickup_scheduled_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    picked_up_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    received_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    refunded_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    cancelled_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    items: List["ReturnItem"] = Relationship(back_populates="return_request")
