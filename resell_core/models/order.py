from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, DateTime, JSON
from sqlalchemy import inspect
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from resell_core.models.order_item import OrderItem
from resell_core.models.order_status_history import OrderStatusHistory
from resell_core.models.tracking_event import TrackingEvent
from resell_core.utils.clock import utcnow


class Order(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    order_no: str = Field(index=True, unique=True)

    user_id: int = Field(index=True)
    reseller_id: Optional[int] = Field(default=None, index=True)

    # snapshot, never re-read from the address book
    shipping_address: dict = Field(default_factory=dict, sa_column=Column(JSON))

    subtotal: Decimal = Field(max_digits=12, decimal_places=2)
    shipping: Decimal = Field(max_digits=12, decimal_places=2)
    tax: Decimal = Field(max_digits=12, decimal_places=2)
    total: Decimal = Field(max_digits=12, decimal_places=2)

    status: str = Field(default="pending", index=True)
    version: int = Field(default=1)

    # payment
    payment_method: str
    payment_status: str = Field(default="pending", index=True)
    gateway_order_id: Optional[str] = Field(default=None, index=True)
    gateway_payment_id: Optional[str] = None
    gateway_signature: Optional[str] = None
    payment_error: Optional[str] = None
    paid_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    # reseller earning
    reseller_earning: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    reseller_earning_status: str = Field(default="pending")
    earning_credited_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    # returns
    return_window_days: int = 7
    return_window_end: Optional[datetime] = Field(default=None, index=True, sa_type=DateTime)

    # shipment linkage
    shipment_id: Optional[str] = None
    provider_order_id: Optional[str] = None
    tracking_number: Optional[str] = Field(default=None, index=True)
    courier_name: Optional[str] = None
    pickup_scheduled_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    last_tracked_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    stock_restored: bool = False

    cancel_reason: Optional[str] = None
    cancelled_by: Optional[str] = None

    # status timestamps, each stamped once
    confirmed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    processing_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    packed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    shipped_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    out_for_delivery_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    delivered_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    completed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    cancelled_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    failed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    refunded_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    returned_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    created_at: datetime = Field(default_factory=utcnow, index=True, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    # relationships (important!)
    items: List["OrderItem"] = Relationship(back_populates="order")
    history: List["OrderStatusHistory"] = Relationship(
        back_populates="order",
        sa_relationship_kwargs={"order_by": "OrderStatusHistory.id"},
    )
    tracking_events: List["TrackingEvent"] = Relationship(
        back_populates="order",
        sa_relationship_kwargs={"order_by": "TrackingEvent.id"},
    )

    @property
    def is_cod(self) -> bool:
        return self.payment_method == "cod"

    def __setattr__(self, name, value):
        if name == "status":
            state = inspect(self, raiseerr=False)
            if state is not None and state.has_identity:
                raise AttributeError("Order.status of a stored order only changes through transition()")
        super().__setattr__(name, value)

    def _write_status(self, status: str):
        SQLModel.__setattr__(self, "status", status)
