from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal


class ShippingAddress(BaseModel):
    name: str
    phone: str
    email: Optional[str] = None
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str
    pincode: str
    country: str = "India"


class OrderLine(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)
    resell_price: Decimal = Decimal("0")
    reseller_id: Optional[int] = None


class PlaceOrderRequest(BaseModel):
    user_id: int
    payment_method: str
    shipping_address: ShippingAddress
    # omitted: the user's cart is checked out
    items: Optional[List[OrderLine]] = None


class CancelOrderRequest(BaseModel):
    user_id: Optional[int] = None
    admin_id: Optional[int] = None
    reason: Optional[str] = None


class UpdateOrderStatusRequest(BaseModel):
    admin_id: int
    status: str
    reason: Optional[str] = None


class AdminActionRequest(BaseModel):
    admin_id: int


class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    quantity: int
    base_price: Decimal
    resell_price: Decimal
    final_price: Decimal

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    order_no: str
    user_id: int
    reseller_id: Optional[int] = None
    status: str
    payment_method: str
    payment_status: str
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal
    reseller_earning: Decimal
    reseller_earning_status: str
    return_window_end: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    shipment_id: Optional[str] = None
    tracking_number: Optional[str] = None
    courier_name: Optional[str] = None
    payment_error: Optional[str] = None
    version: int
    created_at: datetime
    items: List[OrderItemResponse] = []

    class Config:
        from_attributes = True


class StatusHistoryResponse(BaseModel):
    from_status: Optional[str] = None
    to_status: str
    actor: str
    reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AddCartItemRequest(BaseModel):
    user_id: int
    product_id: int
    quantity: int = Field(default=1, ge=1)
    resell_price: Decimal = Decimal("0")
    reseller_id: Optional[int] = None
