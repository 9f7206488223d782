from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal


class ReturnLine(BaseModel):
    order_item_id: int
    quantity: int = Field(ge=1)
    reason: Optional[str] = None


class ReturnCreateRequest(BaseModel):
    user_id: int
    order_id: int
    reason: str
    description: Optional[str] = None
    items: List[ReturnLine]


class ReturnRejectRequest(BaseModel):
    admin_id: int
    reason: str


class ReturnCancelRequest(BaseModel):
    user_id: int


class ReturnStatusUpdateRequest(BaseModel):
    admin_id: int
    status: str  # picked_up / received


class RefundProcessRequest(BaseModel):
    admin_id: int
    refund_reference: Optional[str] = None


class ReturnItemResponse(BaseModel):
    order_item_id: int
    product_id: int
    quantity: int
    unit_price: Decimal
    reason: Optional[str] = None

    class Config:
        from_attributes = True


class ReturnResponse(BaseModel):
    id: int
    return_no: str
    order_id: int
    user_id: int
    reason: str
    status: str
    refund_amount: Decimal
    refund_method: Optional[str] = None
    refund_status: str
    refund_reference: Optional[str] = None
    rejection_reason: Optional[str] = None
    tracking_number: Optional[str] = None
    courier_name: Optional[str] = None
    created_at: datetime
    items: List[ReturnItemResponse] = []

    class Config:
        from_attributes = True
