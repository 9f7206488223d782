from pydantic import BaseModel
from typing import Optional


class CreatePaymentOrderRequest(BaseModel):
    user_id: Optional[int] = None


class RazorpayPaymentVerifySchema(BaseModel):
    order_id: int
    user_id: Optional[int] = None
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class PaymentFailureRequest(BaseModel):
    order_id: int
    user_id: Optional[int] = None
    error: Optional[str] = None
