from fastapi import APIRouter, Depends
from sqlmodel import Session

from resell_core.database import get_session
from resell_core.dependencies.integrations import get_gateway, get_notifier
from resell_core.schemas.payment_schemas import (
    CreatePaymentOrderRequest,
    PaymentFailureRequest,
    RazorpayPaymentVerifySchema,
)
from resell_core.services import payment_service

router = APIRouter()


@router.post("/orders/{order_id}")
def create_payment_order(
    order_id: int,
    payload: CreatePaymentOrderRequest,
    session: Session = Depends(get_session),
    gateway=Depends(get_gateway),
):
    data = payment_service.create_payment_order(session, gateway, order_id=order_id, user_id=payload.user_id)
    return {"success": True, **data}


@router.post("/verify")
def verify_payment(
    payload: RazorpayPaymentVerifySchema,
    session: Session = Depends(get_session),
    gateway=Depends(get_gateway),
    notifier=Depends(get_notifier),
):
    return payment_service.verify_payment(
        session,
        gateway,
        order_id=payload.order_id,
        gateway_order_id=payload.razorpay_order_id,
        payment_id=payload.razorpay_payment_id,
        signature=payload.razorpay_signature,
        user_id=payload.user_id,
        notifier=notifier,
    )


@router.post("/failure")
def report_payment_failure(payload: PaymentFailureRequest, session: Session = Depends(get_session)):
    order = payment_service.report_payment_failure(
        session, order_id=payload.order_id, error=payload.error, user_id=payload.user_id
    )
    return {"success": True, "order_id": order.id, "payment_status": order.payment_status}
