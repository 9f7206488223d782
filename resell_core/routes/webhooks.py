import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from resell_core.config import settings
from resell_core.database import get_session
from resell_core.dependencies.integrations import get_gateway, get_notifier
from resell_core.exceptions import SignatureMismatch
from resell_core.schemas.shipment_schemas import ShipmentWebhookPayload
from resell_core.services import fulfillment_service, payment_service
from resell_core.services.shipment_provider import parse_provider_datetime

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/razorpay")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(default=None),
    session: Session = Depends(get_session),
    gateway=Depends(get_gateway),
    notifier=Depends(get_notifier),
):
    # 🔐 signature is over the exact bytes, read before any parsing
    raw_body = await request.body()
    return await run_in_threadpool(
        payment_service.handle_payment_webhook,
        session,
        gateway,
        raw_body=raw_body,
        signature=x_razorpay_signature,
        notifier=notifier,
    )


@router.post("/shiprocket")
def shiprocket_webhook(
    payload: ShipmentWebhookPayload,
    x_api_key: Optional[str] = Header(default=None),
    session: Session = Depends(get_session),
    notifier=Depends(get_notifier),
):
    if settings.shiprocket_webhook_token and x_api_key != settings.shiprocket_webhook_token:
        logger.error("SECURITY: shipment webhook with invalid token")
        raise SignatureMismatch("Invalid webhook token")

    status = payload.current_status or payload.shipment_status
    if not status:
        return {"success": True, "message": "No status in payload"}

    return fulfillment_service.apply_shipment_update(
        session,
        awb=payload.awb,
        order_no=payload.order_id,
        status=status,
        location=payload.location,
        description=payload.activity,
        occurred_at=parse_provider_datetime(payload.updated_at),
        source="webhook",
        notifier=notifier,
    )
