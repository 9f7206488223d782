from fastapi import APIRouter, Depends
from sqlmodel import Session

from resell_core.database import get_session
from resell_core.dependencies.integrations import get_notifier, get_provider
from resell_core.schemas.checkout_schemas import (
    AdminActionRequest,
    OrderResponse,
    UpdateOrderStatusRequest,
)
from resell_core.services import order_service

router = APIRouter()


@router.put("/{order_id}/status")
def update_order_status(
    order_id: int,
    payload: UpdateOrderStatusRequest,
    session: Session = Depends(get_session),
    notifier=Depends(get_notifier),
):
    order = order_service.update_status(
        session,
        order_id=order_id,
        status=payload.status,
        admin_id=payload.admin_id,
        reason=payload.reason,
        notifier=notifier,
    )
    return {"success": True, "message": f"Order moved to {order.status}", "order": OrderResponse.model_validate(order)}


@router.post("/{order_id}/shipment")
def create_shipment(
    order_id: int,
    payload: AdminActionRequest,
    session: Session = Depends(get_session),
    provider=Depends(get_provider),
    notifier=Depends(get_notifier),
):
    order = order_service.create_shipment(
        session, provider, order_id=order_id, admin_id=payload.admin_id, notifier=notifier
    )
    return {"success": True, "message": "Shipment created", "order": OrderResponse.model_validate(order)}


@router.post("/{order_id}/shipment/cancel")
def cancel_shipment(
    order_id: int,
    payload: AdminActionRequest,
    session: Session = Depends(get_session),
    provider=Depends(get_provider),
):
    order = order_service.cancel_shipment(session, provider, order_id=order_id, admin_id=payload.admin_id)
    return {"success": True, "message": "Shipment cancelled", "order": OrderResponse.model_validate(order)}
