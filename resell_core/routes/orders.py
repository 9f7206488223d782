from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from resell_core.database import get_session
from resell_core.dependencies.integrations import get_notifier, get_provider
from resell_core.exceptions import ValidationError
from resell_core.schemas.checkout_schemas import (
    CancelOrderRequest,
    OrderResponse,
    StatusHistoryResponse,
)
from resell_core.services import fulfillment_service, order_service

router = APIRouter()


@router.get("/")
def list_orders(
    user_id: Optional[int] = Query(default=None),
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=50, le=200),
    offset: int = 0,
    session: Session = Depends(get_session),
):
    orders = order_service.list_orders(session, user_id=user_id, status=status, limit=limit, offset=offset)
    return {"success": True, "orders": [OrderResponse.model_validate(o) for o in orders]}


@router.get("/{order_id}")
def get_order(order_id: int, user_id: Optional[int] = None, session: Session = Depends(get_session)):
    order = order_service.get_order(session, order_id, user_id)
    return {"success": True, "order": OrderResponse.model_validate(order)}


@router.get("/{order_id}/history")
def get_order_history(order_id: int, session: Session = Depends(get_session)):
    order_service.get_order(session, order_id)
    history = order_service.get_history(session, order_id)
    return {"success": True, "history": [StatusHistoryResponse.model_validate(h) for h in history]}


@router.post("/{order_id}/cancel")
def cancel_order(
    order_id: int,
    payload: CancelOrderRequest,
    session: Session = Depends(get_session),
    notifier=Depends(get_notifier),
):
    if payload.user_id is None and payload.admin_id is None:
        raise ValidationError("user_id or admin_id is required", field="user_id")
    actor = f"admin:{payload.admin_id}" if payload.admin_id is not None else f"user:{payload.user_id}"
    order = order_service.cancel_order(
        session,
        order_id=order_id,
        actor=actor,
        reason=payload.reason,
        user_id=payload.user_id if payload.admin_id is None else None,
        notifier=notifier,
    )
    return {"success": True, "message": "Order cancelled successfully", "order": OrderResponse.model_validate(order)}


@router.post("/{order_id}/track")
def refresh_tracking(
    order_id: int,
    session: Session = Depends(get_session),
    provider=Depends(get_provider),
    notifier=Depends(get_notifier),
):
    order = order_service.get_order(session, order_id)
    result = fulfillment_service.refresh_order_tracking(session, provider, order, notifier)
    return result
