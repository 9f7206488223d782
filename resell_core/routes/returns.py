from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from resell_core.database import get_session
from resell_core.dependencies.integrations import get_notifier, get_provider
from resell_core.schemas.checkout_schemas import AdminActionRequest
from resell_core.schemas.return_schemas import (
    RefundProcessRequest,
    ReturnCancelRequest,
    ReturnCreateRequest,
    ReturnRejectRequest,
    ReturnResponse,
    ReturnStatusUpdateRequest,
)
from resell_core.services import return_service

router = APIRouter()
admin_router = APIRouter()


# -------------------------
# CUSTOMER
# -------------------------

@router.post("/", status_code=201)
def create_return(
    payload: ReturnCreateRequest,
    session: Session = Depends(get_session),
    notifier=Depends(get_notifier),
):
    ret = return_service.create_return(
        session,
        order_id=payload.order_id,
        user_id=payload.user_id,
        items=[line.model_dump() for line in payload.items],
        reason=payload.reason,
        description=payload.description,
        notifier=notifier,
    )
    return {"success": True, "message": "Return request created", "return": ReturnResponse.model_validate(ret)}


@router.get("/")
def list_returns(
    user_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = Query(default=50, le=200),
    offset: int = 0,
    session: Session = Depends(get_session),
):
    returns = return_service.list_returns(session, user_id=user_id, status=status, limit=limit, offset=offset)
    return {"success": True, "returns": [ReturnResponse.model_validate(r) for r in returns]}


@router.get("/{return_id}")
def get_return(return_id: int, user_id: Optional[int] = None, session: Session = Depends(get_session)):
    ret = return_service.get_return(session, return_id, user_id)
    return {"success": True, "return": ReturnResponse.model_validate(ret)}


@router.post("/{return_id}/cancel")
def cancel_return(
    return_id: int,
    payload: ReturnCancelRequest,
    session: Session = Depends(get_session),
    notifier=Depends(get_notifier),
):
    ret = return_service.cancel_return(session, return_id=return_id, user_id=payload.user_id, notifier=notifier)
    return {"success": True, "message": "Return cancelled", "return": ReturnResponse.model_validate(ret)}


# -------------------------
# ADMIN
# -------------------------

@admin_router.post("/{return_id}/approve")
def approve_return(
    return_id: int,
    payload: AdminActionRequest,
    session: Session = Depends(get_session),
    notifier=Depends(get_notifier),
):
    ret = return_service.approve_return(session, return_id=return_id, admin_id=payload.admin_id, notifier=notifier)
    return {"success": True, "message": "Return approved", "return": ReturnResponse.model_validate(ret)}


@admin_router.post("/{return_id}/reject")
def reject_return(
    return_id: int,
    payload: ReturnRejectRequest,
    session: Session = Depends(get_session),
    notifier=Depends(get_notifier),
):
    ret = return_service.reject_return(
        session, return_id=return_id, admin_id=payload.admin_id, reason=payload.reason, notifier=notifier
    )
    return {"success": True, "message": "Return rejected", "return": ReturnResponse.model_validate(ret)}


@admin_router.post("/{return_id}/pickup")
def schedule_pickup(
    return_id: int,
    payload: AdminActionRequest,
    session: Session = Depends(get_session),
    provider=Depends(get_provider),
    notifier=Depends(get_notifier),
):
    ret = return_service.schedule_return_pickup(
        session, provider, return_id=return_id, admin_id=payload.admin_id, notifier=notifier
    )
    return {"success": True, "message": "Return pickup scheduled", "return": ReturnResponse.model_validate(ret)}


@admin_router.put("/{return_id}/status")
def update_return_status(
    return_id: int,
    payload: ReturnStatusUpdateRequest,
    session: Session = Depends(get_session),
    notifier=Depends(get_notifier),
):
    ret = return_service.update_return_status(
        session, return_id=return_id, status=payload.status, actor=f"admin:{payload.admin_id}", notifier=notifier
    )
    return {"success": True, "message": f"Return moved to {ret.status}", "return": ReturnResponse.model_validate(ret)}


@admin_router.post("/{return_id}/refund")
def process_refund(
    return_id: int,
    payload: RefundProcessRequest,
    session: Session = Depends(get_session),
    notifier=Depends(get_notifier),
):
    ret = return_service.process_refund(
        session,
        return_id=return_id,
        admin_id=payload.admin_id,
        refund_reference=payload.refund_reference,
        notifier=notifier,
    )
    return {"success": True, "message": "Refund processed", "return": ReturnResponse.model_validate(ret)}
