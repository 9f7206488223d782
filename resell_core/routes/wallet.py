from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from resell_core.database import get_session
from resell_core.dependencies.integrations import get_notifier
from resell_core.notifications import notify
from resell_core.schemas.checkout_schemas import AdminActionRequest
from resell_core.schemas.wallet_schemas import (
    WalletAdjustRequest,
    WalletFreezeRequest,
    WalletResponse,
    WalletTransactionResponse,
    WithdrawalCompleteRequest,
    WithdrawalCreateRequest,
    WithdrawalRejectRequest,
    WithdrawalResponse,
)
from resell_core.services import wallet_service

router = APIRouter()
admin_router = APIRouter()


# -------------------------
# RESELLER
# -------------------------

@router.get("/{user_id}")
def get_wallet(user_id: int, session: Session = Depends(get_session)):
    wallet = wallet_service.get_or_create_wallet(session, user_id)
    session.commit()
    return {"success": True, "wallet": WalletResponse.model_validate(wallet)}


@router.get("/{user_id}/transactions")
def get_transactions(
    user_id: int,
    limit: int = Query(default=50, le=200),
    offset: int = 0,
    session: Session = Depends(get_session),
):
    txns = wallet_service.list_transactions(session, user_id, limit=limit, offset=offset)
    return {"success": True, "transactions": [WalletTransactionResponse.model_validate(t) for t in txns]}


@router.post("/withdrawals", status_code=201)
def request_withdrawal(
    payload: WithdrawalCreateRequest,
    session: Session = Depends(get_session),
    notifier=Depends(get_notifier),
):
    withdrawal = wallet_service.request_withdrawal(
        session,
        user_id=payload.user_id,
        amount=payload.amount,
        bank_details=payload.bank_details.model_dump(),
        notifier=notifier,
    )
    return {
        "success": True,
        "message": "Withdrawal requested",
        "withdrawal": WithdrawalResponse.model_validate(withdrawal),
    }


# -------------------------
# ADMIN
# -------------------------

@admin_router.get("/{user_id}/audit")
def audit_wallet(user_id: int, session: Session = Depends(get_session)):
    return {"success": True, "audit": wallet_service.audit_wallet(session, user_id)}


@admin_router.post("/{user_id}/freeze")
def freeze_wallet(
    user_id: int,
    payload: WalletFreezeRequest,
    session: Session = Depends(get_session),
    notifier=Depends(get_notifier),
):
    wallet = wallet_service.freeze_wallet(session, user_id=user_id, reason=payload.reason)
    session.commit()
    session.refresh(wallet)
    notify(notifier, wallet_service.frozen_event(wallet))
    return {"success": True, "wallet": WalletResponse.model_validate(wallet)}


@admin_router.post("/{user_id}/unfreeze")
def unfreeze_wallet(user_id: int, payload: AdminActionRequest, session: Session = Depends(get_session)):
    wallet = wallet_service.unfreeze_wallet(session, user_id=user_id)
    session.commit()
    session.refresh(wallet)
    return {"success": True, "wallet": WalletResponse.model_validate(wallet)}


@admin_router.post("/{user_id}/adjust")
def adjust_wallet(user_id: int, payload: WalletAdjustRequest, session: Session = Depends(get_session)):
    txn = wallet_service.admin_adjust(
        session, user_id=user_id, amount=payload.amount, admin_id=payload.admin_id, reason=payload.reason
    )
    return {"success": True, "transaction": WalletTransactionResponse.model_validate(txn)}


@admin_router.post("/withdrawals/{withdrawal_id}/processing")
def mark_processing(withdrawal_id: int, payload: AdminActionRequest, session: Session = Depends(get_session)):
    withdrawal = wallet_service.mark_withdrawal_processing(
        session, withdrawal_id=withdrawal_id, admin_id=payload.admin_id
    )
    return {"success": True, "withdrawal": WithdrawalResponse.model_validate(withdrawal)}


@admin_router.post("/withdrawals/{withdrawal_id}/complete")
def complete_withdrawal(
    withdrawal_id: int,
    payload: WithdrawalCompleteRequest,
    session: Session = Depends(get_session),
    notifier=Depends(get_notifier),
):
    withdrawal = wallet_service.complete_withdrawal(
        session, withdrawal_id=withdrawal_id, admin_id=payload.admin_id, utr_number=payload.utr_number,
        notifier=notifier,
    )
    return {"success": True, "withdrawal": WithdrawalResponse.model_validate(withdrawal)}


@admin_router.post("/withdrawals/{withdrawal_id}/reject")
def reject_withdrawal(
    withdrawal_id: int,
    payload: WithdrawalRejectRequest,
    session: Session = Depends(get_session),
    notifier=Depends(get_notifier),
):
    withdrawal = wallet_service.reject_withdrawal(
        session, withdrawal_id=withdrawal_id, admin_id=payload.admin_id, reason=payload.reason,
        notifier=notifier,
    )
    return {"success": True, "withdrawal": WithdrawalResponse.model_validate(withdrawal)}


@admin_router.post("/withdrawals/{withdrawal_id}/fail")
def fail_withdrawal(
    withdrawal_id: int,
    payload: WithdrawalRejectRequest,
    session: Session = Depends(get_session),
    notifier=Depends(get_notifier),
):
    withdrawal = wallet_service.fail_withdrawal(
        session, withdrawal_id=withdrawal_id, admin_id=payload.admin_id, reason=payload.reason,
        notifier=notifier,
    )
    return {"success": True, "withdrawal": WithdrawalResponse.model_validate(withdrawal)}
