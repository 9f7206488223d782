"""
Wallet ledger.

Every balance change is a WalletTransaction written in the same database
transaction as the balance update, and every update claims the wallet row
with a version compare-and-swap first, so concurrent writers to one wallet
serialize (the loser gets ConcurrencyConflict and retries on fresh state).
``balance_after`` is therefore exactly the balance produced by that entry.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from sqlmodel import Session, select

from resell_core.config import settings
from resell_core.constants.wallet import (
    WITHDRAWAL_TRANSITIONS,
    TransactionSource,
    TransactionStatus,
    TransactionType,
    WithdrawalStatus,
)
from resell_core.exceptions import (
    InsufficientBalance,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from resell_core.models.wallet import Wallet, WalletTransaction
from resell_core.models.withdrawal import Withdrawal
from resell_core.notifications import EventType, NotificationEvent, notify
from resell_core.services.concurrency import bump_version, dialect_insert, run_with_retry
from resell_core.services.sequence_service import next_withdrawal_no
from resell_core.utils.clock import utcnow
from resell_core.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)

BANK_DETAIL_FIELDS = ("account_holder_name", "account_number", "ifsc_code", "bank_name")


def get_or_create_wallet(session: Session, user_id: int) -> Wallet:
    """Wallets are created lazily on first use, exactly once per user."""
    wallet = session.exec(select(Wallet).where(Wallet.user_id == user_id)).first()
    if wallet:
        return wallet

    table = Wallet.__table__
    now = utcnow()
    session.execute(
        dialect_insert(session)(table)
        .values(
            user_id=user_id,
            balance=ZERO,
            pending_balance=ZERO,
            total_earned=ZERO,
            total_withdrawn=ZERO,
            is_frozen=False,
            version=1,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=[table.c.user_id])
    )
    return session.exec(select(Wallet).where(Wallet.user_id == user_id)).one()


def _entry(
    session: Session,
    wallet: Wallet,
    *,
    type: str,
    source: str,
    amount: Decimal,
    description: Optional[str],
    reference_id: Optional[str],
    reference_model: Optional[str],
    status: str = TransactionStatus.COMPLETED,
) -> WalletTransaction:
    txn = WalletTransaction(
        wallet_id=wallet.id,
        user_id=wallet.user_id,
        type=type,
        source=source,
        amount=amount,
        balance_after=wallet.balance,
        description=description,
        reference_id=reference_id,
        reference_model=reference_model,
        status=status,
    )
    wallet.updated_at = utcnow()
    session.add(wallet)
    session.add(txn)
    session.flush()
    return txn


def _positive(amount) -> Decimal:
    amount = to_money(amount)
    if amount <= ZERO:
        raise ValidationError("Amount must be greater than zero", field="amount")
    return amount


def credit(
    session: Session,
    *,
    user_id: int,
    amount,
    source: str,
    description: Optional[str] = None,
    reference_id: Optional[str] = None,
    reference_model: Optional[str] = None,
) -> WalletTransaction:
    amount = _positive(amount)
    wallet = get_or_create_wallet(session, user_id)
    bump_version(session, wallet)

    wallet.balance = to_money(wallet.balance + amount)
    if source == TransactionSource.RESELL_EARNING:
        wallet.total_earned = to_money(wallet.total_earned + amount)

    txn = _entry(
        session, wallet,
        type=TransactionType.CREDIT, source=source, amount=amount,
        description=description, reference_id=reference_id, reference_model=reference_model,
    )
    logger.info(f"Wallet {wallet.id} credited {amount} ({source}), balance {wallet.balance}")
    return txn


def debit(
    session: Session,
    *,
    user_id: int,
    amount,
    source: str,
    description: Optional[str] = None,
    reference_id: Optional[str] = None,
    reference_model: Optional[str] = None,
) -> WalletTransaction:
    amount = _positive(amount)
    wallet = get_or_create_wallet(session, user_id)
    if wallet.balance < amount:
        raise InsufficientBalance(amount, wallet.balance)

    bump_version(session, wallet)
    wallet.balance = to_money(wallet.balance - amount)
    if source == TransactionSource.REVERSAL:
        wallet.total_earned = max(ZERO, to_money(wallet.total_earned - amount))

    txn = _entry(
        session, wallet,
        type=TransactionType.DEBIT, source=source, amount=amount,
        description=description, reference_id=reference_id, reference_model=reference_model,
    )
    logger.info(f"Wallet {wallet.id} debited {amount} ({source}), balance {wallet.balance}")
    return txn


def admin_adjust(session: Session, *, user_id: int, amount, admin_id: int, reason: str) -> WalletTransaction:
    """Signed manual correction; positive credits, negative debits."""
    if not reason:
        raise ValidationError("A reason is required for adjustments", field="reason")
    amount = to_money(amount)
    if amount == ZERO:
        raise ValidationError("Adjustment amount cannot be zero", field="amount")
    description = f"Admin adjustment by {admin_id}: {reason}"

    def _adjust():
        if amount > ZERO:
            txn = credit(session, user_id=user_id, amount=amount,
                         source=TransactionSource.ADMIN_ADJUSTMENT, description=description)
        else:
            txn = debit(session, user_id=user_id, amount=-amount,
                        source=TransactionSource.ADMIN_ADJUSTMENT, description=description)
        session.commit()
        return txn

    return run_with_retry(session, _adjust)


def freeze_wallet(session: Session, *, user_id: int, reason: str) -> Wallet:
    wallet = get_or_create_wallet(session, user_id)
    bump_version(session, wallet)
    wallet.is_frozen = True
    wallet.freeze_reason = reason
    wallet.updated_at = utcnow()
    session.add(wallet)
    logger.warning(f"Wallet {wallet.id} of user {user_id} frozen: {reason}")
    return wallet


def frozen_event(wallet: Wallet) -> NotificationEvent:
    return NotificationEvent(
        user_id=wallet.user_id,
        type=EventType.WALLET_FROZEN,
        title="Wallet Frozen",
        message=f"Your wallet has been frozen: {wallet.freeze_reason}",
        data={"wallet_id": wallet.id, "balance": str(wallet.balance)},
        reference_id=str(wallet.id),
        reference_model="Wallet",
    )


def unfreeze_wallet(session: Session, *, user_id: int) -> Wallet:
    wallet = get_or_create_wallet(session, user_id)
    bump_version(session, wallet)
    wallet.is_frozen = False
    wallet.freeze_reason = None
    wallet.updated_at = utcnow()
    session.add(wallet)
    logger.info(f"Wallet {wallet.id} of user {user_id} unfrozen")
    return wallet


def list_transactions(session: Session, user_id: int, limit: int = 50, offset: int = 0) -> List[WalletTransaction]:
    return list(session.exec(
        select(WalletTransaction)
        .where(WalletTransaction.user_id == user_id)
        .order_by(WalletTransaction.id.desc())
        .offset(offset)
        .limit(limit)
    ).all())


def audit_wallet(session: Session, user_id: int) -> dict:
    """
    Replay the ledger of one wallet.

    Every entry moved the balance when it was written (a rejected
    withdrawal keeps its debit and gets a separate reversal credit), so
    the balance is the plain sum of credits minus debits and each
    ``balance_after`` must equal the running total at that point.
    """
    wallet = get_or_create_wallet(session, user_id)
    entries = session.exec(
        select(WalletTransaction)
        .where(WalletTransaction.wallet_id == wallet.id)
        .order_by(WalletTransaction.id)
    ).all()

    running = ZERO
    mismatches = []
    for entry in entries:
        if entry.type == TransactionType.CREDIT:
            running += entry.amount
        else:
            running -= entry.amount
        if to_money(running) != to_money(entry.balance_after):
            mismatches.append({
                "transaction_id": entry.id,
                "expected": str(to_money(running)),
                "recorded": str(entry.balance_after),
            })

    computed = to_money(running)
    return {
        "wallet_id": wallet.id,
        "balance": str(wallet.balance),
        "computed_balance": str(computed),
        "entries": len(entries),
        "mismatches": mismatches,
        "consistent": computed == to_money(wallet.balance) and not mismatches,
    }


# -------------------------
# WITHDRAWALS
# -------------------------

def request_withdrawal(session: Session, *, user_id: int, amount, bank_details: dict, notifier=None) -> Withdrawal:
    """
    Move ``amount`` from balance into pending_balance and open a withdrawal.

    The debit entry stays ``pending`` until an admin completes or rejects
    the withdrawal.
    """
    amount = to_money(amount)
    if amount < to_money(settings.min_withdrawal_amount):
        raise ValidationError(
            f"Minimum withdrawal amount is {settings.min_withdrawal_amount}",
            field="amount",
            minimum=str(settings.min_withdrawal_amount),
        )
    missing = [f for f in BANK_DETAIL_FIELDS if not bank_details.get(f)]
    if missing:
        raise ValidationError(f"Missing bank details: {', '.join(missing)}", field="bank_details", missing=missing)

    def _request():
        wallet = get_or_create_wallet(session, user_id)
        if wallet.is_frozen:
            raise ValidationError(f"Wallet is frozen: {wallet.freeze_reason}", field="wallet")
        if wallet.balance < amount:
            raise InsufficientBalance(amount, wallet.balance)

        bump_version(session, wallet)
        wallet.balance = to_money(wallet.balance - amount)
        wallet.pending_balance = to_money(wallet.pending_balance + amount)

        withdrawal = Withdrawal(
            withdrawal_no=next_withdrawal_no(session),
            user_id=user_id,
            wallet_id=wallet.id,
            amount=amount,
            bank_details=dict(bank_details),
        )
        session.add(withdrawal)
        session.flush()

        txn = _entry(
            session, wallet,
            type=TransactionType.DEBIT,
            source=TransactionSource.WITHDRAWAL,
            amount=amount,
            description=f"Withdrawal {withdrawal.withdrawal_no}",
            reference_id=str(withdrawal.id),
            reference_model="Withdrawal",
            status=TransactionStatus.PENDING,
        )
        withdrawal.transaction_id = txn.id
        session.add(withdrawal)
        session.commit()
        session.refresh(withdrawal)
        return withdrawal

    withdrawal = run_with_retry(session, _request)
    logger.info(f"Withdrawal {withdrawal.withdrawal_no} of {amount} requested by user {user_id}")
    notify(notifier, _withdrawal_event(
        withdrawal, EventType.WITHDRAWAL_REQUESTED, "Withdrawal Requested",
        f"Your withdrawal {withdrawal.withdrawal_no} of {amount} is awaiting processing.",
    ))
    return withdrawal


def _withdrawal_event(withdrawal: Withdrawal, event_type: EventType, title: str, message: str) -> NotificationEvent:
    return NotificationEvent(
        user_id=withdrawal.user_id,
        type=event_type,
        title=title,
        message=message,
        data={"withdrawal_no": withdrawal.withdrawal_no, "amount": str(withdrawal.amount), "status": withdrawal.status},
        reference_id=str(withdrawal.id),
        reference_model="Withdrawal",
    )


def _load_withdrawal(session: Session, withdrawal_id: int) -> Withdrawal:
    withdrawal = session.get(Withdrawal, withdrawal_id)
    if not withdrawal:
        raise NotFound("Withdrawal", withdrawal_id)
    return withdrawal


def _move_withdrawal(session: Session, withdrawal: Withdrawal, target: str, admin_id: Optional[int]):
    if target not in WITHDRAWAL_TRANSITIONS.get(withdrawal.status, []):
        raise InvalidTransition("withdrawal", withdrawal.status, target)
    bump_version(session, withdrawal)
    now = utcnow()
    withdrawal.status = target
    withdrawal.processed_by = admin_id
    withdrawal.processed_at = withdrawal.processed_at or now
    withdrawal.updated_at = now
    session.add(withdrawal)


def _set_entry_status(session: Session, withdrawal: Withdrawal, status: str):
    if withdrawal.transaction_id is None:
        return
    txn = session.get(WalletTransaction, withdrawal.transaction_id)
    if txn:
        txn.status = status
        session.add(txn)


def mark_withdrawal_processing(session: Session, *, withdrawal_id: int, admin_id: int) -> Withdrawal:
    def _mark():
        withdrawal = _load_withdrawal(session, withdrawal_id)
        _move_withdrawal(session, withdrawal, WithdrawalStatus.PROCESSING, admin_id)
        session.commit()
        session.refresh(withdrawal)
        return withdrawal

    return run_with_retry(session, _mark)


def complete_withdrawal(session: Session, *, withdrawal_id: int, admin_id: int, utr_number: str,
                        notifier=None) -> Withdrawal:
    if not utr_number:
        raise ValidationError("UTR number is required to complete a withdrawal", field="utr_number")

    def _complete():
        withdrawal = _load_withdrawal(session, withdrawal_id)
        _move_withdrawal(session, withdrawal, WithdrawalStatus.COMPLETED, admin_id)

        wallet = session.get(Wallet, withdrawal.wallet_id)
        bump_version(session, wallet)
        wallet.pending_balance = max(ZERO, to_money(wallet.pending_balance - withdrawal.amount))
        wallet.total_withdrawn = to_money(wallet.total_withdrawn + withdrawal.amount)
        wallet.updated_at = utcnow()
        session.add(wallet)

        withdrawal.utr_number = utr_number
        withdrawal.completed_at = utcnow()
        _set_entry_status(session, withdrawal, TransactionStatus.COMPLETED)

        session.commit()
        session.refresh(withdrawal)
        return withdrawal

    withdrawal = run_with_retry(session, _complete)
    logger.info(f"Withdrawal {withdrawal.withdrawal_no} completed, UTR {utr_number}")
    notify(notifier, _withdrawal_event(
        withdrawal, EventType.WITHDRAWAL_COMPLETED, "Withdrawal Completed",
        f"{withdrawal.amount} was transferred to your bank account (UTR {utr_number}).",
    ))
    return withdrawal


def _return_funds(session: Session, withdrawal: Withdrawal, target: str, admin_id: Optional[int], reason: str):
    _move_withdrawal(session, withdrawal, target, admin_id)
    withdrawal.rejection_reason = reason

    wallet = session.get(Wallet, withdrawal.wallet_id)
    bump_version(session, wallet)
    wallet.pending_balance = max(ZERO, to_money(wallet.pending_balance - withdrawal.amount))
    wallet.balance = to_money(wallet.balance + withdrawal.amount)

    _set_entry_status(session, withdrawal, TransactionStatus.FAILED)
    _entry(
        session, wallet,
        type=TransactionType.CREDIT,
        source=TransactionSource.REVERSAL,
        amount=withdrawal.amount,
        description=f"Withdrawal {withdrawal.withdrawal_no} {target}: {reason}",
        reference_id=str(withdrawal.id),
        reference_model="Withdrawal",
    )


def _give_back(session: Session, withdrawal_id: int, target: str, admin_id: Optional[int], reason: str) -> Withdrawal:
    def _run():
        withdrawal = _load_withdrawal(session, withdrawal_id)
        _return_funds(session, withdrawal, target, admin_id, reason)
        session.commit()
        session.refresh(withdrawal)
        return withdrawal

    return run_with_retry(session, _run)


def reject_withdrawal(session: Session, *, withdrawal_id: int, admin_id: int, reason: str,
                      notifier=None) -> Withdrawal:
    if not reason:
        raise ValidationError("Rejection reason is required", field="reason")
    withdrawal = _give_back(session, withdrawal_id, WithdrawalStatus.REJECTED, admin_id, reason)
    logger.info(f"Withdrawal {withdrawal.withdrawal_no} rejected: {reason}")
    notify(notifier, _withdrawal_event(
        withdrawal, EventType.WITHDRAWAL_REJECTED, "Withdrawal Rejected",
        f"Your withdrawal {withdrawal.withdrawal_no} was rejected: {reason}. The amount is back in your wallet.",
    ))
    return withdrawal


def fail_withdrawal(session: Session, *, withdrawal_id: int, admin_id: int, reason: str,
                    notifier=None) -> Withdrawal:
    """Bank transfer bounced after processing started."""
    withdrawal = _give_back(session, withdrawal_id, WithdrawalStatus.FAILED, admin_id, reason or "Transfer failed")
    logger.warning(f"Withdrawal {withdrawal.withdrawal_no} failed: {reason}")
    notify(notifier, _withdrawal_event(
        withdrawal, EventType.WITHDRAWAL_REJECTED, "Withdrawal Failed",
        f"The transfer for withdrawal {withdrawal.withdrawal_no} failed. The amount is back in your wallet.",
    ))
    return withdrawal
