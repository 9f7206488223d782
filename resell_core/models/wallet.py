from sqlmodel import SQLModel, Field
from sqlalchemy import DateTime
from datetime import datetime
from typing import Optional
from decimal import Decimal

from resell_core.utils.clock import utcnow


class Wallet(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(unique=True, index=True)

    balance: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    pending_balance: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    total_earned: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    total_withdrawn: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)

    is_frozen: bool = False
    freeze_reason: Optional[str] = None

    version: int = Field(default=1)

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class WalletTransaction(SQLModel, table=True):
    """Append-only ledger entry. Rows are never updated except for ``status``."""

    __tablename__ = "wallet_transaction"

    id: Optional[int] = Field(default=None, primary_key=True)
    wallet_id: int = Field(foreign_key="wallet.id", index=True)
    user_id: int = Field(index=True)

    type: str  # credit / debit
    source: str  # resell_earning / withdrawal / refund / admin_adjustment / reversal
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    balance_after: Decimal = Field(max_digits=12, decimal_places=2)

    description: Optional[str] = None
    reference_id: Optional[str] = Field(default=None, index=True)
    reference_model: Optional[str] = None
    status: str = Field(default="completed")

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
