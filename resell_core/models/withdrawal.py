from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime, JSON
from datetime import datetime
from typing import Optional
from decimal import Decimal

from resell_core.utils.clock import utcnow


class Withdrawal(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    withdrawal_no: str = Field(index=True, unique=True)
    user_id: int = Field(index=True)
    wallet_id: int = Field(foreign_key="wallet.id")

    amount: Decimal = Field(max_digits=12, decimal_places=2)
    # account_holder_name, account_number, ifsc_code, bank_name, account_type
    bank_details: dict = Field(default_factory=dict, sa_column=Column(JSON))

    status: str = Field(default="pending", index=True)
    version: int = Field(default=1)

    transaction_id: Optional[int] = Field(default=None, foreign_key="wallet_transaction.id")
    utr_number: Optional[str] = None
    rejection_reason: Optional[str] = None
    admin_notes: Optional[str] = None

    processed_by: Optional[int] = None
    processed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    completed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
