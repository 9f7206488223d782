from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal


class BankDetails(BaseModel):
    account_holder_name: str
    account_number: str
    ifsc_code: str
    bank_name: str
    account_type: str = "savings"


class WithdrawalCreateRequest(BaseModel):
    user_id: int
    amount: Decimal = Field(gt=0)
    bank_details: BankDetails


class WithdrawalCompleteRequest(BaseModel):
    admin_id: int
    utr_number: str


class WithdrawalRejectRequest(BaseModel):
    admin_id: int
    reason: str


class WalletFreezeRequest(BaseModel):
    admin_id: int
    reason: str


class WalletAdjustRequest(BaseModel):
    admin_id: int
    amount: Decimal
    reason: str


class WalletResponse(BaseModel):
    user_id: int
    balance: Decimal
    pending_balance: Decimal
    total_earned: Decimal
    total_withdrawn: Decimal
    is_frozen: bool
    freeze_reason: Optional[str] = None

    class Config:
        from_attributes = True


class WalletTransactionResponse(BaseModel):
    id: int
    type: str
    source: str
    amount: Decimal
    balance_after: Decimal
    description: Optional[str] = None
    reference_id: Optional[str] = None
    reference_model: Optional[str] = None
    status: str
    created_at: datetime

    class Config:
        from_attributes = True


class WithdrawalResponse(BaseModel):
    id: int
    withdrawal_no: str
    user_id: int
    amount: Decimal
    status: str
    utr_number: Optional[str] = None
    rejection_reason: Optional[str] = None
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
