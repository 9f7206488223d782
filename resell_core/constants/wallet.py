class TransactionType:
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionSource:
    RESELL_EARNING = "resell_earning"
    WITHDRAWAL = "withdrawal"
    REFUND = "refund"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    REVERSAL = "reversal"


class TransactionStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class WithdrawalStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"


WITHDRAWAL_TRANSITIONS = {
    "pending": ["processing", "completed", "rejected"],
    "processing": ["completed", "failed", "rejected"],
    "completed": [],
    "rejected": [],
    "failed": [],
}
