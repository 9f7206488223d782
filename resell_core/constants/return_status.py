class ReturnStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PICKUP_SCHEDULED = "pickup_scheduled"
    PICKED_UP = "picked_up"
    RECEIVED = "received"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


RETURN_TRANSITIONS = {
    "pending": ["approved", "rejected", "cancelled"],
    "approved": ["pickup_scheduled", "picked_up", "cancelled"],
    "pickup_scheduled": ["picked_up"],
    "picked_up": ["received"],
    "received": ["refunded"],
    "refunded": [],
    "rejected": [],
    "cancelled": [],
}

ACTIVE_RETURN_STATUSES = {"pending", "approved", "pickup_scheduled", "picked_up", "received"}

# order status mirrored when a return enters a status
ORDER_STATUS_FOR_RETURN = {
    "approved": "return_approved",
    "rejected": "return_rejected",
    "cancelled": "return_cancelled",
    "picked_up": "return_picked_up",
    "received": "return_received",
    "refunded": "returned",
}

RETURN_REASONS = {
    "damaged",
    "defective",
    "wrong_item",
    "size_issue",
    "quality_issue",
    "not_as_described",
    "changed_mind",
    "other",
}


class RefundMethod:
    WALLET = "wallet"
    ORIGINAL_PAYMENT = "original_payment"


class RefundStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
