from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class EventType(str, Enum):
    ORDER_PLACED = "order_placed"
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_VERIFICATION_FAILED = "payment_verification_failed"
    ORDER_STATUS_CHANGED = "order_status_changed"
    ORDER_SHIPPED = "order_shipped"
    ORDER_DELIVERED = "order_delivered"
    DELIVERY_FAILED = "delivery_failed"
    ORDER_CANCELLED = "order_cancelled"
    ORDER_COMPLETED = "order_completed"

    RETURN_REQUESTED = "return_requested"
    RETURN_APPROVED = "return_approved"
    RETURN_REJECTED = "return_rejected"
    RETURN_CANCELLED = "return_cancelled"
    RETURN_PICKUP_SCHEDULED = "return_pickup_scheduled"
    RETURN_PICKED_UP = "return_picked_up"
    RETURN_RECEIVED = "return_received"
    REFUND_PROCESSED = "refund_processed"

    EARNING_CREDITED = "earning_credited"
    EARNING_REVERSED = "earning_reversed"
    WITHDRAWAL_REQUESTED = "withdrawal_requested"
    WITHDRAWAL_COMPLETED = "withdrawal_completed"
    WITHDRAWAL_REJECTED = "withdrawal_rejected"
    WALLET_FROZEN = "wallet_frozen"


@dataclass
class NotificationEvent:
    user_id: Optional[int]
    type: EventType
    title: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    reference_id: Optional[str] = None
    reference_model: Optional[str] = None
