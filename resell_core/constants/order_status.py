class OrderStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    PACKED = "packed"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERY_FAILED = "delivery_failed"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    REFUNDED = "refunded"
    RETURN_INITIATED = "return_initiated"
    RETURN_APPROVED = "return_approved"
    RETURN_REJECTED = "return_rejected"
    RETURN_CANCELLED = "return_cancelled"
    RETURN_PICKED_UP = "return_picked_up"
    RETURN_RECEIVED = "return_received"
    RETURNED = "returned"


ALLOWED_TRANSITIONS = {
    "pending": ["confirmed", "failed", "cancelled"],
    "confirmed": ["processing", "cancelled"],
    "processing": ["packed", "cancelled"],
    "packed": ["shipped", "cancelled"],
    "shipped": ["out_for_delivery", "delivered", "delivery_failed"],
    "out_for_delivery": ["delivered", "delivery_failed"],
    "delivery_failed": ["out_for_delivery", "cancelled"],
    "delivered": ["return_initiated", "completed"],
    "return_initiated": ["return_approved", "return_rejected", "return_cancelled"],
    "return_approved": ["return_picked_up", "return_cancelled"],
    "return_picked_up": ["return_received"],
    "return_received": ["returned", "refunded"],
    "return_cancelled": ["delivered"],
    "completed": [],
    "cancelled": [],
    "failed": [],
    "refunded": [],
    "returned": [],
    "return_rejected": [],
}

TERMINAL_STATUSES = {s for s, targets in ALLOWED_TRANSITIONS.items() if not targets}

# customer / admin cancellation is only possible before the parcel is packed
CANCELLABLE_STATUSES = {"pending", "confirmed", "processing"}

# statuses that give reserved stock back
STOCK_RESTORING_STATUSES = {"cancelled", "failed", "refunded"}

# status -> Order column stamped the first time the status is entered
STATUS_TIMESTAMP_FIELDS = {
    "confirmed": "confirmed_at",
    "processing": "processing_at",
    "packed": "packed_at",
    "shipped": "shipped_at",
    "out_for_delivery": "out_for_delivery_at",
    "delivered": "delivered_at",
    "completed": "completed_at",
    "cancelled": "cancelled_at",
    "failed": "failed_at",
    "refunded": "refunded_at",
    "returned": "returned_at",
}


class PaymentMethod:
    COD = "cod"
    UPI = "upi"
    CARD = "card"
    NETBANKING = "netbanking"
    WALLET = "wallet"

    ALL = {"cod", "upi", "card", "netbanking", "wallet"}


class PaymentStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    VERIFICATION_FAILED = "verification_failed"


class EarningStatus:
    PENDING = "pending"
    CREDITED = "credited"
    CANCELLED = "cancelled"
