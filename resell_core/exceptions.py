"""
Domain errors raised by the order, return, payment and wallet services.

Every error carries a machine readable ``code``, the HTTP status the API
layer answers with, and a ``details`` mapping describing what was wrong
(invalid field, current/target state, days past the return window ...).
"""

from typing import Any, Dict, Optional


class ResellCoreError(Exception):
    """Base class for all domain errors."""

    code = "error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(ResellCoreError):
    code = "validation_error"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, **details: Any):
        if field is not None:
            details["field"] = field
        super().__init__(message, details)
        self.field = field


class ReturnWindowExpired(ValidationError):
    """Raised when a return is requested after the order's return window closed."""

    code = "return_window_expired"

    def __init__(self, order_id: int, days_expired: int):
        super().__init__(
            f"Return window for order {order_id} expired {days_expired} day(s) ago",
            field="return_window_end",
            order_id=order_id,
            days_expired=days_expired,
        )
        self.days_expired = days_expired


class InvalidTransition(ResellCoreError):
    """
    Raised when a state machine refuses a move.

    Attributes:
        entity: "order", "return" or "withdrawal"
        current: state the entity is in
        target: state that was requested
    """

    code = "invalid_transition"
    status_code = 409

    def __init__(self, entity: str, current: str, target: str, reason: Optional[str] = None):
        message = f"Cannot move {entity} from '{current}' to '{target}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            {"entity": entity, "current": current, "target": target},
        )
        self.entity = entity
        self.current = current
        self.target = target


class ShipmentAlreadyCreated(ResellCoreError):
    code = "shipment_already_created"
    status_code = 409

    def __init__(self, order_id: int, shipment_id: str):
        super().__init__(
            f"Order {order_id} already has shipment {shipment_id}; cancel the shipment first",
            {"order_id": order_id, "shipment_id": shipment_id},
        )


class InsufficientStock(ResellCoreError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, product_id: int, requested: int, available: Optional[int] = None):
        super().__init__(
            f"Insufficient stock for product {product_id}",
            {"product_id": product_id, "requested": requested, "available": available},
        )
        self.product_id = product_id


class InsufficientBalance(ResellCoreError):
    code = "insufficient_balance"
    status_code = 409

    def __init__(self, requested, available):
        super().__init__(
            f"Insufficient wallet balance: requested {requested}, available {available}",
            {"requested": str(requested), "available": str(available)},
        )


class NotFound(ResellCoreError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, key: Any):
        super().__init__(f"{entity} {key} not found", {"entity": entity, "key": key})


class SignatureMismatch(ResellCoreError):
    code = "signature_mismatch"
    status_code = 400


class PaymentNotCaptured(ResellCoreError):
    code = "payment_not_captured"
    status_code = 402

    def __init__(self, payment_id: str, gateway_status: Optional[str]):
        super().__init__(
            f"Payment {payment_id} is '{gateway_status}', expected captured or authorized",
            {"payment_id": payment_id, "gateway_status": gateway_status},
        )


class ExternalServiceError(ResellCoreError):
    """A provider call failed, timed out or returned something unusable."""

    code = "external_service_error"
    status_code = 502

    def __init__(self, service: str, message: str, **details: Any):
        details["service"] = service
        super().__init__(f"{service}: {message}", details)
        self.service = service

    def to_dict(self) -> Dict[str, Any]:
        # provider detail stays in the logs
        return {
            "success": False,
            "error": self.code,
            "message": f"{self.service} is unavailable right now, please try again",
            "details": {"service": self.service},
        }


class ConcurrencyConflict(ResellCoreError):
    """
    Raised when a version compare-and-swap loses against a concurrent writer.

    Attributes:
        entity: table name of the conflicting row
        entity_id: primary key of the row
        expected_version: version the caller loaded
    """

    code = "concurrency_conflict"
    status_code = 409

    def __init__(self, entity: str, entity_id: Any, expected_version: int):
        super().__init__(
            f"Concurrent update on {entity} {entity_id}: "
            f"expected version {expected_version}, but row was modified",
            {"entity": entity, "entity_id": entity_id, "expected_version": expected_version},
        )
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version
