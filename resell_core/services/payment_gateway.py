"""
Payment gateway seam.

Services only see the ``PaymentGateway`` protocol; ``RazorpayGateway`` is
the production implementation on top of the official razorpay SDK.
"""

import logging
from typing import Optional, Protocol

import razorpay
import requests

from resell_core.config import settings
from resell_core.exceptions import ExternalServiceError
from resell_core.models.order import Order
from resell_core.utils.money import to_paise

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    def create_payable_order(self, order: Order) -> dict:
        ...

    def fetch_payment(self, payment_id: str) -> dict:
        ...

    def verify_payment_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        ...

    def verify_webhook_signature(self, raw_body: bytes, signature: str) -> bool:
        ...


class RazorpayGateway:
    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.client = razorpay.Client(
            auth=(key_id or settings.RAZORPAY_KEY_ID, key_secret or settings.RAZORPAY_KEY_SECRET)
        )
        self.webhook_secret = webhook_secret or settings.razorpay_webhook_secret
        self.timeout = timeout or settings.http_timeout_seconds

    def create_payable_order(self, order: Order) -> dict:
        try:
            return self.client.order.create(
                {
                    "amount": to_paise(order.total),  # paise
                    "currency": settings.currency,
                    "receipt": order.order_no,
                    "notes": {"order_id": str(order.id), "order_no": order.order_no},
                },
                timeout=self.timeout,
            )
        except (requests.RequestException, razorpay.errors.BadRequestError,
                razorpay.errors.ServerError, razorpay.errors.GatewayError) as exc:
            logger.error(f"Razorpay order creation failed for {order.order_no}: {exc}")
            raise ExternalServiceError("razorpay", "Failed to create payment order", order_no=order.order_no)

    def fetch_payment(self, payment_id: str) -> dict:
        try:
            return self.client.payment.fetch(payment_id, timeout=self.timeout)
        except requests.Timeout:
            logger.error(f"Razorpay payment fetch timed out for {payment_id}")
            raise ExternalServiceError("razorpay", "Timed out fetching payment", payment_id=payment_id)
        except (requests.RequestException, razorpay.errors.BadRequestError,
                razorpay.errors.ServerError, razorpay.errors.GatewayError) as exc:
            logger.error(f"Razorpay payment fetch failed for {payment_id}: {exc}")
            raise ExternalServiceError("razorpay", "Failed to fetch payment", payment_id=payment_id)

    def verify_payment_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        try:
            self.client.utility.verify_payment_signature({
                "razorpay_order_id": gateway_order_id,
                "razorpay_payment_id": payment_id,
                "razorpay_signature": signature,
            })
        except razorpay.errors.SignatureVerificationError:
            return False
        return True

    def verify_webhook_signature(self, raw_body: bytes, signature: str) -> bool:
        if not signature or not self.webhook_secret:
            return False
        try:
            self.client.utility.verify_webhook_signature(
                raw_body.decode("utf-8"), signature, self.webhook_secret
            )
        except (razorpay.errors.SignatureVerificationError, UnicodeDecodeError):
            return False
        return True
