from decimal import Decimal
from typing import Dict, List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./resell_core.db"
    db_echo: bool = False

    env: str = "local"
    cors_origins: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # business rules
    return_window_days: int = 7
    min_withdrawal_amount: Decimal = Decimal("100")
    tax_rate_percent: Decimal = Decimal("18")
    free_shipping_threshold: Decimal = Decimal("500")
    default_shipping_fee: Decimal = Decimal("50")
    unpaid_order_expiry_hours: int = 24
    stale_cart_days: int = 30
    currency: str = "INR"

    # razorpay
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    razorpay_webhook_secret: str = ""
    verify_payment_with_gateway: bool = True

    # shiprocket
    shiprocket_base_url: str = "https://apiv2.shiprocket.in/v1/external"
    shiprocket_email: str = ""
    shiprocket_password: str = ""
    shiprocket_token_ttl_days: int = 10
    shiprocket_pickup_location: str = "Primary"
    shiprocket_webhook_token: str = ""
    # return parcels are shipped back here: name, address, city, state, pincode, email, phone
    warehouse_address: Dict[str, str] = {}

    # mail (brevo)
    BREVO_API_KEY: str = ""
    MAIL_FROM: str = "no-reply@example.com"
    STORE_NAME: str = "Resell Store"
    admin_emails: List[str] = []

    http_timeout_seconds: float = 10

    # scheduler
    scheduler_enabled: bool = True
    earning_maturation_interval_minutes: int = 60
    tracking_sync_interval_minutes: int = 30
    unpaid_expiry_interval_minutes: int = 60
    cart_cleanup_interval_hours: int = 24

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "allow"

settings = Settings()
