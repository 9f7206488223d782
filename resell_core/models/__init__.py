from resell_core.models.product import Product
from resell_core.models.cart import CartItem
from resell_core.models.order_item import OrderItem
from resell_core.models.order_status_history import OrderStatusHistory
from resell_core.models.tracking_event import TrackingEvent
from resell_core.models.order import Order
from resell_core.models.return_request import ReturnRequest, ReturnItem
from resell_core.models.wallet import Wallet, WalletTransaction
from resell_core.models.withdrawal import Withdrawal
from resell_core.models.sequence import DailySequence
from resell_core.models.shipping_settings import ShippingSettings
from resell_core.models.notifications import Notification

__all__ = [
    "Product",
    "CartItem",
    "OrderItem",
    "OrderStatusHistory",
    "TrackingEvent",
    "Order",
    "ReturnRequest",
    "ReturnItem",
    "Wallet",
    "WalletTransaction",
    "Withdrawal",
    "DailySequence",
    "ShippingSettings",
    "Notification",
]
