from .events import EventType, NotificationEvent
from .dispatcher import DispatchingNotifier, Notifier, notify

__all__ = [
    "EventType",
    "NotificationEvent",
    "DispatchingNotifier",
    "Notifier",
    "notify",
]
