from resell_core.notifications.events import EventType
from resell_core.notifications.channels import Channel


# events not listed here only get the in-app user notification
DEFAULT_RULE = {
    Channel.INAPP_USER: True,
}

NOTIFICATION_RULES = {

    EventType.ORDER_PLACED: {
        Channel.INAPP_USER: True,
        Channel.INAPP_ADMIN: True,
        Channel.EMAIL_ADMIN: True,
    },

    EventType.PAYMENT_SUCCESS: {
        Channel.INAPP_USER: True,
        Channel.INAPP_ADMIN: True,
    },

    EventType.PAYMENT_VERIFICATION_FAILED: {
        Channel.INAPP_ADMIN: True,
        Channel.EMAIL_ADMIN: True,
    },

    EventType.ORDER_CANCELLED: {
        Channel.INAPP_USER: True,
        Channel.INAPP_ADMIN: True,
    },

    EventType.DELIVERY_FAILED: {
        Channel.INAPP_USER: True,
        Channel.INAPP_ADMIN: True,
    },

    EventType.RETURN_REQUESTED: {
        Channel.INAPP_USER: True,
        Channel.INAPP_ADMIN: True,
        Channel.EMAIL_ADMIN: True,
    },

    EventType.RETURN_RECEIVED: {
        Channel.INAPP_USER: True,
        Channel.INAPP_ADMIN: True,
    },

    EventType.WITHDRAWAL_REQUESTED: {
        Channel.INAPP_USER: True,
        Channel.INAPP_ADMIN: True,
        Channel.EMAIL_ADMIN: True,
    },

    EventType.WALLET_FROZEN: {
        Channel.INAPP_USER: True,
        Channel.INAPP_ADMIN: True,
        Channel.EMAIL_ADMIN: True,
    },
}


def rules_for(event_type: EventType) -> dict:
    return NOTIFICATION_RULES.get(event_type, DEFAULT_RULE)
