import logging
from typing import Callable, Optional, Protocol

from sqlmodel import Session

from resell_core.config import settings
from resell_core.models.notifications import (
    Notification,
    NotificationChannel,
    NotificationStatus,
    RecipientRole,
)
from resell_core.notifications.channels import Channel
from resell_core.notifications.events import NotificationEvent
from resell_core.notifications.rules import rules_for
from resell_core.services.email_service import BrevoMailer
from resell_core.utils.template import render_admin_notification

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def emit(self, event: NotificationEvent) -> None:
        ...


def notify(notifier: Optional[Notifier], event: NotificationEvent) -> None:
    """Hand an event to ``notifier``; a failing notifier never fails the caller."""
    if notifier is None:
        return
    try:
        notifier.emit(event)
    except Exception:
        logger.exception(f"Notifier failed for {event.type.value} ({event.reference_model} {event.reference_id})")


class DispatchingNotifier:
    """
    Central notification dispatcher.

    Handles:
    - user in-app notifications
    - admin in-app notifications
    - admin email

    Uses its own session so notifications are written after, and
    independently of, the business transaction that produced them.
    """

    def __init__(self, session_factory: Callable[[], Session], admin_emails=None, mailer=None):
        self.session_factory = session_factory
        self.mailer = mailer or BrevoMailer()
        self.admin_emails = admin_emails if admin_emails is not None else settings.admin_emails

    def emit(self, event: NotificationEvent) -> None:
        rules = rules_for(event.type)

        with self.session_factory() as session:
            # -------------------------
            # USER IN-APP
            # -------------------------
            if rules.get(Channel.INAPP_USER) and event.user_id is not None:
                session.add(self._record(event, RecipientRole.customer, event.user_id))

            # -------------------------
            # ADMIN IN-APP
            # -------------------------
            if rules.get(Channel.INAPP_ADMIN):
                session.add(self._record(event, RecipientRole.admin, None))

            session.commit()

        # -------------------------
        # ADMIN EMAIL
        # -------------------------
        if rules.get(Channel.EMAIL_ADMIN) and self.admin_emails:
            html = render_admin_notification(event)
            self.mailer.send(list(self.admin_emails), event.title, html)

    @staticmethod
    def _record(event: NotificationEvent, role: RecipientRole, user_id: Optional[int]) -> Notification:
        return Notification(
            recipient_role=role,
            user_id=user_id,
            trigger_source=event.type.value,
            reference_id=event.reference_id,
            reference_model=event.reference_model,
            title=event.title,
            content=event.message,
            data=event.data or None,
            channel=NotificationChannel.system,
            status=NotificationStatus.sent,
        )
