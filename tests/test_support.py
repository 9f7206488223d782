from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import DateTime
from sqlmodel import select

from resell_core.exceptions import InvalidTransition, NotFound, ReturnWindowExpired
from resell_core.models.cart import CartItem
from resell_core.models.notifications import Notification, RecipientRole
from resell_core.models.order import Order
from resell_core.models.product import Product
from resell_core.models.wallet import WalletTransaction
from resell_core.notifications import DispatchingNotifier, EventType, NotificationEvent, notify
from resell_core.services import email_service, sequence_service
from resell_core.services.email_service import BrevoMailer, is_valid_email
from resell_core.utils.clock import to_naive_utc
from resell_core.utils.money import to_money, to_paise
from resell_core.utils.template import render_admin_notification

from conftest import RESELLER_ID


def _event(event_type=EventType.WITHDRAWAL_REQUESTED):
    return NotificationEvent(
        user_id=RESELLER_ID,
        type=event_type,
        title="Withdrawal Requested",
        message="Your withdrawal of 200.00 is being processed.",
        data={"withdrawal_no": "WD2026101900001"},
        reference_id="1",
        reference_model="Withdrawal",
    )


# ============================================================================
# SEQUENCES
# ============================================================================


def test_numbers_increment_within_a_day(session):
    day = datetime(2026, 10, 19, 8, 0)

    first = sequence_service.next_order_no(session, day)
    second = sequence_service.next_order_no(session, day)

    assert first == "ORD2026101900001"
    assert second == "ORD2026101900002"


def test_numbers_restart_each_day_and_prefix(session):
    sequence_service.next_order_no(session, datetime(2026, 10, 19))

    assert sequence_service.next_order_no(session, datetime(2026, 10, 20)) == "ORD2026102000001"
    assert sequence_service.next_return_no(session, datetime(2026, 10, 19)) == "RET2026101900001"
    assert sequence_service.next_withdrawal_no(session, datetime(2026, 10, 19)) == "WD2026101900001"


# ============================================================================
# NOTIFICATIONS
# ============================================================================


class RecordingMailer:
    def __init__(self):
        self.sent = []

    def send(self, to, subject, html):
        self.sent.append({"to": to, "subject": subject, "html": html})
        return True


class TestDispatchingNotifier:
    def test_writes_user_and_admin_rows(self, session, session_factory):
        mailer = RecordingMailer()

        DispatchingNotifier(session_factory, admin_emails=["ops@example.com"], mailer=mailer).emit(_event())

        rows = session.exec(select(Notification).order_by(Notification.id)).all()
        assert [r.recipient_role for r in rows] == [RecipientRole.customer, RecipientRole.admin]
        assert rows[0].user_id == RESELLER_ID
        assert rows[0].trigger_source == "withdrawal_requested"
        assert rows[1].user_id is None
        assert mailer.sent[0]["to"] == ["ops@example.com"]
        assert mailer.sent[0]["subject"] == "Withdrawal Requested"
        assert "WD2026101900001" in mailer.sent[0]["html"]

    def test_default_rule_only_notifies_the_user(self, session, session_factory):
        mailer = RecordingMailer()

        DispatchingNotifier(session_factory, admin_emails=["ops@example.com"], mailer=mailer).emit(
            _event(EventType.RETURN_APPROVED)
        )

        rows = session.exec(select(Notification)).all()
        assert len(rows) == 1
        assert rows[0].recipient_role == RecipientRole.customer
        assert mailer.sent == []


def test_failing_notifier_never_breaks_the_caller():
    class Broken:
        def emit(self, event):
            raise RuntimeError("smtp down")

    notify(Broken(), _event())
    notify(None, _event())


def test_admin_email_template_renders_event_data():
    event = _event()
    event.message = "Withdrawal <b>WD1</b> requested"

    html = render_admin_notification(event)

    assert "Resell Store: Withdrawal Requested" in html
    assert "&lt;b&gt;" in html
    assert "WD2026101900001" in html


def test_email_validation():
    assert is_valid_email("ops@example.com")
    assert is_valid_email(["a@example.com", "b@example.org"])
    assert not is_valid_email("not-an-email")
    assert not is_valid_email("")


class TestBrevoMailer:
    def test_skips_without_api_key(self, monkeypatch):
        monkeypatch.setattr(email_service.requests, "post", lambda *a, **kw: pytest.fail("no request expected"))
        assert BrevoMailer(api_key="").send("ops@example.com", "Hi", "<p>x</p>") is False

    def test_posts_only_valid_recipients(self, monkeypatch):
        calls = []

        class Response:
            status_code = 201
            text = "created"

        def _post(url, json, headers, timeout):
            calls.append(json)
            return Response()

        monkeypatch.setattr(email_service.requests, "post", _post)

        sent = BrevoMailer(api_key="key").send(["ops@example.com", "broken"], "Hi", "<p>x</p>")

        assert sent is True
        assert calls[0]["to"] == [{"email": "ops@example.com"}]

    def test_transport_errors_are_reported_not_raised(self, monkeypatch):
        def _post(*args, **kwargs):
            raise email_service.requests.ConnectionError("refused")

        monkeypatch.setattr(email_service.requests, "post", _post)
        assert BrevoMailer(api_key="key").send("ops@example.com", "Hi", "<p>x</p>") is False


# ============================================================================
# ERRORS / HELPERS
# ============================================================================


def test_errors_serialize_with_details():
    body = InvalidTransition("return", "requested", "received").to_dict()
    assert body["success"] is False
    assert body["error"] == "invalid_transition"
    assert body["details"] == {"entity": "return", "current": "requested", "target": "received"}

    assert NotFound("Order", 7).status_code == 404

    expired = ReturnWindowExpired(order_id=3, days_expired=2)
    assert expired.status_code == 400
    assert expired.details["days_expired"] == 2
    assert expired.details["field"] == "return_window_end"


def test_money_helpers():
    assert to_money("10.005") == Decimal("10.01")
    assert to_money(3) == Decimal("3.00")
    assert to_paise("550.50") == 55050


def test_aware_datetimes_are_stored_as_naive_utc():
    ist = timezone(timedelta(hours=5, minutes=30))
    assert to_naive_utc(datetime(2026, 10, 19, 10, 0, tzinfo=ist)) == datetime(2026, 10, 19, 4, 30)


def test_timestamp_columns_are_plain_datetime(session):
    for column in (Order.__table__.c.created_at, Order.__table__.c.delivered_at,
                   CartItem.__table__.c.updated_at, WalletTransaction.__table__.c.created_at):
        assert type(column.type) is DateTime
        assert column.type.timezone is False

    product = Product(name="Steel Bottle", base_price=Decimal("150.00"), stock=3)
    session.add(product)
    session.commit()
    session.expire_all()

    stored = session.get(Product, product.id).created_at
    assert stored.tzinfo is None
