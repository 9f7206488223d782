from datetime import datetime, timedelta

import pytest
from sqlmodel import select

from resell_core.models.order import Order
from resell_core.models.product import Product
from resell_core.models.tracking_event import TrackingEvent
from resell_core.notifications import EventType
from resell_core.services import fulfillment_service, order_service, return_service
from resell_core.services.fulfillment_service import normalize_status, route

from conftest import ADMIN_ID


@pytest.fixture
def shipped(session, place_order, provider, advance):
    order = place_order()
    order = order_service.create_shipment(session, provider, order_id=order.id, admin_id=ADMIN_ID)
    return advance(order, "packed", "shipped")


def _reload(session, order_id):
    session.expire_all()
    return session.get(Order, order_id)


class TestRouting:
    def test_normalize_status(self):
        assert normalize_status("out_for_delivery") == "OUT FOR DELIVERY"
        assert normalize_status("  In   Transit ") == "IN TRANSIT"
        assert normalize_status(None) == ""

    def test_route_walks_fulfillment_states(self):
        assert route("confirmed", "delivered") == ["processing", "packed", "shipped", "delivered"]
        assert route("shipped", "cancelled") == ["delivery_failed", "cancelled"]
        assert route("delivered", "delivered") == []

    def test_no_route_out_of_terminal_states(self):
        assert route("cancelled", "delivered") is None
        assert route("shipped", "returned") is None


class TestShipmentWebhook:
    def test_delivery_is_idempotent(self, session, shipped, notifier):
        delivered_at = datetime(2026, 10, 1, 14, 30)

        first = fulfillment_service.apply_shipment_update(
            session, awb=shipped.tracking_number, status="DELIVERED", occurred_at=delivered_at, notifier=notifier
        )
        order = _reload(session, shipped.id)
        history_count = len(order_service.get_history(session, order.id))
        window_end = order.return_window_end

        second = fulfillment_service.apply_shipment_update(
            session, awb=shipped.tracking_number, status="DELIVERED", occurred_at=delivered_at, notifier=notifier
        )

        assert first["changed"] is True
        assert second["changed"] is False
        order = _reload(session, shipped.id)
        assert order.status == "delivered"
        assert order.delivered_at == delivered_at
        assert order.return_window_end == window_end == delivered_at + timedelta(days=7)
        assert len(order_service.get_history(session, order.id)) == history_count
        assert notifier.types().count(EventType.ORDER_DELIVERED) == 1
        events = session.exec(select(TrackingEvent).where(TrackingEvent.order_id == order.id)).all()
        assert len(events) == 1

    def test_skipped_states_are_filled_in(self, session, place_order, provider):
        order = place_order()
        order = order_service.create_shipment(session, provider, order_id=order.id, admin_id=ADMIN_ID)

        fulfillment_service.apply_shipment_update(session, awb=order.tracking_number, status="OUT FOR DELIVERY")

        statuses = [h.to_status for h in order_service.get_history(session, order.id)]
        assert statuses == ["confirmed", "processing", "packed", "shipped", "out_for_delivery"]

    def test_rto_cancels_and_restores_stock(self, session, shipped):
        product_id = shipped.items[0].product_id

        fulfillment_service.apply_shipment_update(session, awb=shipped.tracking_number, status="RTO INITIATED")

        order = _reload(session, shipped.id)
        assert order.status == "cancelled"
        assert order.stock_restored is True
        assert session.get(Product, product_id).stock == 10

    def test_unmapped_status_is_only_logged(self, session, shipped):
        result = fulfillment_service.apply_shipment_update(
            session, awb=shipped.tracking_number, status="REACHED HUB", location="Pune"
        )
        assert result["changed"] is False
        order = _reload(session, shipped.id)
        assert order.status == "shipped"
        event = session.exec(select(TrackingEvent).where(TrackingEvent.order_id == order.id)).one()
        assert event.location == "Pune"

    def test_impossible_move_is_acknowledged(self, session, shipped):
        result = fulfillment_service.apply_shipment_update(session, awb=shipped.tracking_number, status="RETURNED")
        assert result["success"] is True
        assert _reload(session, shipped.id).status == "shipped"

    def test_unknown_awb_is_acknowledged(self, session):
        result = fulfillment_service.apply_shipment_update(session, awb="NOPE123", status="DELIVERED")
        assert result == {"success": True, "message": "Shipment not found"}

    def test_order_found_by_order_number(self, session, place_order):
        order = place_order()
        result = fulfillment_service.apply_shipment_update(
            session, awb=None, order_no=order.order_no, status="PICKED UP"
        )
        assert result["status"] == "shipped"


class TestReturnShipmentWebhook:
    def test_return_parcel_scans_drive_the_return(self, session, delivered_order, provider):
        order = delivered_order()
        item = order.items[0]
        ret = return_service.create_return(
            session, order_id=order.id, user_id=order.user_id,
            items=[{"order_item_id": item.id, "quantity": 1}], reason="defective",
        )
        return_service.approve_return(session, return_id=ret.id, admin_id=ADMIN_ID)
        ret = return_service.schedule_return_pickup(session, provider, return_id=ret.id, admin_id=ADMIN_ID)

        fulfillment_service.apply_shipment_update(session, awb=ret.tracking_number, status="PICKED UP")
        fulfillment_service.apply_shipment_update(session, awb=ret.tracking_number, status="DELIVERED")
        # late pickup scan after receipt
        late = fulfillment_service.apply_shipment_update(session, awb=ret.tracking_number, status="IN TRANSIT")

        session.expire_all()
        ret = return_service.get_return(session, ret.id)
        assert ret.status == "received"
        assert late["message"] == "Already applied"
        assert _reload(session, order.id).status == "return_received"


class TestTrackingPoll:
    def test_poll_delivers_with_provider_timestamp(self, session, shipped, provider, notifier):
        delivered_at = datetime(2026, 10, 2, 9, 0)
        provider.tracking[shipped.shipment_id] = {
            "status": "DELIVERED",
            "delivered_at": delivered_at,
            "events": [
                {"status": "DELIVERED", "description": "Delivered", "location": "Bengaluru",
                 "timestamp": delivered_at},
                {"status": "IN TRANSIT", "description": "Left hub", "location": "Hosur",
                 "timestamp": delivered_at - timedelta(hours=6)},
            ],
        }

        result = fulfillment_service.refresh_order_tracking(session, provider, shipped, notifier)

        assert result["changed"] is True
        order = _reload(session, shipped.id)
        assert order.status == "delivered"
        assert order.delivered_at == delivered_at
        assert order.last_tracked_at is not None
        events = session.exec(select(TrackingEvent).where(TrackingEvent.order_id == order.id)).all()
        assert {e.status for e in events} == {"DELIVERED", "IN TRANSIT"}
        assert len(events) == 2

    def test_poll_without_shipment(self, session, place_order, provider):
        order = place_order()
        result = fulfillment_service.refresh_order_tracking(session, provider, order)
        assert result["success"] is False
        assert provider.calls == []
