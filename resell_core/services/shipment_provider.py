"""
Shipping aggregator seam.

``ShipmentProvider`` is what the fulfillment and return services call.
``ShiprocketClient`` implements it over the Shiprocket REST API with
``requests``. Its auth token is cached in memory and persisted in the
``shipping_settings`` table so restarts do not force a new login.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Protocol

import requests
from sqlmodel import Session, select

from resell_core.config import settings
from resell_core.exceptions import ExternalServiceError
from resell_core.models.order import Order
from resell_core.models.return_request import ReturnRequest
from resell_core.models.shipping_settings import ShippingSettings
from resell_core.utils.clock import utcnow

logger = logging.getLogger(__name__)


class ShipmentProvider(Protocol):
    def create_shipment(self, order: Order) -> dict:
        """Returns {"shipment_id", "provider_order_id"}."""

    def generate_tracking_number(self, shipment_id: str) -> dict:
        """Returns {"tracking_number", "courier_name"}."""

    def schedule_pickup(self, shipment_id: str) -> dict:
        """Returns {"pickup_scheduled_date"}."""

    def fetch_tracking(self, shipment_id: str) -> dict:
        """Returns {"status", "events": [{"status", "description", "location", "timestamp"}]}."""

    def create_return_shipment(self, return_request: ReturnRequest, order: Order) -> dict:
        """Returns {"shipment_id", "provider_order_id", "tracking_number", "courier_name"}."""

    def cancel_shipment(self, tracking_id: str) -> dict:
        ...


def parse_provider_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S", "%d %m %Y %H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(str(value)[:19], fmt)
        except ValueError:
            continue
    logger.warning(f"Unparseable provider timestamp: {value}")
    return None


def _json(response) -> dict:
    try:
        return response.json()
    except ValueError:
        return {}


class ShiprocketClient:
    def __init__(self, session_factory: Callable[[], Session], base_url: Optional[str] = None,
                 timeout: Optional[float] = None):
        self.session_factory = session_factory
        self.base_url = (base_url or settings.shiprocket_base_url).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None

    # -------------------------
    # AUTH
    # -------------------------

    def _load_settings(self, session: Session) -> ShippingSettings:
        row = session.exec(select(ShippingSettings).where(ShippingSettings.provider == "shiprocket")).first()
        if row is None:
            row = ShippingSettings(provider="shiprocket", pickup_location=settings.shiprocket_pickup_location)
            session.add(row)
            session.flush()
        return row

    def get_token(self) -> str:
        now = utcnow()
        if self._token and self._token_expires_at and now < self._token_expires_at:
            return self._token

        with self.session_factory() as session:
            row = self._load_settings(session)
            if row.token and row.token_expires_at and now < row.token_expires_at:
                self._token, self._token_expires_at = row.token, row.token_expires_at
                return self._token

            try:
                response = requests.post(
                    f"{self.base_url}/auth/login",
                    json={"email": settings.shiprocket_email, "password": settings.shiprocket_password},
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                logger.error(f"Shiprocket login error: {exc}")
                raise ExternalServiceError("shiprocket", "Failed to authenticate")

            body = _json(response)
            if response.status_code >= 400 or "token" not in body:
                logger.error(f"Shiprocket login failed ({response.status_code}): {response.text}")
                raise ExternalServiceError("shiprocket", "Failed to authenticate", status=response.status_code)

            self._token = body["token"]
            self._token_expires_at = now + timedelta(days=settings.shiprocket_token_ttl_days)

            row.token = self._token
            row.token_expires_at = self._token_expires_at
            row.updated_at = now
            session.add(row)
            session.commit()

        return self._token

    def _request(self, method: str, endpoint: str, payload: Optional[dict] = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self.get_token()}",
            "Content-Type": "application/json",
        }
        try:
            response = requests.request(
                method,
                f"{self.base_url}{endpoint}",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout:
            logger.error(f"Shiprocket {method} {endpoint} timed out")
            raise ExternalServiceError("shiprocket", f"{endpoint} timed out")
        except requests.RequestException as exc:
            logger.error(f"Shiprocket {method} {endpoint} failed: {exc}")
            raise ExternalServiceError("shiprocket", f"{endpoint} request failed")

        if response.status_code == 401:
            # stale token; the next call logs in again
            self._token = None
            self._token_expires_at = None
        if response.status_code >= 400:
            logger.error(f"Shiprocket API error ({response.status_code}) on {endpoint}: {response.text}")
            raise ExternalServiceError("shiprocket", f"{endpoint} returned {response.status_code}",
                                       status=response.status_code)
        return _json(response)

    # -------------------------
    # SHIPMENTS
    # -------------------------

    def create_shipment(self, order: Order) -> dict:
        address = order.shipping_address or {}
        with self.session_factory() as session:
            shipping = self._load_settings(session)
            session.commit()
            dims = (shipping.default_length_cm, shipping.default_breadth_cm, shipping.default_height_cm)
            unit_weight = shipping.default_weight_kg
            pickup_location = shipping.pickup_location or settings.shiprocket_pickup_location

        units = sum(item.quantity for item in order.items)
        payload = {
            "order_id": order.order_no,
            "order_date": order.created_at.strftime("%Y-%m-%d %H:%M"),
            "pickup_location": pickup_location,
            "billing_customer_name": address.get("name", ""),
            "billing_last_name": "",
            "billing_address": address.get("address_line1", ""),
            "billing_address_2": address.get("address_line2", ""),
            "billing_city": address.get("city", ""),
            "billing_pincode": address.get("pincode", ""),
            "billing_state": address.get("state", ""),
            "billing_country": address.get("country", "India"),
            "billing_email": address.get("email", ""),
            "billing_phone": address.get("phone", ""),
            "shipping_is_billing": True,
            "order_items": [
                {
                    "name": item.product_name,
                    "sku": str(item.product_id),
                    "units": item.quantity,
                    "selling_price": float(item.final_price),
                    "discount": 0,
                    "tax": 0,
                }
                for item in order.items
            ],
            "payment_method": "COD" if order.is_cod else "Prepaid",
            "shipping_charges": float(order.shipping),
            "sub_total": float(order.subtotal),
            "length": dims[0],
            "breadth": dims[1],
            "height": dims[2],
            "weight": unit_weight * max(units, 1),
        }
        data = self._request("POST", "/orders/create/adhoc", payload)
        if not data.get("shipment_id"):
            raise ExternalServiceError("shiprocket", "No shipment id in response", order_no=order.order_no)
        return {"shipment_id": str(data["shipment_id"]), "provider_order_id": str(data.get("order_id") or "")}

    def generate_tracking_number(self, shipment_id: str) -> dict:
        data = self._request("POST", "/courier/assign/awb", {"shipment_id": shipment_id})
        awb = (data.get("response") or {}).get("data") or {}
        if not awb.get("awb_code"):
            raise ExternalServiceError("shiprocket", "AWB assignment failed", shipment_id=shipment_id)
        return {"tracking_number": awb["awb_code"], "courier_name": awb.get("courier_name")}

    def schedule_pickup(self, shipment_id: str) -> dict:
        data = self._request("POST", "/courier/generate/pickup", {"shipment_id": [shipment_id]})
        response = data.get("response") or {}
        return {"pickup_scheduled_date": parse_provider_datetime(response.get("pickup_scheduled_date"))}

    def fetch_tracking(self, shipment_id: str) -> dict:
        data = self._request("GET", f"/courier/track/shipment/{shipment_id}")
        tracking = data.get("tracking_data") or data
        activities: List[dict] = tracking.get("shipment_track_activities") or []
        events = [
            {
                "status": (activity.get("sr-status-label") or activity.get("status") or "").upper(),
                "description": activity.get("activity"),
                "location": activity.get("location"),
                "timestamp": parse_provider_datetime(activity.get("date")),
            }
            for activity in activities
        ]
        track = (tracking.get("shipment_track") or [{}])[0]
        status = track.get("current_status") or (events[0]["status"] if events else None)
        return {
            "status": status.upper() if status else None,
            "delivered_at": parse_provider_datetime(track.get("delivered_date")),
            "events": events,
        }

    def create_return_shipment(self, return_request: ReturnRequest, order: Order) -> dict:
        address = order.shipping_address or {}
        warehouse = settings.warehouse_address
        payload = {
            "order_id": return_request.return_no,
            "order_date": return_request.created_at.strftime("%Y-%m-%d"),
            "pickup_customer_name": address.get("name", ""),
            "pickup_address": address.get("address_line1", ""),
            "pickup_address_2": address.get("address_line2", ""),
            "pickup_city": address.get("city", ""),
            "pickup_state": address.get("state", ""),
            "pickup_country": address.get("country", "India"),
            "pickup_pincode": address.get("pincode", ""),
            "pickup_email": address.get("email", ""),
            "pickup_phone": address.get("phone", ""),
            "shipping_customer_name": warehouse.get("name", ""),
            "shipping_address": warehouse.get("address", ""),
            "shipping_city": warehouse.get("city", ""),
            "shipping_state": warehouse.get("state", ""),
            "shipping_country": "India",
            "shipping_pincode": warehouse.get("pincode", ""),
            "shipping_email": warehouse.get("email", ""),
            "shipping_phone": warehouse.get("phone", ""),
            "order_items": [
                {
                    "name": f"Product {item.product_id}",
                    "sku": str(item.product_id),
                    "units": item.quantity,
                    "selling_price": float(item.unit_price),
                }
                for item in return_request.items
            ],
            "payment_method": "Prepaid",
            "sub_total": float(return_request.refund_amount),
            "length": 10,
            "breadth": 10,
            "height": 10,
            "weight": 0.5,
        }
        data = self._request("POST", "/orders/create/return", payload)
        if not data.get("shipment_id"):
            raise ExternalServiceError("shiprocket", "No return shipment id in response",
                                       return_no=return_request.return_no)
        shipment_id = str(data["shipment_id"])
        awb = self.generate_tracking_number(shipment_id)
        return {
            "shipment_id": shipment_id,
            "provider_order_id": str(data.get("order_id") or ""),
            "tracking_number": awb["tracking_number"],
            "courier_name": awb.get("courier_name"),
        }

    def cancel_shipment(self, tracking_id: str) -> dict:
        return self._request("POST", "/orders/cancel/shipment/awbs", {"awbs": [tracking_id]})
