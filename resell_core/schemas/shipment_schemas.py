from pydantic import BaseModel
from typing import Optional


class ShipmentWebhookPayload(BaseModel):
    awb: Optional[str] = None
    current_status: Optional[str] = None
    shipment_status: Optional[str] = None
    order_id: Optional[str] = None
    location: Optional[str] = None
    updated_at: Optional[str] = None
    activity: Optional[str] = None

    class Config:
        extra = "allow"
