from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime, JSON

from resell_core.utils.clock import utcnow


# ---------- ENUMS (SAFE FOR SQLMODEL) ----------

class RecipientRole(str, Enum):
    admin = "admin"
    customer = "customer"
    reseller = "reseller"


class NotificationChannel(str, Enum):
    email = "email"
    system = "system"


class NotificationStatus(str, Enum):
    sent = "sent"
    failed = "failed"


# ---------- MODEL ----------

class Notification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    recipient_role: RecipientRole
    user_id: Optional[int] = Field(default=None, index=True)

    trigger_source: str  # event type, e.g. order_delivered
    reference_id: Optional[str] = None
    reference_model: Optional[str] = None

    title: str
    content: str
    data: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    channel: NotificationChannel = NotificationChannel.system
    status: NotificationStatus = NotificationStatus.sent
    is_read: bool = False

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
