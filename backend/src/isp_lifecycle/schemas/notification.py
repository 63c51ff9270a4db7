"""Pydantic schemas for customer notifications."""
import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class NotificationType(enum.Enum):
    """Lifecycle events that produce a customer message."""

    INVOICE = "invoice"
    PAYMENT_REMINDER = "payment-reminder"
    OVERDUE = "overdue"
    PAYMENT_RECEIVED = "payment-received"
    QUOTA_ALERT = "quota-alert"
    SUSPENDED = "suspended"
    RESUMED = "resumed"


class NotificationChannel(enum.Enum):
    SMS = "sms"
    WHATSAPP = "whatsapp"
    BOTH = "both"


class DeliveryStatus(enum.Enum):
    SENT = "sent"
    FAILED = "failed"
    PENDING = "pending"


class LifecycleEvent(BaseModel):
    """Event handed to a notification sink."""

    type: NotificationType
    account_id: str
    customer_phone: str = ""
    customer_name: str = ""
    variables: dict[str, Any] = Field(default_factory=dict)


class NotificationTemplate(BaseModel):
    """Per-type SMS and WhatsApp message templates."""

    id: str
    type: NotificationType
    sms_template: str
    whatsapp_template: str
    enabled: bool = True


class NotificationTemplateUpdate(BaseModel):
    """Partial template update (all fields optional)."""

    sms_template: str | None = None
    whatsapp_template: str | None = None
    enabled: bool | None = None


class NotificationLog(BaseModel):
    """Delivery record for one notification."""

    id: str
    timestamp: datetime
    account_id: str
    customer_phone: str
    notification_type: NotificationType
    channel: NotificationChannel
    status: DeliveryStatus
    message: str
    error: str | None = None


class NotificationStats(BaseModel):
    total_sent: int
    total_failed: int
    today_sent: int
