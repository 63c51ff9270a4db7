"""Pydantic schemas for automation log entries."""
import enum
from datetime import datetime

from pydantic import BaseModel, Field


class LogStatus(enum.Enum):
    """Outcome recorded for an automation action."""

    SUCCESS = "success"
    PENDING = "pending"
    FAILED = "failed"


class BillingAction(enum.Enum):
    """Actions recorded by the billing scheduler."""

    BILLING_SCHEDULED = "BILLING_SCHEDULED"
    BILLING_CANCELLED = "BILLING_CANCELLED"
    INVOICE_GENERATED = "INVOICE_GENERATED"
    BILLING_FAILED = "BILLING_FAILED"
    OVERDUE_PROCESSED = "OVERDUE_PROCESSED"
    CREDITS_APPLIED = "CREDITS_APPLIED"


class ExpirationAction(enum.Enum):
    """Actions recorded by the expiration governor."""

    EXPIRATION_DETECTED = "EXPIRATION_DETECTED"
    AUTO_SUSPENDED = "AUTO_SUSPENDED"
    RENEWAL_DETECTED = "RENEWAL_DETECTED"
    AUTO_RESUMED = "AUTO_RESUMED"


class AutomationLogEntry(BaseModel):
    """Single append-only automation log record."""

    timestamp: datetime
    account_id: str
    action: BillingAction | ExpirationAction
    status: LogStatus
    details: str = Field(default="", description="Free-text outcome detail")


class AutomationLogCounts(BaseModel):
    """Status tally over an automation log."""

    total: int
    success: int
    pending: int
    failed: int
