"""Pydantic schemas for subscriber accounts."""
import enum
from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class AccountStatus(enum.Enum):
    """Subscriber service status."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    CLOSED = "closed"
    PAUSED = "paused"


# Statuses a renewal can bring back to ACTIVE
INACTIVE_STATUSES = frozenset({AccountStatus.SUSPENDED, AccountStatus.CLOSED, AccountStatus.PAUSED})

# Statuses for which a renewal attempts to resume service
RESUMABLE_STATUSES = frozenset({AccountStatus.SUSPENDED, AccountStatus.CLOSED})


class Account(BaseModel):
    """
    Read-only view of a subscriber account.

    Owned by the external account repository. The automation engine reads
    these fields and requests status changes only through lifecycle actions.
    """

    id: str = Field(..., min_length=1, description="Account identifier")
    account_number: str = Field(default="", description="Human-facing account number")
    customer_name: str = Field(default="", description="Subscriber name")
    customer_phone: str = Field(default="", description="Subscriber phone number (E.164)")
    status: AccountStatus = Field(default=AccountStatus.ACTIVE, description="Service status")
    monthly_fee: Decimal = Field(default=Decimal("0"), ge=0, description="Recurring monthly fee")
    data_quota_gb: float | None = Field(default=None, gt=0, description="Data quota per period in GB")
    next_billing_date: date | None = Field(default=None, description="Date the current period is paid up to")
    balance: Decimal = Field(default=Decimal("0"), description="Prepaid credit balance")
    total_paid: Decimal = Field(default=Decimal("0"), description="Lifetime amount paid")
    outstanding_balance: Decimal = Field(default=Decimal("0"), description="Amount currently owed")
    timezone: str | None = Field(default=None, description="IANA timezone identifier")

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @property
    def quota_mb(self) -> float | None:
        """Data quota expressed in MB, or None when the account is unmetered."""
        if self.data_quota_gb is None:
            return None
        return self.data_quota_gb * 1024

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE
