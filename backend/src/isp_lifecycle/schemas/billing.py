"""Pydantic schemas for recurring billing."""
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class BillingScheduleEntry(BaseModel):
    """Live billing deadline for one account."""

    account_id: str
    next_billing_date: datetime = Field(..., description="Next fire instant (local midnight, tz-aware)")
    billing_cycle_day: int = Field(..., ge=1, le=31)
    monthly_fee: Decimal = Field(default=Decimal("0"), ge=0)
    auto_renew: bool = True
    timezone: str


class BillingResult(BaseModel):
    """Outcome of one billing cycle."""

    success: bool
    invoice_id: str | None = None
    message: str


class BillingTestResult(BaseModel):
    """Outcome of a manual billing dry run."""

    success: bool
    message: str
    next_billing_date: datetime | None = None


class InvoiceSummary(BaseModel):
    """Minimal invoice view exposed by an invoice store."""

    id: str
    account_id: str
    number: str = ""
    amount_due: Decimal = Field(..., ge=0)
    due_date: date
    issued_at: datetime | None = None


class OverdueProcessingResult(BaseModel):
    """Tally of an overdue-invoice sweep."""

    processed_count: int = 0
    suspended_count: int = 0
    failed_count: int = 0


class CreditApplicationResult(BaseModel):
    """Outcome of applying an account's credit balance to its invoices."""

    success: bool
    applied_amount: Decimal = Decimal("0")
    invoices_cleared: int = 0
    message: str = ""


class BillingAutomationStatus(BaseModel):
    """Summary of the billing scheduler's state."""

    scheduled_accounts: int
    total_logs: int
    success_count: int
    failure_count: int
