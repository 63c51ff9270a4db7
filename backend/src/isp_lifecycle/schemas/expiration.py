"""Pydantic schemas for account expiration and renewal."""
import enum
from datetime import date

from pydantic import BaseModel

from isp_lifecycle.schemas.account import AccountStatus


class ExpirationCheck(BaseModel):
    """Cached expiry evaluation for one account."""

    account_id: str
    account_number: str
    customer_name: str
    current_status: AccountStatus
    next_billing_date: date | None
    is_expired: bool
    days_overdue: int
    currently_active: bool
    should_be_suspended: bool


class ExpirationProcessResult(BaseModel):
    """
    Tally of an expiration sweep.

    processed_count counts suspension decisions, so
    suspended + failed + pending == processed and
    processed + skipped == number of accounts evaluated.
    """

    processed_count: int = 0
    suspended_count: int = 0
    failed_count: int = 0
    pending_count: int = 0
    skipped_count: int = 0


class RenewalResult(BaseModel):
    """
    Outcome of processing a renewal.

    resume_decided means policy wanted the account resumed; was_resumed means
    the resume effect actually succeeded.
    """

    success: bool
    resume_decided: bool
    was_resumed: bool
    message: str


class RenewalReason(enum.Enum):
    """Why an account was flagged as a renewal candidate."""

    STATUS_CHANGE = "status_change"
    RECENT_PAYMENT = "recent_payment"


class RenewalCandidate(BaseModel):
    """Advisory renewal detected by diffing account snapshots."""

    account_id: str
    account_number: str
    customer_name: str
    reason: RenewalReason


class ExpirationAutomationStatus(BaseModel):
    """Summary of the expiration governor's state."""

    total_checks: int
    expired_accounts: int
    active_expired_accounts: int
    total_logs: int
    success_count: int
    failure_count: int
