"""Collaborator interfaces the automation engine depends on.

Concrete implementations (database repositories, the RouterOS client,
invoice generation, SMS gateways) live outside this package and are injected
at startup.
"""
from datetime import date
from decimal import Decimal
from typing import Protocol, runtime_checkable

from isp_lifecycle.schemas.account import Account
from isp_lifecycle.schemas.billing import InvoiceSummary
from isp_lifecycle.schemas.notification import LifecycleEvent
from isp_lifecycle.schemas.usage import UsageReading


@runtime_checkable
class AccountRepository(Protocol):
    """Read access to subscriber accounts."""

    async def get(self, account_id: str) -> Account | None:
        ...

    async def list(self) -> list[Account]:
        ...


@runtime_checkable
class UsageSource(Protocol):
    """Per-account bandwidth counters, typically read from the access router."""

    async def sample(self, account_id: str) -> UsageReading:
        """
        Read current counters for an account.

        Raises:
            Exception: Any transient I/O failure; callers treat it as a missed tick
        """
        ...


@runtime_checkable
class InvoiceGenerator(Protocol):
    """Creates the recurring invoice for an account."""

    async def generate(self, account_id: str) -> str | None:
        """
        Create an invoice.

        Returns:
            New invoice id, or None if nothing was created
        """
        ...


@runtime_checkable
class InvoiceStore(Protocol):
    """Invoice lookups and updates used by overdue processing and credit application."""

    async def list_overdue(self, as_of: date, overdue_days: int) -> list[InvoiceSummary]:
        ...

    async def list_outstanding(self, account_id: str) -> list[InvoiceSummary]:
        ...

    async def mark_overdue(self, invoice_id: str) -> None:
        ...

    async def apply_payment(self, invoice_id: str, amount: Decimal) -> None:
        ...


@runtime_checkable
class NotificationSink(Protocol):
    """Delivers lifecycle events to subscribers."""

    async def notify(self, event: LifecycleEvent) -> bool:
        """
        Deliver an event.

        Returns:
            True if delivered on at least one channel
        """
        ...
