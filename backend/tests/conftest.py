"""Pytest configuration, fixtures and in-memory collaborators."""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from isp_lifecycle.config import Settings
from isp_lifecycle.integrations.notification_service import NotificationService
from isp_lifecycle.scheduling import DeadlineScheduler, ManualClock
from isp_lifecycle.schemas.account import Account
from isp_lifecycle.schemas.billing import InvoiceSummary
from isp_lifecycle.schemas.notification import LifecycleEvent
from isp_lifecycle.schemas.usage import UsageReading
from isp_lifecycle.services.billing_scheduler import BillingScheduler
from isp_lifecycle.services.expiration_governor import ExpirationGovernor
from isp_lifecycle.services.lifecycle_actions import EnforcingActions
from isp_lifecycle.services.usage_monitor import UsageMonitor

# Mid-month instant so day-of-month billing lands in the following month
TEST_START = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


class InMemoryAccountRepository:
    """AccountRepository over a dict; ``put`` replaces the stored snapshot."""

    def __init__(self, accounts: list[Account] | None = None):
        self.accounts: dict[str, Account] = {account.id: account for account in accounts or []}

    def put(self, account: Account) -> None:
        self.accounts[account.id] = account

    async def get(self, account_id: str) -> Account | None:
        return self.accounts.get(account_id)

    async def list(self) -> list[Account]:
        return list(self.accounts.values())


class FakeUsageSource:
    """UsageSource returning the latest reading set per account."""

    def __init__(self):
        self.readings: dict[str, UsageReading] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[str] = []

    def set_usage(
        self,
        account_id: str,
        total_mb: float,
        download_mbps: float = 10.0,
        upload_mbps: float = 2.0,
    ) -> None:
        self.readings[account_id] = UsageReading(
            download_mbps=download_mbps,
            upload_mbps=upload_mbps,
            total_download_mb=total_mb,
            total_upload_mb=0.0,
        )

    def fail_with(self, account_id: str, error: Exception) -> None:
        self.failures[account_id] = error

    def recover(self, account_id: str) -> None:
        self.failures.pop(account_id, None)

    async def sample(self, account_id: str) -> UsageReading | None:
        self.calls.append(account_id)
        if account_id in self.failures:
            raise self.failures[account_id]
        return self.readings.get(account_id)


class FakeInvoiceGenerator:
    """InvoiceGenerator issuing sequential ids; can be told to fail or return nothing."""

    def __init__(self, clock: ManualClock):
        self.clock = clock
        self.generated: list[tuple[str, datetime]] = []
        self.error: Exception | None = None
        self.return_none = False

    async def generate(self, account_id: str) -> str | None:
        if self.error is not None:
            raise self.error
        if self.return_none:
            return None
        self.generated.append((account_id, self.clock.now()))
        return f"INV-{len(self.generated):04d}"


class InMemoryInvoiceStore:
    """InvoiceStore over a dict of InvoiceSummary models."""

    def __init__(self):
        self.invoices: dict[str, InvoiceSummary] = {}
        self.overdue: set[str] = set()
        self.payments: list[tuple[str, Decimal]] = []
        self.fail_on_mark: set[str] = set()

    def add(self, account_id: str, amount: str, due_date: date, invoice_id: str | None = None) -> InvoiceSummary:
        invoice_id = invoice_id or f"inv-{len(self.invoices) + 1}"
        invoice = InvoiceSummary(
            id=invoice_id,
            account_id=account_id,
            number=invoice_id.upper(),
            amount_due=Decimal(amount),
            due_date=due_date,
        )
        self.invoices[invoice_id] = invoice
        return invoice

    async def list_overdue(self, as_of: date, overdue_days: int) -> list[InvoiceSummary]:
        cutoff = as_of - timedelta(days=overdue_days)
        return [
            invoice
            for invoice in self.invoices.values()
            if invoice.amount_due > 0 and invoice.due_date <= cutoff and invoice.id not in self.overdue
        ]

    async def list_outstanding(self, account_id: str) -> list[InvoiceSummary]:
        return [
            invoice
            for invoice in self.invoices.values()
            if invoice.account_id == account_id and invoice.amount_due > 0
        ]

    async def mark_overdue(self, invoice_id: str) -> None:
        if invoice_id in self.fail_on_mark:
            raise RuntimeError(f"Could not update invoice {invoice_id}")
        self.overdue.add(invoice_id)

    async def apply_payment(self, invoice_id: str, amount: Decimal) -> None:
        invoice = self.invoices[invoice_id]
        self.invoices[invoice_id] = invoice.model_copy(update={"amount_due": invoice.amount_due - amount})
        self.payments.append((invoice_id, amount))


class RecordingNotifier:
    """NotificationSink that keeps every event; can be told to raise."""

    def __init__(self):
        self.events: list[LifecycleEvent] = []
        self.error: Exception | None = None

    async def notify(self, event: LifecycleEvent) -> bool:
        if self.error is not None:
            raise self.error
        self.events.append(event)
        return True


class RecordingActions(EnforcingActions):
    """EnforcingActions whose outcome per account is configurable."""

    def __init__(self, outcomes: dict[str, bool | Exception] | None = None):
        self.outcomes = outcomes or {}
        self.suspended: list[str] = []
        self.resumed: list[str] = []
        super().__init__(suspend=self._record_suspend, resume=self._record_resume)

    def _outcome(self, account_id: str) -> bool:
        outcome = self.outcomes.get(account_id, True)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def _record_suspend(self, account_id: str, account: Account) -> bool:
        self.suspended.append(account_id)
        return self._outcome(account_id)

    async def _record_resume(self, account_id: str, account: Account) -> bool:
        self.resumed.append(account_id)
        return self._outcome(account_id)


@pytest.fixture
def test_settings() -> Settings:
    """
    Settings isolated from the environment.

    Uses UTC so calendar dates match the ManualClock's dates.
    """
    return Settings(_env_file=None, default_timezone="UTC", paybill_number="123456")


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(TEST_START)


@pytest.fixture
def scheduler(clock: ManualClock) -> DeadlineScheduler:
    return DeadlineScheduler(clock)


@pytest.fixture
def account_repository() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def usage_source() -> FakeUsageSource:
    return FakeUsageSource()


@pytest.fixture
def invoice_generator(clock: ManualClock) -> FakeInvoiceGenerator:
    return FakeInvoiceGenerator(clock)


@pytest.fixture
def invoice_store() -> InMemoryInvoiceStore:
    return InMemoryInvoiceStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def usage_monitor(
    scheduler: DeadlineScheduler,
    usage_source: FakeUsageSource,
    notifier: RecordingNotifier,
    account_repository: InMemoryAccountRepository,
    test_settings: Settings,
) -> UsageMonitor:
    return UsageMonitor(
        scheduler,
        usage_source,
        notifier=notifier,
        account_repository=account_repository,
        settings=test_settings,
    )


@pytest.fixture
def billing_scheduler(
    scheduler: DeadlineScheduler,
    invoice_generator: FakeInvoiceGenerator,
    account_repository: InMemoryAccountRepository,
    notifier: RecordingNotifier,
    invoice_store: InMemoryInvoiceStore,
    test_settings: Settings,
) -> BillingScheduler:
    return BillingScheduler(
        scheduler,
        invoice_generator,
        account_repository=account_repository,
        notifier=notifier,
        invoice_store=invoice_store,
        settings=test_settings,
    )


@pytest.fixture
def governor(clock: ManualClock, notifier: RecordingNotifier, test_settings: Settings) -> ExpirationGovernor:
    return ExpirationGovernor(clock, notifier=notifier, settings=test_settings)


@pytest.fixture
def notification_service(clock: ManualClock, test_settings: Settings) -> NotificationService:
    return NotificationService(settings=test_settings, clock=clock)
