"""Service for recurring day-of-month billing."""
from datetime import date, datetime
from decimal import Decimal

import structlog

from isp_lifecycle import metrics
from isp_lifecycle.config import Settings, settings as default_settings
from isp_lifecycle.integrations.base import (
    AccountRepository,
    InvoiceGenerator,
    InvoiceStore,
    NotificationSink,
)
from isp_lifecycle.scheduling import DeadlineScheduler, local_today, next_billing_time, resolve_timezone
from isp_lifecycle.schemas.account import Account
from isp_lifecycle.schemas.automation_log import AutomationLogEntry, BillingAction, LogStatus
from isp_lifecycle.schemas.billing import (
    BillingAutomationStatus,
    BillingResult,
    BillingScheduleEntry,
    BillingTestResult,
    CreditApplicationResult,
    InvoiceSummary,
    OverdueProcessingResult,
)
from isp_lifecycle.schemas.notification import LifecycleEvent, NotificationType
from isp_lifecycle.services.lifecycle_actions import DecisionOnlyActions, LifecycleActions
from isp_lifecycle.utils.automation_log import AutomationLog

logger = structlog.get_logger(__name__)


def _job_key(account_id: str) -> tuple[str, str]:
    return ("billing", account_id)


class BillingScheduler:
    """
    Arms one self-rescheduling billing deadline per account.

    Each deadline fires at local midnight on the account's billing cycle day,
    generates the invoice, and re-arms for the following month. A one-shot
    deadline is re-armed rather than repeated at a fixed period because
    calendar months vary in length.
    """

    def __init__(
        self,
        scheduler: DeadlineScheduler,
        invoice_generator: InvoiceGenerator,
        account_repository: AccountRepository | None = None,
        notifier: NotificationSink | None = None,
        invoice_store: InvoiceStore | None = None,
        actions: LifecycleActions | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize billing scheduler.

        Args:
            scheduler: Shared deadline scheduler owning the billing jobs
            invoice_generator: Creates invoices for billing cycles
            account_repository: Account lookups for notifications and credits
            notifier: Receives invoice-issued events
            invoice_store: Invoice access for overdue processing and credits
            actions: Default suspend/resume strategy for overdue processing
            settings: Application settings
        """
        self.scheduler = scheduler
        self.clock = scheduler.clock
        self.invoice_generator = invoice_generator
        self.account_repository = account_repository
        self.notifier = notifier
        self.invoice_store = invoice_store
        self.actions = actions or DecisionOnlyActions()
        self.settings = settings or default_settings

        self._schedules: dict[str, BillingScheduleEntry] = {}
        self.automation_log = AutomationLog(self.clock, self.settings.automation_log_limit, source="billing")

    def schedule_billing(
        self,
        account_id: str,
        billing_cycle_day: int | None = None,
        timezone: str | None = None,
        monthly_fee: Decimal = Decimal("0"),
        auto_renew: bool = True,
    ) -> bool:
        """
        Arm recurring billing for an account.

        Args:
            account_id: Account to bill
            billing_cycle_day: Day of month (1-31) invoices are generated
            timezone: IANA timezone whose midnight starts the billing day
            monthly_fee: Fee recorded on the schedule entry
            auto_renew: Re-arm for the next month after each cycle

        Returns:
            False if billing is already scheduled for the account

        Raises:
            ValueError: If account_id, cycle day, timezone or fee is invalid
        """
        if not account_id:
            raise ValueError("account_id is required")

        cycle_day = billing_cycle_day if billing_cycle_day is not None else self.settings.default_billing_cycle_day
        if not 1 <= cycle_day <= 31:
            raise ValueError(f"Billing cycle day must be between 1 and 31, got {cycle_day}")

        tz_name = timezone or self.settings.default_timezone
        zone = resolve_timezone(tz_name)

        if monthly_fee < 0:
            raise ValueError("monthly_fee cannot be negative")

        if account_id in self._schedules:
            return False

        first_billing = next_billing_time(cycle_day, zone, self.clock.now())

        async def billing_deadline() -> datetime | None:
            entry = self._schedules.get(account_id)
            if entry is None:
                return None
            fired_at = entry.next_billing_date

            await self.process_billing_cycle(account_id)

            # Cancelled while the cycle was running
            if self._schedules.get(account_id) is not entry:
                return None

            if not auto_renew:
                del self._schedules[account_id]
                metrics.billing_scheduled_accounts_gauge.set(len(self._schedules))
                logger.info("billing_schedule_completed", account_id=account_id)
                return None

            # Missed cycles (e.g. after downtime) are skipped, not replayed
            following = next_billing_time(cycle_day, zone, max(fired_at, self.clock.now()), strictly_after=True)
            self._schedules[account_id] = entry.model_copy(update={"next_billing_date": following})

            logger.info(
                "billing_rescheduled",
                account_id=account_id,
                next_billing_date=following.isoformat(),
            )
            return following

        if not self.scheduler.schedule(_job_key(account_id), first_billing, billing_deadline):
            logger.warning("billing_schedule_busy", account_id=account_id)
            return False

        self._schedules[account_id] = BillingScheduleEntry(
            account_id=account_id,
            next_billing_date=first_billing,
            billing_cycle_day=cycle_day,
            monthly_fee=monthly_fee,
            auto_renew=auto_renew,
            timezone=tz_name,
        )
        metrics.billing_scheduled_accounts_gauge.set(len(self._schedules))

        self.automation_log.record(
            account_id,
            BillingAction.BILLING_SCHEDULED,
            LogStatus.SUCCESS,
            f"Billing schedule activated. Next billing: {first_billing.isoformat()}",
        )
        return True

    def cancel_billing(self, account_id: str) -> bool:
        """
        Cancel recurring billing. No-op if nothing is scheduled.

        Returns:
            True if a schedule was cancelled
        """
        entry = self._schedules.pop(account_id, None)
        cancelled = self.scheduler.cancel(_job_key(account_id))

        if entry is None and not cancelled:
            return False

        metrics.billing_scheduled_accounts_gauge.set(len(self._schedules))
        self.automation_log.record(
            account_id,
            BillingAction.BILLING_CANCELLED,
            LogStatus.SUCCESS,
            "Billing schedule deactivated",
        )
        return True

    async def process_billing_cycle(self, account_id: str) -> BillingResult:
        """
        Generate the invoice for one billing cycle.

        Never raises; failures are logged and returned as ``success=False``.

        Args:
            account_id: Account to bill

        Returns:
            Billing outcome with the new invoice id on success
        """
        try:
            invoice_id = await self.invoice_generator.generate(account_id)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            metrics.billing_failures_total.inc()
            logger.exception("billing_cycle_failed", account_id=account_id, exc_info=e)
            self.automation_log.record(account_id, BillingAction.BILLING_FAILED, LogStatus.FAILED, error)
            return BillingResult(success=False, message=f"Billing failed: {error}")

        if not invoice_id:
            metrics.billing_failures_total.inc()
            self.automation_log.record(
                account_id,
                BillingAction.BILLING_FAILED,
                LogStatus.FAILED,
                "Invoice generator returned no invoice",
            )
            return BillingResult(success=False, message="Failed to generate invoice")

        metrics.invoices_generated_total.inc()
        self.automation_log.record(
            account_id,
            BillingAction.INVOICE_GENERATED,
            LogStatus.SUCCESS,
            f"Invoice created: {invoice_id}",
        )

        await self._notify_invoice(account_id, invoice_id)

        return BillingResult(success=True, invoice_id=invoice_id, message="Invoice generated automatically")

    async def _notify_invoice(self, account_id: str, invoice_id: str) -> None:
        """Send the invoice-issued event; delivery failures never affect billing."""
        if self.notifier is None or self.account_repository is None:
            return

        try:
            account = await self.account_repository.get(account_id)
            if account is None:
                logger.warning("invoice_notification_account_missing", account_id=account_id)
                return

            entry = self._schedules.get(account_id)
            amount = entry.monthly_fee if entry and entry.monthly_fee > 0 else account.monthly_fee
            due_date = account.next_billing_date.isoformat() if account.next_billing_date else ""

            await self.notifier.notify(
                LifecycleEvent(
                    type=NotificationType.INVOICE,
                    account_id=account_id,
                    customer_phone=account.customer_phone,
                    customer_name=account.customer_name,
                    variables={"invoiceNumber": invoice_id, "amount": amount, "dueDate": due_date},
                )
            )
        except Exception as e:
            logger.warning("invoice_notification_failed", account_id=account_id, invoice_id=invoice_id, error=str(e))

    async def _notify_overdue(self, invoice: InvoiceSummary, account: Account, as_of: date) -> None:
        if self.notifier is None:
            return

        try:
            await self.notifier.notify(
                LifecycleEvent(
                    type=NotificationType.OVERDUE,
                    account_id=account.id,
                    customer_phone=account.customer_phone,
                    customer_name=account.customer_name,
                    variables={
                        "invoiceNumber": invoice.number or invoice.id,
                        "overdueDays": (as_of - invoice.due_date).days,
                        "amount": invoice.amount_due,
                    },
                )
            )
        except Exception as e:
            logger.warning("overdue_notification_failed", account_id=account.id, invoice_id=invoice.id, error=str(e))

    async def process_overdue_invoices(
        self,
        overdue_days: int | None = None,
        actions: LifecycleActions | None = None,
    ) -> OverdueProcessingResult:
        """
        Mark overdue invoices, warn their owners and suspend active ones.

        Each invoice is handled independently; one failure does not stop the sweep.

        Args:
            overdue_days: Days past due before an invoice counts as overdue
            actions: Suspend strategy (defaults to the scheduler's)

        Returns:
            Processed/suspended/failed counts
        """
        overdue_days = self.settings.overdue_days if overdue_days is None else overdue_days
        if overdue_days < 0:
            raise ValueError("overdue_days cannot be negative")

        if self.invoice_store is None:
            logger.info("overdue_processing_skipped", reason="no_invoice_store")
            return OverdueProcessingResult()

        actions = actions or self.actions
        as_of = local_today(self.clock, resolve_timezone(self.settings.default_timezone))

        try:
            invoices = await self.invoice_store.list_overdue(as_of, overdue_days)
        except Exception as e:
            logger.exception("overdue_invoice_lookup_failed", exc_info=e)
            return OverdueProcessingResult()

        logger.info("overdue_processing_started", invoices_count=len(invoices), overdue_days=overdue_days)

        result = OverdueProcessingResult()
        handled_accounts: set[str] = set()
        owners: dict[str, Account | None] = {}

        for invoice in invoices:
            try:
                await self.invoice_store.mark_overdue(invoice.id)
                result.processed_count += 1
                self.automation_log.record(
                    invoice.account_id,
                    BillingAction.OVERDUE_PROCESSED,
                    LogStatus.SUCCESS,
                    f"Invoice {invoice.number or invoice.id} overdue since {invoice.due_date.isoformat()}",
                )

                if self.account_repository is None:
                    continue
                if invoice.account_id not in owners:
                    owners[invoice.account_id] = await self.account_repository.get(invoice.account_id)
                account = owners[invoice.account_id]
                if account is None:
                    continue

                await self._notify_overdue(invoice, account, as_of)

                if invoice.account_id in handled_accounts or not account.is_active:
                    continue
                handled_accounts.add(invoice.account_id)

                if not actions.applies_effects:
                    self.automation_log.record(
                        account.id,
                        BillingAction.OVERDUE_PROCESSED,
                        LogStatus.PENDING,
                        "Account marked for suspension (no enforcement configured)",
                    )
                    continue

                if await actions.suspend(account.id, account):
                    result.suspended_count += 1
                    metrics.account_suspensions_total.labels(status="success").inc()
                    self.automation_log.record(
                        account.id,
                        BillingAction.OVERDUE_PROCESSED,
                        LogStatus.SUCCESS,
                        "Account suspended for overdue invoice",
                    )
                else:
                    result.failed_count += 1
                    metrics.account_suspensions_total.labels(status="failed").inc()
                    self.automation_log.record(
                        account.id,
                        BillingAction.OVERDUE_PROCESSED,
                        LogStatus.FAILED,
                        "Suspension for overdue invoice did not take effect",
                    )

            except Exception as e:
                result.failed_count += 1
                logger.exception(
                    "overdue_invoice_processing_failed",
                    invoice_id=invoice.id,
                    account_id=invoice.account_id,
                    exc_info=e,
                )
                self.automation_log.record(
                    invoice.account_id,
                    BillingAction.OVERDUE_PROCESSED,
                    LogStatus.FAILED,
                    str(e) or e.__class__.__name__,
                )
                continue

        logger.info(
            "overdue_processing_completed",
            processed=result.processed_count,
            suspended=result.suspended_count,
            failed=result.failed_count,
        )
        return result

    async def auto_apply_credits(self, account_id: str) -> CreditApplicationResult:
        """
        Apply an account's credit balance to its outstanding invoices, oldest first.

        Args:
            account_id: Account whose balance is applied

        Returns:
            Amount applied and number of invoices fully cleared
        """
        if not account_id:
            raise ValueError("account_id is required")

        if self.invoice_store is None or self.account_repository is None:
            return CreditApplicationResult(success=True, message="No invoice store configured")

        applied = Decimal("0")
        cleared = 0

        try:
            account = await self.account_repository.get(account_id)
            if account is None:
                return CreditApplicationResult(success=False, message=f"Account {account_id} not found")

            remaining = account.balance
            if remaining <= 0:
                return CreditApplicationResult(success=True, message="No credit balance to apply")

            outstanding = await self.invoice_store.list_outstanding(account_id)
            for invoice in sorted(outstanding, key=lambda i: (i.due_date, i.id)):
                if remaining <= 0:
                    break
                if invoice.amount_due <= 0:
                    continue

                amount = min(remaining, invoice.amount_due)
                await self.invoice_store.apply_payment(invoice.id, amount)
                applied += amount
                remaining -= amount
                if amount == invoice.amount_due:
                    cleared += 1

        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.exception("credit_application_failed", account_id=account_id, exc_info=e)
            self.automation_log.record(account_id, BillingAction.CREDITS_APPLIED, LogStatus.FAILED, error)
            return CreditApplicationResult(
                success=False,
                applied_amount=applied,
                invoices_cleared=cleared,
                message=f"Credit application failed: {error}",
            )

        message = f"Applied {applied} to outstanding invoices; {cleared} cleared"
        self.automation_log.record(account_id, BillingAction.CREDITS_APPLIED, LogStatus.SUCCESS, message)
        return CreditApplicationResult(success=True, applied_amount=applied, invoices_cleared=cleared, message=message)

    def get_scheduled_accounts(self) -> list[BillingScheduleEntry]:
        return list(self._schedules.values())

    def get_billing_schedule(self, account_id: str) -> BillingScheduleEntry | None:
        return self._schedules.get(account_id)

    def get_automation_logs(self, account_id: str | None = None, limit: int = 100) -> list[AutomationLogEntry]:
        return self.automation_log.entries(account_id, limit)

    def get_automation_status(self) -> BillingAutomationStatus:
        counts = self.automation_log.counts()
        return BillingAutomationStatus(
            scheduled_accounts=len(self._schedules),
            total_logs=counts.total,
            success_count=counts.success,
            failure_count=counts.failed,
        )

    async def test_billing_automation(self, account_id: str) -> BillingTestResult:
        """Run one billing cycle now and report when the next one would fire."""
        result = await self.process_billing_cycle(account_id)

        entry = self._schedules.get(account_id)
        if entry is not None:
            next_date = entry.next_billing_date
        else:
            next_date = next_billing_time(
                self.settings.default_billing_cycle_day,
                self.settings.default_timezone,
                self.clock.now(),
            )

        return BillingTestResult(success=result.success, message=result.message, next_billing_date=next_date)
