"""Service for account expiration (auto-suspend) and renewal (auto-resume)."""
from datetime import date, timedelta
from typing import Iterable, Mapping

import structlog

from isp_lifecycle import metrics
from isp_lifecycle.config import Settings, settings as default_settings
from isp_lifecycle.integrations.base import NotificationSink
from isp_lifecycle.scheduling import Clock, SystemClock, local_today, resolve_timezone
from isp_lifecycle.schemas.account import INACTIVE_STATUSES, RESUMABLE_STATUSES, Account, AccountStatus
from isp_lifecycle.schemas.automation_log import AutomationLogEntry, ExpirationAction, LogStatus
from isp_lifecycle.schemas.expiration import (
    ExpirationAutomationStatus,
    ExpirationCheck,
    ExpirationProcessResult,
    RenewalCandidate,
    RenewalReason,
    RenewalResult,
)
from isp_lifecycle.schemas.notification import LifecycleEvent, NotificationType
from isp_lifecycle.services.lifecycle_actions import DecisionOnlyActions, LifecycleActions
from isp_lifecycle.utils.automation_log import AutomationLog

logger = structlog.get_logger(__name__)


class ExpirationGovernor:
    """
    Decides when accounts expire or renew and drives suspend/resume.

    State machine over Account.status:
    - active -> suspended: today > next_billing_date + grace period
    - suspended/closed -> active: renewal processed and resume succeeds

    Accounts are never mutated here; every state change goes through the
    injected LifecycleActions strategy.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        notifier: NotificationSink | None = None,
        actions: LifecycleActions | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize expiration governor.

        Args:
            clock: Time source; "today" is its date in the account's timezone
            notifier: Receives suspended/resumed events
            actions: Default suspend/resume strategy
            settings: Application settings
        """
        self.clock = clock or SystemClock()
        self.notifier = notifier
        self.actions = actions or DecisionOnlyActions()
        self.settings = settings or default_settings
        self.zone = resolve_timezone(self.settings.default_timezone)

        self._checks: dict[str, ExpirationCheck] = {}
        self.automation_log = AutomationLog(self.clock, self.settings.automation_log_limit, source="expiration")

    def today(self, account: Account | None = None) -> date:
        """Calendar date in the account's timezone, or the configured default."""
        zone = self.zone
        if account is not None and account.timezone:
            try:
                zone = resolve_timezone(account.timezone)
            except ValueError:
                logger.warning("account_timezone_invalid", account_id=account.id, timezone=account.timezone)
        return local_today(self.clock, zone)

    def _expiration_date(self, account: Account, grace_period_days: int) -> date | None:
        if grace_period_days < 0:
            raise ValueError("grace_period_days cannot be negative")
        if account.next_billing_date is None:
            return None
        return account.next_billing_date + timedelta(days=grace_period_days)

    def is_account_expired(self, account: Account, grace_period_days: int = 0) -> bool:
        """True iff today is strictly after next_billing_date + grace period."""
        expiration_date = self._expiration_date(account, grace_period_days)
        if expiration_date is None:
            return False
        return self.today(account) > expiration_date

    def calculate_days_overdue(self, account: Account, grace_period_days: int = 0) -> int:
        """Whole days since the grace deadline passed; 0 until then."""
        expiration_date = self._expiration_date(account, grace_period_days)
        if expiration_date is None:
            return 0
        return max(0, (self.today(account) - expiration_date).days)

    def check_account_expirations(
        self,
        accounts: Iterable[Account],
        grace_period_days: int = 0,
    ) -> list[ExpirationCheck]:
        """
        Evaluate expiry for each account without taking action.

        Results are cached per account, replacing earlier checks.
        """
        checks = []
        for account in accounts:
            is_expired = self.is_account_expired(account, grace_period_days)
            currently_active = account.is_active

            check = ExpirationCheck(
                account_id=account.id,
                account_number=account.account_number,
                customer_name=account.customer_name,
                current_status=account.status,
                next_billing_date=account.next_billing_date,
                is_expired=is_expired,
                days_overdue=self.calculate_days_overdue(account, grace_period_days),
                currently_active=currently_active,
                should_be_suspended=is_expired and currently_active,
            )
            checks.append(check)
            self._checks[account.id] = check

        return checks

    async def process_expirations(
        self,
        accounts: Iterable[Account],
        grace_period_days: int = 0,
        actions: LifecycleActions | None = None,
    ) -> ExpirationProcessResult:
        """
        Suspend every expired, active account.

        Each account is handled in isolation: a failing or raising suspend
        never stops the rest of the batch.

        Args:
            accounts: Accounts to evaluate
            grace_period_days: Days past the billing date before expiry
            actions: Suspend strategy (defaults to the governor's)

        Returns:
            Processed/suspended/failed/pending/skipped counts
        """
        if grace_period_days < 0:
            raise ValueError("grace_period_days cannot be negative")

        actions = actions or self.actions
        result = ExpirationProcessResult()

        for account in accounts:
            if not self.is_account_expired(account, grace_period_days):
                result.skipped_count += 1
                continue

            days_overdue = self.calculate_days_overdue(account, grace_period_days)

            if not account.is_active:
                result.skipped_count += 1
                self.automation_log.record(
                    account.id,
                    ExpirationAction.EXPIRATION_DETECTED,
                    LogStatus.SUCCESS,
                    f"Account already in {account.status.value} status",
                )
                continue

            result.processed_count += 1

            if not actions.applies_effects:
                result.pending_count += 1
                metrics.account_suspensions_total.labels(status="pending").inc()
                self.automation_log.record(
                    account.id,
                    ExpirationAction.AUTO_SUSPENDED,
                    LogStatus.PENDING,
                    f"Account marked for suspension (no enforcement configured). Days overdue: {days_overdue}",
                )
                continue

            try:
                suspended = await actions.suspend(account.id, account)
            except Exception as e:
                result.failed_count += 1
                metrics.account_suspensions_total.labels(status="failed").inc()
                logger.exception("auto_suspend_failed", account_id=account.id, exc_info=e)
                self.automation_log.record(
                    account.id,
                    ExpirationAction.AUTO_SUSPENDED,
                    LogStatus.FAILED,
                    str(e) or e.__class__.__name__,
                )
                continue

            if not suspended:
                result.failed_count += 1
                metrics.account_suspensions_total.labels(status="failed").inc()
                self.automation_log.record(
                    account.id,
                    ExpirationAction.AUTO_SUSPENDED,
                    LogStatus.FAILED,
                    "Suspend action did not take effect on the network",
                )
                continue

            result.suspended_count += 1
            metrics.account_suspensions_total.labels(status="success").inc()
            self.automation_log.record(
                account.id,
                ExpirationAction.AUTO_SUSPENDED,
                LogStatus.SUCCESS,
                f"Account automatically suspended due to expiration. Days overdue: {days_overdue}",
            )
            await self._notify(
                NotificationType.SUSPENDED,
                account,
                {"daysOverdue": days_overdue, "amount": account.outstanding_balance or account.monthly_fee},
            )

        logger.info(
            "expiration_processing_completed",
            processed=result.processed_count,
            suspended=result.suspended_count,
            failed=result.failed_count,
            pending=result.pending_count,
            skipped=result.skipped_count,
        )
        return result

    async def process_renewal(
        self,
        account_id: str,
        account: Account,
        new_next_billing_date: date,
        actions: LifecycleActions | None = None,
    ) -> RenewalResult:
        """
        Process a renewal and resume service for suspended or closed accounts.

        Never raises; a failed resume is logged and reported.

        Args:
            account_id: Renewed account
            account: Account snapshot before the renewal
            new_next_billing_date: Billing date after the renewal
            actions: Resume strategy (defaults to the governor's)

        Returns:
            Renewal outcome; resume_decided and was_resumed are reported separately
        """
        if not account_id:
            raise ValueError("account_id is required")

        actions = actions or self.actions
        resume_decided = account.status in RESUMABLE_STATUSES

        if not resume_decided or not actions.applies_effects:
            if resume_decided:
                metrics.account_resumptions_total.labels(status="pending").inc()
            self.automation_log.record(
                account_id,
                ExpirationAction.RENEWAL_DETECTED,
                LogStatus.SUCCESS,
                f"Account renewal processed. New billing date: {new_next_billing_date.isoformat()}",
            )
            return RenewalResult(
                success=True,
                resume_decided=resume_decided,
                was_resumed=False,
                message="Account renewal processed successfully",
            )

        try:
            resumed = await actions.resume(account_id, account)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            metrics.account_resumptions_total.labels(status="failed").inc()
            logger.exception("auto_resume_failed", account_id=account_id, exc_info=e)
            self.automation_log.record(account_id, ExpirationAction.RENEWAL_DETECTED, LogStatus.FAILED, error)
            return RenewalResult(
                success=False,
                resume_decided=True,
                was_resumed=False,
                message=f"Error processing renewal: {error}",
            )

        if not resumed:
            metrics.account_resumptions_total.labels(status="failed").inc()
            self.automation_log.record(
                account_id,
                ExpirationAction.RENEWAL_DETECTED,
                LogStatus.FAILED,
                "Resume action did not take effect on the network",
            )
            return RenewalResult(
                success=False,
                resume_decided=True,
                was_resumed=False,
                message="Account renewed but failed to resume service",
            )

        metrics.account_resumptions_total.labels(status="success").inc()
        self.automation_log.record(
            account_id,
            ExpirationAction.AUTO_RESUMED,
            LogStatus.SUCCESS,
            f"Account automatically resumed after renewal. New billing date: {new_next_billing_date.isoformat()}",
        )
        await self._notify(NotificationType.RESUMED, account, {"nextBillingDate": new_next_billing_date.isoformat()})

        return RenewalResult(
            success=True,
            resume_decided=True,
            was_resumed=True,
            message="Account renewed and service resumed",
        )

    def detect_renewals(
        self,
        accounts: Iterable[Account],
        previous_states: Mapping[str, Account],
    ) -> list[RenewalCandidate]:
        """
        Flag renewals by diffing two snapshots of the same accounts.

        An account is a candidate when its status moved from
        suspended/closed/paused to active, or when its balance or total paid
        rose while it is active. Accounts missing from previous_states are
        ignored. Nothing is mutated.
        """
        renewals = []

        for account in accounts:
            previous = previous_states.get(account.id)
            if previous is None:
                continue

            if previous.status in INACTIVE_STATUSES and account.status == AccountStatus.ACTIVE:
                renewals.append(self._candidate(account, RenewalReason.STATUS_CHANGE))

            paid_more = account.balance > previous.balance or account.total_paid > previous.total_paid
            if paid_more and account.status == AccountStatus.ACTIVE:
                renewals.append(self._candidate(account, RenewalReason.RECENT_PAYMENT))

        return renewals

    @staticmethod
    def _candidate(account: Account, reason: RenewalReason) -> RenewalCandidate:
        return RenewalCandidate(
            account_id=account.id,
            account_number=account.account_number,
            customer_name=account.customer_name,
            reason=reason,
        )

    async def _notify(self, notification_type: NotificationType, account: Account, variables: dict) -> None:
        """Deliver a lifecycle event; delivery failure never rolls back the decision."""
        if self.notifier is None:
            return

        try:
            await self.notifier.notify(
                LifecycleEvent(
                    type=notification_type,
                    account_id=account.id,
                    customer_phone=account.customer_phone,
                    customer_name=account.customer_name,
                    variables=variables,
                )
            )
        except Exception as e:
            logger.warning(
                "lifecycle_notification_failed",
                account_id=account.id,
                notification_type=notification_type.value,
                error=str(e),
            )

    def get_automation_logs(self, account_id: str | None = None, limit: int = 100) -> list[AutomationLogEntry]:
        return self.automation_log.entries(account_id, limit)

    def get_automation_status(self) -> ExpirationAutomationStatus:
        checks = list(self._checks.values())
        counts = self.automation_log.counts()
        return ExpirationAutomationStatus(
            total_checks=len(checks),
            expired_accounts=sum(1 for check in checks if check.is_expired),
            active_expired_accounts=sum(1 for check in checks if check.should_be_suspended),
            total_logs=counts.total,
            success_count=counts.success,
            failure_count=counts.failed,
        )

    def clear_logs(self) -> None:
        """Drop logs and cached checks."""
        self.automation_log.clear()
        self._checks.clear()
