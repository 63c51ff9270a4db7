"""Composition root for the lifecycle automation engine."""
from types import TracebackType

import structlog

from isp_lifecycle.config import Settings, settings as default_settings
from isp_lifecycle.integrations.base import (
    AccountRepository,
    InvoiceGenerator,
    InvoiceStore,
    NotificationSink,
    UsageSource,
)
from isp_lifecycle.integrations.notification_service import NotificationService
from isp_lifecycle.scheduling import Clock, DeadlineScheduler, SystemClock
from isp_lifecycle.services.billing_scheduler import BillingScheduler
from isp_lifecycle.services.expiration_governor import ExpirationGovernor
from isp_lifecycle.services.lifecycle_actions import DecisionOnlyActions, LifecycleActions
from isp_lifecycle.services.usage_monitor import UsageMonitor

logger = structlog.get_logger(__name__)


class AutomationEngine:
    """
    Owns the shared deadline scheduler and the three lifecycle services.

    Usage:
        async with AutomationEngine(repo, usage_source, invoice_generator) as engine:
            engine.billing.schedule_billing(account_id, billing_cycle_day=1)
    """

    def __init__(
        self,
        account_repository: AccountRepository,
        usage_source: UsageSource,
        invoice_generator: InvoiceGenerator,
        invoice_store: InvoiceStore | None = None,
        notifier: NotificationSink | None = None,
        actions: LifecycleActions | None = None,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ):
        """
        Build the scheduler and services.

        Args:
            account_repository: Account lookups
            usage_source: Bandwidth counters
            invoice_generator: Creates recurring invoices
            invoice_store: Invoice access for overdue processing and credits
            notifier: Event sink; defaults to a log-only NotificationService
            actions: Suspend/resume strategy; defaults to decision-only
            settings: Application settings
            clock: Time source shared by every service
        """
        self.settings = settings or default_settings
        self.clock = clock or SystemClock()
        self.account_repository = account_repository
        self.actions = actions or DecisionOnlyActions()
        self.notifier = notifier or NotificationService(settings=self.settings, clock=self.clock)

        self.scheduler = DeadlineScheduler(self.clock)
        self.usage = UsageMonitor(
            self.scheduler,
            usage_source,
            notifier=self.notifier,
            account_repository=account_repository,
            settings=self.settings,
        )
        self.billing = BillingScheduler(
            self.scheduler,
            invoice_generator,
            account_repository=account_repository,
            notifier=self.notifier,
            invoice_store=invoice_store,
            actions=self.actions,
            settings=self.settings,
        )
        self.expiration = ExpirationGovernor(
            self.clock,
            notifier=self.notifier,
            actions=self.actions,
            settings=self.settings,
        )

    @property
    def is_running(self) -> bool:
        return self.scheduler.is_running

    def start(self) -> None:
        """Start the scheduler driver on the running event loop."""
        self.scheduler.start()
        logger.info(
            "automation_engine_started",
            env=self.settings.app_env,
            enforcing=self.actions.applies_effects,
        )

    async def stop(self) -> None:
        """Stop the driver; armed jobs stay registered and can be restarted."""
        await self.scheduler.stop()
        logger.info("automation_engine_stopped")

    async def __aenter__(self) -> "AutomationEngine":
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()
