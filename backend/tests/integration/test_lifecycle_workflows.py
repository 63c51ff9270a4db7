"""End-to-end lifecycle scenarios across the automation engine."""
import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from isp_lifecycle.config import Settings
from isp_lifecycle.engine import AutomationEngine
from isp_lifecycle.integrations.notification_service import NotificationService
from isp_lifecycle.scheduling import ManualClock
from isp_lifecycle.schemas.account import AccountStatus
from isp_lifecycle.schemas.automation_log import BillingAction, ExpirationAction, LogStatus
from isp_lifecycle.schemas.notification import NotificationType
from isp_lifecycle.workers.expiration import process_account_expirations, process_account_renewals
from tests.conftest import (
    FakeInvoiceGenerator,
    FakeUsageSource,
    InMemoryAccountRepository,
    InMemoryInvoiceStore,
    RecordingActions,
    RecordingNotifier,
)
from tests.utils.factories import AccountFactory


@pytest.fixture
def engine_clock() -> ManualClock:
    return ManualClock(datetime(2024, 1, 3, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def engine(
    engine_clock: ManualClock,
    account_repository: InMemoryAccountRepository,
    usage_source: FakeUsageSource,
    invoice_store: InMemoryInvoiceStore,
    notifier: RecordingNotifier,
    test_settings: Settings,
) -> AutomationEngine:
    return AutomationEngine(
        account_repository,
        usage_source,
        FakeInvoiceGenerator(engine_clock),
        invoice_store=invoice_store,
        notifier=notifier,
        actions=RecordingActions(),
        settings=test_settings,
        clock=engine_clock,
    )


@pytest.mark.asyncio
async def test_expired_account_suspended_after_grace_then_resumed(
    engine: AutomationEngine,
    engine_clock: ManualClock,
    account_repository: InMemoryAccountRepository,
    notifier: RecordingNotifier,
) -> None:
    """Account billed through 2024-01-01 with 3 days grace: kept on 01-03, suspended on 01-05."""
    account = AccountFactory.build(id="acc-a", next_billing_date=date(2024, 1, 1))
    account_repository.put(account)
    actions = engine.actions

    counts = await process_account_expirations(engine.expiration, account_repository, grace_period_days=3)
    assert counts["skipped"] == 1
    assert counts["suspended"] == 0
    assert actions.suspended == []

    engine_clock.set(datetime(2024, 1, 5, 9, 0, tzinfo=timezone.utc))
    counts = await process_account_expirations(engine.expiration, account_repository, grace_period_days=3)

    assert counts["suspended"] == 1
    assert actions.suspended == ["acc-a"]
    assert account.status == AccountStatus.ACTIVE
    assert notifier.events[-1].type == NotificationType.SUSPENDED
    assert notifier.events[-1].variables["daysOverdue"] == 1

    # Repository reflects the suspension applied on the network side
    suspended = account.model_copy(update={"status": AccountStatus.SUSPENDED})
    account_repository.put(suspended)
    snapshot = {suspended.id: suspended}

    # Subscriber pays and is reactivated with a new billing date
    account_repository.put(
        suspended.model_copy(
            update={
                "status": AccountStatus.ACTIVE,
                "total_paid": suspended.total_paid + Decimal("2500"),
                "next_billing_date": date(2024, 2, 5),
            }
        )
    )
    counts = await process_account_renewals(engine.expiration, account_repository, snapshot)

    assert counts == {"renewed": 1, "resumed": 1, "errors": 0}
    assert actions.resumed == ["acc-a"]
    assert notifier.events[-1].type == NotificationType.RESUMED

    actions_logged = [log.action for log in engine.expiration.get_automation_logs("acc-a")]
    assert actions_logged == [ExpirationAction.AUTO_SUSPENDED, ExpirationAction.AUTO_RESUMED]


@pytest.mark.asyncio
async def test_billing_and_usage_share_one_scheduler(
    engine: AutomationEngine,
    engine_clock: ManualClock,
    account_repository: InMemoryAccountRepository,
    usage_source: FakeUsageSource,
    notifier: RecordingNotifier,
) -> None:
    account = AccountFactory.build(id="acc-b", data_quota_gb=1, monthly_fee=Decimal("3500"))
    account_repository.put(account)
    usage_source.set_usage("acc-b", 900)

    engine.billing.schedule_billing("acc-b", billing_cycle_day=4)
    engine.usage.start_monitoring("acc-b", account.quota_mb, interval=3600)
    assert engine.scheduler.pending_count == 2

    # Hourly samples through the billing midnight
    for _ in range(15):
        engine_clock.advance(hours=1)
        await engine.scheduler.run_pending()

    assert len(engine.usage.get_usage_history("acc-b")) == 15
    assert engine.usage.get_account_alerts("acc-b")[0].percentage_used == pytest.approx(87.89, abs=0.01)

    billing_logs = engine.billing.get_automation_logs("acc-b")
    assert [log.action for log in billing_logs] == [BillingAction.BILLING_SCHEDULED, BillingAction.INVOICE_GENERATED]
    assert engine.billing.get_billing_schedule("acc-b").next_billing_date == datetime(
        2024, 2, 4, tzinfo=timezone.utc
    )

    notified = [event.type for event in notifier.events]
    assert notified.count(NotificationType.QUOTA_ALERT) == 1
    assert notified.count(NotificationType.INVOICE) == 1

    engine.usage.stop_monitoring("acc-b")
    engine.billing.cancel_billing("acc-b")
    assert engine.scheduler.pending_count == 0


@pytest.mark.asyncio
async def test_engine_context_manager_drives_scheduler(
    engine: AutomationEngine,
    engine_clock: ManualClock,
    invoice_store: InMemoryInvoiceStore,
) -> None:
    generated = asyncio.Event()

    class SignallingGenerator:
        async def generate(self, account_id: str) -> str:
            generated.set()
            return "INV-LIVE"

    engine.billing.invoice_generator = SignallingGenerator()

    async with engine:
        assert engine.is_running
        engine.billing.schedule_billing("acc-c", billing_cycle_day=4)
        engine_clock.set(datetime(2024, 1, 4, tzinfo=timezone.utc))
        # Re-arming wakes the driver so it sees the moved clock
        engine.billing.schedule_billing("acc-d", billing_cycle_day=20)
        await asyncio.wait_for(generated.wait(), timeout=1)

    assert not engine.is_running
    log = engine.billing.get_automation_logs("acc-c")[-1]
    assert log.action == BillingAction.INVOICE_GENERATED
    assert log.status == LogStatus.SUCCESS


def test_engine_defaults_to_log_only_notifications(
    account_repository: InMemoryAccountRepository,
    usage_source: FakeUsageSource,
    engine_clock: ManualClock,
    test_settings: Settings,
) -> None:
    engine = AutomationEngine(
        account_repository,
        usage_source,
        FakeInvoiceGenerator(engine_clock),
        settings=test_settings,
        clock=engine_clock,
    )

    assert isinstance(engine.notifier, NotificationService)
    assert engine.actions.applies_effects is False
    assert engine.usage.scheduler is engine.billing.scheduler


@pytest.mark.asyncio
async def test_engine_restart_resumes_jobs_interrupted_by_stop(
    engine: AutomationEngine,
    engine_clock: ManualClock,
    account_repository: InMemoryAccountRepository,
    usage_source: FakeUsageSource,
) -> None:
    cycle_started = asyncio.Event()
    invoiced = asyncio.Event()
    sampled_again = asyncio.Event()
    held = asyncio.Event()
    issued = []

    class HangingGenerator:
        async def generate(self, account_id: str) -> str:
            issued.append(account_id)
            if len(issued) == 1:
                cycle_started.set()
                await held.wait()
            invoiced.set()
            return f"INV-{len(issued):04d}"

    class CountingUsageSource(FakeUsageSource):
        async def sample(self, account_id: str):
            reading = await super().sample(account_id)
            if len(self.calls) >= 2:
                sampled_again.set()
            return reading

    usage = CountingUsageSource()
    usage.set_usage("acc-e", 100)
    engine.usage.usage_source = usage
    engine.billing.invoice_generator = HangingGenerator()

    account = AccountFactory.build(id="acc-e", data_quota_gb=1)
    account_repository.put(account)
    engine.billing.schedule_billing("acc-e", billing_cycle_day=4)
    engine.usage.start_monitoring("acc-e", account.quota_mb, interval=3600)
    engine_clock.set(datetime(2024, 1, 4, tzinfo=timezone.utc))

    engine.start()
    await asyncio.wait_for(cycle_started.wait(), timeout=1)
    await engine.stop()

    assert engine.scheduler.pending_count == 2
    assert engine.billing.schedule_billing("acc-e", billing_cycle_day=4) is False
    assert engine.usage.start_monitoring("acc-e", account.quota_mb, interval=3600) is False

    async def rebilled() -> None:
        await invoiced.wait()
        while engine.billing.get_billing_schedule("acc-e").next_billing_date.month != 2:
            await asyncio.sleep(0)

    engine_clock.advance(hours=1)
    async with engine:
        await asyncio.wait_for(rebilled(), timeout=1)
        await asyncio.wait_for(sampled_again.wait(), timeout=1)

    assert issued == ["acc-e", "acc-e"]
    assert engine.billing.get_billing_schedule("acc-e").next_billing_date == datetime(
        2024, 2, 4, tzinfo=timezone.utc
    )
    billing_logs = engine.billing.get_automation_logs("acc-e")
    assert billing_logs[-1].action == BillingAction.INVOICE_GENERATED
    assert engine.scheduler.pending_count == 2
