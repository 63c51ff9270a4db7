"""Billing worker for arming recurring billing across all accounts.

Runs at startup (and may be re-run safely) to:
1. Load billable accounts
2. Arm a billing deadline for each one not already scheduled
3. Run the overdue invoice sweep
"""
import structlog

from isp_lifecycle.integrations.base import AccountRepository
from isp_lifecycle.logging import account_context
from isp_lifecycle.schemas.account import AccountStatus
from isp_lifecycle.services.billing_scheduler import BillingScheduler

logger = structlog.get_logger(__name__)


async def schedule_account_billing(
    billing_scheduler: BillingScheduler,
    account_repository: AccountRepository,
    billing_cycle_day: int | None = None,
) -> dict[str, int]:
    """
    Schedule billing for every active account.

    Accounts already scheduled are left untouched.

    Args:
        billing_scheduler: Scheduler arming the deadlines
        account_repository: Source of accounts
        billing_cycle_day: Cycle day for every account (defaults to settings)

    Returns:
        Dict with counts of scheduled, already scheduled, skipped and errored accounts
    """
    try:
        accounts = await account_repository.list()

        logger.info(
            "billing_scheduling_started",
            accounts_count=len(accounts),
        )

        scheduled = 0
        already_scheduled = 0
        skipped = 0
        errors = 0

        for account in accounts:
            if account.status != AccountStatus.ACTIVE:
                skipped += 1
                continue

            try:
                with account_context(account.id):
                    armed = billing_scheduler.schedule_billing(
                        account.id,
                        billing_cycle_day=billing_cycle_day,
                        timezone=account.timezone,
                        monthly_fee=account.monthly_fee,
                    )
            except ValueError as e:
                errors += 1
                logger.warning(
                    "billing_scheduling_rejected",
                    account_id=account.id,
                    error=str(e),
                )
                continue

            if armed:
                scheduled += 1
            else:
                already_scheduled += 1

        logger.info(
            "billing_scheduling_completed",
            scheduled=scheduled,
            already_scheduled=already_scheduled,
            skipped=skipped,
            errors=errors,
        )

        return {
            "scheduled": scheduled,
            "already_scheduled": already_scheduled,
            "skipped": skipped,
            "errors": errors,
        }

    except Exception as e:
        logger.exception(
            "billing_scheduling_error",
            exc_info=e,
        )
        raise


async def process_overdue_billing(billing_scheduler: BillingScheduler) -> dict[str, int]:
    """
    Mark overdue invoices and suspend their owners.

    Returns:
        Dict with counts of processed invoices, suspended accounts and failures
    """
    result = await billing_scheduler.process_overdue_invoices()

    return {
        "processed": result.processed_count,
        "suspended": result.suspended_count,
        "failed": result.failed_count,
    }
