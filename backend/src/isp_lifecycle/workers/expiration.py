"""Expiration worker for suspending expired accounts and resuming renewals.

This worker runs daily to:
1. Sweep every account for expiry (billing date + grace period)
2. Suspend expired accounts that are still active
3. Detect renewals against the previous sweep's snapshot
4. Resume service for renewed accounts
"""
from typing import Mapping

import structlog

from isp_lifecycle.integrations.base import AccountRepository
from isp_lifecycle.logging import account_context
from isp_lifecycle.schemas.account import Account
from isp_lifecycle.services.expiration_governor import ExpirationGovernor
from isp_lifecycle.services.lifecycle_actions import LifecycleActions

logger = structlog.get_logger(__name__)


async def process_account_expirations(
    governor: ExpirationGovernor,
    account_repository: AccountRepository,
    grace_period_days: int | None = None,
    actions: LifecycleActions | None = None,
) -> dict[str, int]:
    """
    Suspend every expired, active account.

    Args:
        governor: Expiration governor making the decisions
        account_repository: Source of accounts to sweep
        grace_period_days: Days past the billing date before expiry
        actions: Suspend strategy (defaults to the governor's)

    Returns:
        Dict with counts of processed, suspended, failed, pending and skipped accounts
    """
    if grace_period_days is None:
        grace_period_days = governor.settings.default_grace_period_days

    try:
        accounts = await account_repository.list()

        logger.info(
            "expiration_sweep_started",
            accounts_count=len(accounts),
            grace_period_days=grace_period_days,
        )

        governor.check_account_expirations(accounts, grace_period_days)
        result = await governor.process_expirations(accounts, grace_period_days, actions)

        logger.info(
            "expiration_sweep_completed",
            processed=result.processed_count,
            suspended=result.suspended_count,
            failed=result.failed_count,
            pending=result.pending_count,
            skipped=result.skipped_count,
        )

        return {
            "processed": result.processed_count,
            "suspended": result.suspended_count,
            "failed": result.failed_count,
            "pending": result.pending_count,
            "skipped": result.skipped_count,
        }

    except Exception as e:
        logger.exception(
            "expiration_sweep_error",
            exc_info=e,
        )
        raise


async def process_account_renewals(
    governor: ExpirationGovernor,
    account_repository: AccountRepository,
    previous_states: Mapping[str, Account],
    actions: LifecycleActions | None = None,
) -> dict[str, int]:
    """
    Resume service for accounts renewed since the previous snapshot.

    Each renewed account is processed once, against its previous state, even
    when both a status change and a payment were detected.

    Args:
        governor: Expiration governor making the decisions
        account_repository: Source of current accounts
        previous_states: Accounts as seen by the previous run, keyed by id
        actions: Resume strategy (defaults to the governor's)

    Returns:
        Dict with counts of detected renewals, resumed accounts and errors
    """
    try:
        accounts = await account_repository.list()
        candidates = governor.detect_renewals(accounts, previous_states)

        logger.info(
            "renewal_processing_started",
            candidates_count=len(candidates),
        )

        current = {account.id: account for account in accounts}
        renewed = 0
        resumed = 0
        errors = 0

        for account_id in dict.fromkeys(candidate.account_id for candidate in candidates):
            account = current[account_id]
            if account.next_billing_date is None:
                logger.warning("renewal_missing_billing_date", account_id=account_id)
                continue

            with account_context(account_id, reason="renewal"):
                result = await governor.process_renewal(
                    account_id,
                    previous_states[account_id],
                    account.next_billing_date,
                    actions,
                )
            renewed += 1

            if result.was_resumed:
                resumed += 1
                logger.info("account_resumed", account_id=account_id)
            elif not result.success:
                errors += 1

        logger.info(
            "renewal_processing_completed",
            renewed=renewed,
            resumed=resumed,
            errors=errors,
        )

        return {
            "renewed": renewed,
            "resumed": resumed,
            "errors": errors,
        }

    except Exception as e:
        logger.exception(
            "renewal_processing_error",
            exc_info=e,
        )
        raise
