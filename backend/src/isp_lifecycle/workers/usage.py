"""Usage worker for starting quota monitoring across all accounts."""
import structlog

from isp_lifecycle.integrations.base import AccountRepository
from isp_lifecycle.schemas.account import AccountStatus
from isp_lifecycle.services.usage_monitor import UsageMonitor

logger = structlog.get_logger(__name__)


async def start_quota_monitoring(
    usage_monitor: UsageMonitor,
    account_repository: AccountRepository,
    interval_seconds: float | None = None,
) -> dict[str, int]:
    """
    Start usage monitoring for every active account with a data quota.

    Returns:
        Dict with counts of started, already monitored and skipped accounts
    """
    try:
        accounts = await account_repository.list()

        started = 0
        already_monitored = 0
        skipped = 0

        for account in accounts:
            if account.status != AccountStatus.ACTIVE or account.quota_mb is None:
                skipped += 1
                continue

            if usage_monitor.start_monitoring(account.id, account.quota_mb, interval_seconds):
                started += 1
            else:
                already_monitored += 1

        logger.info(
            "quota_monitoring_started",
            started=started,
            already_monitored=already_monitored,
            skipped=skipped,
        )

        return {
            "started": started,
            "already_monitored": already_monitored,
            "skipped": skipped,
        }

    except Exception as e:
        logger.exception(
            "quota_monitoring_error",
            exc_info=e,
        )
        raise
