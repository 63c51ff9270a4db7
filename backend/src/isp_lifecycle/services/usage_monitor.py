"""Service for bandwidth usage monitoring and quota alerts."""
from datetime import timedelta

import structlog

from isp_lifecycle import metrics
from isp_lifecycle.config import Settings, settings as default_settings
from isp_lifecycle.integrations.base import AccountRepository, NotificationSink, UsageSource
from isp_lifecycle.scheduling import DeadlineScheduler
from isp_lifecycle.schemas.notification import LifecycleEvent, NotificationType
from isp_lifecycle.schemas.usage import (
    AlertLevel,
    AverageUsage,
    MonitoringStatus,
    PeakUsage,
    QuotaAlert,
    UsageSample,
    UsageStatus,
)

logger = structlog.get_logger(__name__)

_ALERT_RANK = {AlertLevel.INFO: 0, AlertLevel.WARNING: 1, AlertLevel.CRITICAL: 2}


def _job_key(account_id: str) -> tuple[str, str]:
    return ("usage", account_id)


class UsageMonitor:
    """Samples bandwidth per account, keeps a rolling history and quota alerts."""

    def __init__(
        self,
        scheduler: DeadlineScheduler,
        usage_source: UsageSource,
        notifier: NotificationSink | None = None,
        account_repository: AccountRepository | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize usage monitor.

        Args:
            scheduler: Shared deadline scheduler owning the sampling jobs
            usage_source: Reads bandwidth counters for an account
            notifier: Receives quota alert events
            account_repository: Resolves subscriber contact details for alerts
            settings: Application settings
        """
        self.scheduler = scheduler
        self.clock = scheduler.clock
        self.usage_source = usage_source
        self.notifier = notifier
        self.account_repository = account_repository
        self.settings = settings or default_settings

        self._history: dict[str, list[UsageSample]] = {}
        self._alerts: dict[str, QuotaAlert] = {}
        self._monitored: set[str] = set()

    def start_monitoring(
        self,
        account_id: str,
        quota_mb: float | None = None,
        interval: timedelta | float | None = None,
    ) -> bool:
        """
        Start periodic sampling for an account.

        Args:
            account_id: Account to monitor
            quota_mb: Data quota in MB; enables alerts when set
            interval: Sampling interval (timedelta or seconds)

        Returns:
            False if the account is already monitored

        Raises:
            ValueError: If account_id is blank or quota/interval is not positive
        """
        if not account_id:
            raise ValueError("account_id is required")
        if quota_mb is not None and quota_mb <= 0:
            raise ValueError("quota_mb must be positive")

        if interval is None:
            interval = self.settings.usage_sample_interval_seconds
        if not isinstance(interval, timedelta):
            interval = timedelta(seconds=interval)
        if interval <= timedelta(0):
            raise ValueError("Monitoring interval must be positive")

        if account_id in self._monitored:
            return False

        async def sample_tick() -> None:
            await self.check_account_usage(account_id, quota_mb)

        armed = self.scheduler.schedule(
            _job_key(account_id),
            self.clock.now() + interval,
            sample_tick,
            interval=interval,
        )
        if not armed:
            # Key already armed on the shared scheduler
            logger.warning("usage_monitoring_busy", account_id=account_id)
            return False

        self._monitored.add(account_id)
        self._history[account_id] = []
        metrics.monitored_accounts_gauge.set(len(self._monitored))

        logger.info(
            "usage_monitoring_started",
            account_id=account_id,
            quota_mb=quota_mb,
            interval_seconds=interval.total_seconds(),
        )
        return True

    def stop_monitoring(self, account_id: str) -> bool:
        """
        Stop sampling an account. No-op if it is not monitored.

        Returns:
            True if monitoring was stopped
        """
        if account_id not in self._monitored:
            return False

        self.scheduler.cancel(_job_key(account_id))
        self._monitored.discard(account_id)
        metrics.monitored_accounts_gauge.set(len(self._monitored))

        logger.info("usage_monitoring_stopped", account_id=account_id)
        return True

    def is_monitoring(self, account_id: str) -> bool:
        return account_id in self._monitored

    async def check_account_usage(self, account_id: str, quota_mb: float | None = None) -> UsageSample | None:
        """
        Take one usage sample and evaluate the quota.

        Args:
            account_id: Account to sample
            quota_mb: Data quota in MB; when set, thresholds are evaluated

        Returns:
            The stored sample, or None if the usage source failed

        Raises:
            ValueError: If quota_mb is not positive
        """
        if quota_mb is not None and quota_mb <= 0:
            raise ValueError("quota_mb must be positive")

        try:
            reading = await self.usage_source.sample(account_id)
        except Exception as e:
            metrics.usage_samples_total.labels(status="failed").inc()
            logger.exception("usage_check_failed", account_id=account_id, exc_info=e)
            return None

        if reading is None:
            metrics.usage_samples_total.labels(status="failed").inc()
            logger.warning("usage_reading_missing", account_id=account_id)
            return None

        now = self.clock.now()
        total_mb = reading.total_download_mb + reading.total_upload_mb

        percentage = None
        status = UsageStatus.NORMAL
        if quota_mb:
            percentage = total_mb / quota_mb * 100
            if percentage >= self.settings.quota_critical_percent:
                status = UsageStatus.EXCEEDED
            elif percentage >= self.settings.quota_warning_percent:
                status = UsageStatus.WARNING

        sample = UsageSample(
            account_id=account_id,
            timestamp=now,
            download_mbps=reading.download_mbps,
            upload_mbps=reading.upload_mbps,
            total_download_mb=reading.total_download_mb,
            total_upload_mb=reading.total_upload_mb,
            percentage_of_quota=round(percentage, 2) if percentage is not None else None,
            status=status,
        )

        # Keep only the retention window
        cutoff = now - timedelta(hours=self.settings.usage_history_hours)
        history = self._history.get(account_id, [])
        history.append(sample)
        self._history[account_id] = [record for record in history if record.timestamp > cutoff]

        metrics.usage_samples_total.labels(status="success").inc()

        if quota_mb:
            await self._evaluate_quota(account_id, total_mb, quota_mb, percentage)

        return sample

    async def _evaluate_quota(self, account_id: str, total_mb: float, quota_mb: float, percentage: float) -> None:
        if percentage >= self.settings.quota_critical_percent:
            level = AlertLevel.CRITICAL
        elif percentage >= self.settings.quota_warning_percent:
            level = AlertLevel.WARNING
        else:
            # Below threshold clears any live alert
            self._alerts.pop(account_id, None)
            return

        previous = self._alerts.get(account_id)
        alert = QuotaAlert(
            account_id=account_id,
            current_usage_mb=total_mb,
            quota_mb=quota_mb,
            percentage_used=round(percentage, 2),
            alert_level=level,
            timestamp=self.clock.now(),
        )
        self._alerts[account_id] = alert

        if previous is not None and _ALERT_RANK[previous.alert_level] >= _ALERT_RANK[level]:
            return

        metrics.quota_alerts_raised_total.labels(level=level.value).inc()
        logger.warning(
            "quota_alert_raised",
            account_id=account_id,
            alert_level=level.value,
            percentage_used=alert.percentage_used,
            current_usage_mb=total_mb,
            quota_mb=quota_mb,
        )
        await self._notify_alert(alert)

    async def _notify_alert(self, alert: QuotaAlert) -> None:
        """Hand an alert to the notification sink; failures never undo the alert."""
        if self.notifier is None:
            return

        try:
            account = await self.account_repository.get(alert.account_id) if self.account_repository else None
            await self.notifier.notify(
                LifecycleEvent(
                    type=NotificationType.QUOTA_ALERT,
                    account_id=alert.account_id,
                    customer_phone=account.customer_phone if account else "",
                    customer_name=account.customer_name if account else "",
                    variables={
                        "percentageUsed": round(alert.percentage_used),
                        "usedData": round(alert.current_usage_mb / 1024, 2),
                        "totalQuota": round(alert.quota_mb / 1024, 2),
                        "alertLevel": alert.alert_level.value,
                    },
                )
            )
        except Exception as e:
            logger.warning("quota_alert_notification_failed", account_id=alert.account_id, error=str(e))

    def get_usage_history(self, account_id: str, hours: float = 24) -> list[UsageSample]:
        """Samples newer than ``hours`` ago, oldest first."""
        cutoff = self.clock.now() - timedelta(hours=hours)
        return [record for record in self._history.get(account_id, []) if record.timestamp > cutoff]

    def get_peak_usage_time(self, account_id: str, hours: float = 24) -> PeakUsage:
        """Sample with the highest combined rate; zero-valued when there is no history."""
        history = self.get_usage_history(account_id, hours)
        if not history:
            return PeakUsage()

        peak = max(history, key=lambda record: record.download_mbps + record.upload_mbps)
        return PeakUsage(time=peak.timestamp, download_mbps=peak.download_mbps, upload_mbps=peak.upload_mbps)

    def get_average_usage(self, account_id: str, hours: float = 24) -> AverageUsage:
        history = self.get_usage_history(account_id, hours)
        if not history:
            return AverageUsage()

        return AverageUsage(
            download_mbps=sum(record.download_mbps for record in history) / len(history),
            upload_mbps=sum(record.upload_mbps for record in history) / len(history),
        )

    def get_quota_alerts(self) -> list[QuotaAlert]:
        return list(self._alerts.values())

    def get_account_alerts(self, account_id: str) -> list[QuotaAlert]:
        alert = self._alerts.get(account_id)
        return [alert] if alert else []

    def clear_account_alerts(self, account_id: str) -> None:
        self._alerts.pop(account_id, None)

    def get_monitoring_status(self) -> MonitoringStatus:
        return MonitoringStatus(
            active_accounts=len(self._monitored),
            total_records=sum(len(history) for history in self._history.values()),
            total_alerts=len(self._alerts),
        )
