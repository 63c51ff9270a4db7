"""Pydantic schemas for the lifecycle automation engine."""

from isp_lifecycle.schemas.account import (
    INACTIVE_STATUSES,
    RESUMABLE_STATUSES,
    Account,
    AccountStatus,
)
from isp_lifecycle.schemas.automation_log import (
    AutomationLogCounts,
    AutomationLogEntry,
    BillingAction,
    ExpirationAction,
    LogStatus,
)
from isp_lifecycle.schemas.billing import (
    BillingAutomationStatus,
    BillingResult,
    BillingScheduleEntry,
    BillingTestResult,
    CreditApplicationResult,
    InvoiceSummary,
    OverdueProcessingResult,
)
from isp_lifecycle.schemas.expiration import (
    ExpirationAutomationStatus,
    ExpirationCheck,
    ExpirationProcessResult,
    RenewalCandidate,
    RenewalReason,
    RenewalResult,
)
from isp_lifecycle.schemas.notification import (
    DeliveryStatus,
    LifecycleEvent,
    NotificationChannel,
    NotificationLog,
    NotificationStats,
    NotificationTemplate,
    NotificationTemplateUpdate,
    NotificationType,
)
from isp_lifecycle.schemas.usage import (
    AlertLevel,
    AverageUsage,
    MonitoringStatus,
    PeakUsage,
    QuotaAlert,
    UsageReading,
    UsageSample,
    UsageStatus,
)

__all__ = [
    # Account
    "Account",
    "AccountStatus",
    "INACTIVE_STATUSES",
    "RESUMABLE_STATUSES",
    # Automation log
    "AutomationLogCounts",
    "AutomationLogEntry",
    "BillingAction",
    "ExpirationAction",
    "LogStatus",
    # Billing
    "BillingAutomationStatus",
    "BillingResult",
    "BillingScheduleEntry",
    "BillingTestResult",
    "CreditApplicationResult",
    "InvoiceSummary",
    "OverdueProcessingResult",
    # Expiration
    "ExpirationAutomationStatus",
    "ExpirationCheck",
    "ExpirationProcessResult",
    "RenewalCandidate",
    "RenewalReason",
    "RenewalResult",
    # Notification
    "DeliveryStatus",
    "LifecycleEvent",
    "NotificationChannel",
    "NotificationLog",
    "NotificationStats",
    "NotificationTemplate",
    "NotificationTemplateUpdate",
    "NotificationType",
    # Usage
    "AlertLevel",
    "AverageUsage",
    "MonitoringStatus",
    "PeakUsage",
    "QuotaAlert",
    "UsageReading",
    "UsageSample",
    "UsageStatus",
]
