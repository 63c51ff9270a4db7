"""Pydantic schemas for bandwidth usage monitoring."""
import enum
from datetime import datetime

from pydantic import BaseModel, Field


class UsageStatus(enum.Enum):
    """Quota standing of a single usage sample."""

    NORMAL = "normal"
    WARNING = "warning"
    EXCEEDED = "exceeded"


class AlertLevel(enum.Enum):
    """Severity of a quota alert."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class UsageReading(BaseModel):
    """Raw counters returned by a usage source for one account."""

    download_mbps: float = Field(..., ge=0, description="Current download rate in Mbps")
    upload_mbps: float = Field(..., ge=0, description="Current upload rate in Mbps")
    total_download_mb: float = Field(..., ge=0, description="Downloaded today in MB")
    total_upload_mb: float = Field(..., ge=0, description="Uploaded today in MB")


class UsageSample(BaseModel):
    """One sampling tick retained in an account's rolling history."""

    account_id: str
    timestamp: datetime
    download_mbps: float
    upload_mbps: float
    total_download_mb: float
    total_upload_mb: float
    percentage_of_quota: float | None = None
    status: UsageStatus = UsageStatus.NORMAL

    @property
    def total_usage_mb(self) -> float:
        return self.total_download_mb + self.total_upload_mb


class QuotaAlert(BaseModel):
    """Live quota alert; at most one exists per account."""

    account_id: str
    current_usage_mb: float
    quota_mb: float
    percentage_used: float
    alert_level: AlertLevel
    timestamp: datetime


class PeakUsage(BaseModel):
    """Sample with the highest combined rate in a window."""

    time: datetime | None = None
    download_mbps: float = 0.0
    upload_mbps: float = 0.0


class AverageUsage(BaseModel):
    """Mean transfer rates over a window."""

    download_mbps: float = 0.0
    upload_mbps: float = 0.0


class MonitoringStatus(BaseModel):
    """Summary of the usage monitor's state."""

    active_accounts: int
    total_records: int
    total_alerts: int
