"""Application configuration using pydantic-settings."""
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Automation engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LIFECYCLE_",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Configuration
    app_env: str = Field(default="development", description="Application environment (development/staging/production)")
    log_level: str = Field(default="INFO", description="Logging level")

    # Calendar Configuration
    default_timezone: str = Field(
        default="Africa/Nairobi",
        description="IANA timezone used for billing midnights and expiry dates",
    )
    default_grace_period_days: int = Field(default=0, ge=0, description="Days past billing date before expiry")
    default_billing_cycle_day: int = Field(default=1, ge=1, le=31, description="Default billing day of month")
    overdue_days: int = Field(default=7, ge=0, description="Days past due before an invoice counts as overdue")

    # Usage Monitoring
    usage_sample_interval_seconds: float = Field(default=60.0, gt=0, description="Bandwidth sampling interval")
    usage_history_hours: int = Field(default=24, gt=0, description="Rolling usage history window in hours")
    quota_warning_percent: float = Field(default=80.0, gt=0, description="Quota percentage raising a warning alert")
    quota_critical_percent: float = Field(default=100.0, gt=0, description="Quota percentage raising a critical alert")

    # Retention
    automation_log_limit: int = Field(default=1000, gt=0, description="Max automation log entries kept per service")
    notification_log_limit: int = Field(default=1000, gt=0, description="Max notification log entries kept")

    # Notifications
    whatsapp_enabled: bool = Field(default=True, description="Send WhatsApp copies of notifications")
    paybill_number: str = Field(default="", description="M-Pesa paybill number quoted in invoice messages")
    currency: str = Field(default="KES", description="Currency code quoted in customer messages")


# Global settings instance
settings = Settings()
