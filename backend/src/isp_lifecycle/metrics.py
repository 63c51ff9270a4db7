"""Automation metrics for Prometheus monitoring."""
from prometheus_client import Counter, Gauge

# Usage metrics
usage_samples_total = Counter(
    "usage_samples_total",
    "Total bandwidth sampling attempts",
    labelnames=["status"],  # status: success, failed
)

quota_alerts_raised_total = Counter(
    "quota_alerts_raised_total",
    "Total quota alerts raised or escalated",
    labelnames=["level"],  # level: warning, critical
)

monitored_accounts_gauge = Gauge(
    "monitored_accounts",
    "Number of accounts with bandwidth monitoring enabled",
)

# Billing metrics
invoices_generated_total = Counter(
    "invoices_generated_total",
    "Total invoices generated by billing cycles",
)

billing_failures_total = Counter(
    "billing_failures_total",
    "Total billing cycles that failed to produce an invoice",
)

billing_scheduled_accounts_gauge = Gauge(
    "billing_scheduled_accounts",
    "Number of accounts with an armed billing deadline",
)

# Expiration metrics
account_suspensions_total = Counter(
    "account_suspensions_total",
    "Total automatic suspension decisions",
    labelnames=["status"],  # status: success, failed, pending
)

account_resumptions_total = Counter(
    "account_resumptions_total",
    "Total automatic resumption attempts",
    labelnames=["status"],  # status: success, failed, pending
)

# Notification metrics
notifications_sent_total = Counter(
    "notifications_sent_total",
    "Total customer notifications",
    labelnames=["notification_type", "status"],  # status: sent, failed, skipped
)

# Scheduler metrics
scheduler_pending_jobs_gauge = Gauge(
    "scheduler_pending_jobs",
    "Number of jobs armed on the deadline scheduler",
)

scheduled_job_failures_total = Counter(
    "scheduled_job_failures_total",
    "Total scheduled job runs that raised an unexpected exception",
)
