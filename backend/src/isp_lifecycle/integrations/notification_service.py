"""Notification service for SMS/WhatsApp subscriber messages."""
import re
from collections import deque
from typing import Any, Awaitable, Callable
from uuid import uuid4

import structlog

from isp_lifecycle import metrics
from isp_lifecycle.config import Settings, settings as default_settings
from isp_lifecycle.scheduling import Clock, SystemClock
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

logger = structlog.get_logger(__name__)

# (phone, message) -> delivered?
MessageSender = Callable[[str, str], Awaitable[bool]]

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")

DEFAULT_TEMPLATES: dict[NotificationType, tuple[str, str]] = {
    NotificationType.INVOICE: (
        "Dear {{customerName}}, your ISP invoice {{invoiceNumber}} for {{currency}} {{amount}} is ready. "
        "Due: {{dueDate}}. Pay via M-Pesa: {{paybillNumber}}",
        "Hi {{customerName}},\n\nYour invoice {{invoiceNumber}} has been generated.\n\n"
        "Amount: {{currency}} {{amount}}\nDue Date: {{dueDate}}\n\n"
        "Please settle this invoice to maintain uninterrupted service.\n\nThank you!",
    ),
    NotificationType.PAYMENT_REMINDER: (
        "Reminder: Invoice {{invoiceNumber}} ({{currency}} {{amount}}) is due on {{dueDate}}. "
        "Pay via M-Pesa {{paybillNumber}}",
        "Payment Reminder\n\nInvoice: {{invoiceNumber}}\nAmount: {{currency}} {{amount}}\nDue: {{dueDate}}\n\n"
        "Please complete payment to avoid service suspension.",
    ),
    NotificationType.OVERDUE: (
        "URGENT: Invoice {{invoiceNumber}} is {{overdueDays}} days overdue. "
        "Pay immediately to avoid service suspension.",
        "IMPORTANT: Service at Risk\n\nYour invoice {{invoiceNumber}} is {{overdueDays}} days overdue.\n\n"
        "Please pay {{currency}} {{amount}} immediately to avoid service disconnection.",
    ),
    NotificationType.PAYMENT_RECEIVED: (
        "Thank you! Payment of {{currency}} {{amount}} received on {{paymentDate}}. "
        "Invoice {{invoiceNumber}} is now paid. Ref: {{transactionRef}}",
        "Payment Received\n\nAmount: {{currency}} {{amount}}\nDate: {{paymentDate}}\n"
        "Invoice: {{invoiceNumber}}\nReference: {{transactionRef}}\n\nThank you for your business!",
    ),
    NotificationType.QUOTA_ALERT: (
        "Alert: You have used {{percentageUsed}}% of your data quota ({{usedData}}GB of {{totalQuota}}GB). "
        "Upgrade or manage usage.",
        "Data Usage Alert\n\nYou've used {{percentageUsed}}% of your quota\n\n"
        "Used: {{usedData}}GB / {{totalQuota}}GB\n\n"
        "Upgrade your plan or manage your usage to avoid throttling.",
    ),
    NotificationType.SUSPENDED: (
        "Dear {{customerName}}, your internet service has been suspended because your subscription "
        "expired {{daysOverdue}} days ago. Pay {{currency}} {{amount}} via M-Pesa {{paybillNumber}} to restore it.",
        "Service Suspended\n\nHi {{customerName}}, your subscription expired {{daysOverdue}} days ago "
        "and service has been suspended.\n\nPay {{currency}} {{amount}} to restore service.",
    ),
    NotificationType.RESUMED: (
        "Dear {{customerName}}, your internet service has been restored. Next billing date: {{nextBillingDate}}.",
        "Service Restored\n\nHi {{customerName}}, thank you for renewing.\n\n"
        "Your service is active again. Next billing date: {{nextBillingDate}}.",
    ),
}


def interpolate_template(template: str, variables: dict[str, Any]) -> str:
    """Replace ``{{name}}`` placeholders; unknown placeholders are left as-is."""

    def replace(match: re.Match) -> str:
        key = match.group(1)
        return str(variables[key]) if key in variables else match.group(0)

    return _PLACEHOLDER.sub(replace, template)


async def log_sms(phone: str, message: str) -> bool:
    """Stand-in SMS sender that only logs the message."""
    # TODO: Wire the Africa's Talking SMS gateway client here once it is packaged
    logger.info("sms_notification", to=phone, message_length=len(message))
    return True


async def log_whatsapp(phone: str, message: str) -> bool:
    """Stand-in WhatsApp sender that only logs the message."""
    logger.info("whatsapp_notification", to=phone, message_length=len(message))
    return True


class NotificationService:
    """
    Templated subscriber notifications over SMS and WhatsApp.

    Implements the NotificationSink interface. Channel senders are injected;
    by default messages are only logged.
    """

    def __init__(
        self,
        sms_sender: MessageSender | None = None,
        whatsapp_sender: MessageSender | None = None,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ):
        """
        Initialize notification service.

        Args:
            sms_sender: Coroutine delivering an SMS
            whatsapp_sender: Coroutine delivering a WhatsApp message
            settings: Application settings
            clock: Time source for log timestamps
        """
        self.settings = settings or default_settings
        self.clock = clock or SystemClock()
        self.sms_sender = sms_sender or log_sms
        self.whatsapp_sender = whatsapp_sender or log_whatsapp
        self.whatsapp_enabled = self.settings.whatsapp_enabled
        self._templates: dict[NotificationType, NotificationTemplate] = {
            notification_type: NotificationTemplate(
                id=notification_type.value,
                type=notification_type,
                sms_template=sms,
                whatsapp_template=whatsapp,
            )
            for notification_type, (sms, whatsapp) in DEFAULT_TEMPLATES.items()
        }
        self._logs: deque[NotificationLog] = deque(maxlen=self.settings.notification_log_limit)

    async def notify(self, event: LifecycleEvent, channel: NotificationChannel = NotificationChannel.BOTH) -> bool:
        """
        Render and deliver a lifecycle event.

        Args:
            event: Event to deliver
            channel: Channels to use

        Returns:
            True if delivered on at least one channel
        """
        template = self._templates.get(event.type)
        if template is None or not template.enabled:
            metrics.notifications_sent_total.labels(notification_type=event.type.value, status="skipped").inc()
            logger.info("notification_skipped", notification_type=event.type.value, account_id=event.account_id)
            return False

        if not event.customer_phone:
            metrics.notifications_sent_total.labels(notification_type=event.type.value, status="skipped").inc()
            logger.warning("notification_missing_phone", notification_type=event.type.value, account_id=event.account_id)
            return False

        variables = {
            "customerName": event.customer_name,
            "currency": self.settings.currency,
            "paybillNumber": self.settings.paybill_number,
            **event.variables,
        }
        sms_message = interpolate_template(template.sms_template, variables)
        whatsapp_message = interpolate_template(template.whatsapp_template, variables)

        return await self._send(event, sms_message, whatsapp_message, channel)

    async def send_invoice_notification(
        self,
        account_id: str,
        customer_phone: str,
        customer_name: str,
        invoice_number: str,
        amount: Any,
        due_date: str,
    ) -> bool:
        """Send a new-invoice message."""
        return await self.notify(
            LifecycleEvent(
                type=NotificationType.INVOICE,
                account_id=account_id,
                customer_phone=customer_phone,
                customer_name=customer_name,
                variables={"invoiceNumber": invoice_number, "amount": amount, "dueDate": due_date},
            )
        )

    async def send_payment_reminder(
        self,
        account_id: str,
        customer_phone: str,
        customer_name: str,
        invoice_number: str,
        amount: Any,
        due_date: str,
    ) -> bool:
        """Send a reminder for an invoice that is coming due."""
        return await self.notify(
            LifecycleEvent(
                type=NotificationType.PAYMENT_REMINDER,
                account_id=account_id,
                customer_phone=customer_phone,
                customer_name=customer_name,
                variables={"invoiceNumber": invoice_number, "amount": amount, "dueDate": due_date},
            )
        )

    async def send_overdue_notification(
        self,
        account_id: str,
        customer_phone: str,
        customer_name: str,
        invoice_number: str,
        amount: Any,
        overdue_days: int,
    ) -> bool:
        """Send an overdue-invoice warning."""
        return await self.notify(
            LifecycleEvent(
                type=NotificationType.OVERDUE,
                account_id=account_id,
                customer_phone=customer_phone,
                customer_name=customer_name,
                variables={"invoiceNumber": invoice_number, "amount": amount, "overdueDays": overdue_days},
            )
        )

    async def send_payment_received(
        self,
        account_id: str,
        customer_phone: str,
        customer_name: str,
        invoice_number: str,
        amount: Any,
        payment_date: str,
        transaction_ref: str,
    ) -> bool:
        """Send a payment receipt."""
        return await self.notify(
            LifecycleEvent(
                type=NotificationType.PAYMENT_RECEIVED,
                account_id=account_id,
                customer_phone=customer_phone,
                customer_name=customer_name,
                variables={
                    "invoiceNumber": invoice_number,
                    "amount": amount,
                    "paymentDate": payment_date,
                    "transactionRef": transaction_ref,
                },
            )
        )

    async def send_quota_alert_notification(
        self,
        account_id: str,
        customer_phone: str,
        customer_name: str,
        percentage_used: float,
        used_data_gb: float,
        total_quota_gb: float,
    ) -> bool:
        """Send a data quota alert."""
        return await self.notify(
            LifecycleEvent(
                type=NotificationType.QUOTA_ALERT,
                account_id=account_id,
                customer_phone=customer_phone,
                customer_name=customer_name,
                variables={
                    "percentageUsed": round(percentage_used),
                    "usedData": round(used_data_gb, 2),
                    "totalQuota": round(total_quota_gb, 2),
                },
            )
        )

    async def _send(
        self,
        event: LifecycleEvent,
        sms_message: str,
        whatsapp_message: str,
        channel: NotificationChannel,
    ) -> bool:
        phone = event.customer_phone
        errors = []

        sms_ok = False
        if channel in (NotificationChannel.SMS, NotificationChannel.BOTH):
            sms_ok = await self._deliver(self.sms_sender, "sms", phone, sms_message, errors)

        whatsapp_ok = False
        if channel in (NotificationChannel.WHATSAPP, NotificationChannel.BOTH) and self.whatsapp_enabled:
            whatsapp_ok = await self._deliver(self.whatsapp_sender, "whatsapp", phone, whatsapp_message, errors)

        delivered = sms_ok or whatsapp_ok
        status = DeliveryStatus.SENT if delivered else DeliveryStatus.FAILED

        self._logs.append(
            NotificationLog(
                id=f"NOTIF-{uuid4().hex[:12]}",
                timestamp=self.clock.now(),
                account_id=event.account_id,
                customer_phone=phone,
                notification_type=event.type,
                channel=channel,
                status=status,
                message=sms_message,
                error=None if delivered else ("; ".join(errors) or "No channel delivered the message"),
            )
        )
        metrics.notifications_sent_total.labels(notification_type=event.type.value, status=status.value).inc()

        logger.info(
            "notification_processed",
            notification_type=event.type.value,
            account_id=event.account_id,
            channel=channel.value,
            status=status.value,
        )
        return delivered

    async def _deliver(
        self,
        sender: MessageSender,
        channel_name: str,
        phone: str,
        message: str,
        errors: list[str],
    ) -> bool:
        try:
            return await sender(phone, message)
        except Exception as e:
            errors.append(f"{channel_name}: {e}")
            logger.warning("notification_channel_failed", channel=channel_name, to=phone, error=str(e))
            return False

    def get_notification_logs(self, account_id: str | None = None, limit: int = 100) -> list[NotificationLog]:
        logs = list(self._logs)
        if account_id:
            logs = [log for log in logs if log.account_id == account_id]
        return logs[-limit:] if limit > 0 else []

    def get_templates(self) -> list[NotificationTemplate]:
        return list(self._templates.values())

    def update_template(self, notification_type: NotificationType, updates: NotificationTemplateUpdate) -> bool:
        """
        Update a template in place.

        Returns:
            False if no template exists for the type
        """
        template = self._templates.get(notification_type)
        if template is None:
            return False

        self._templates[notification_type] = template.model_copy(update=updates.model_dump(exclude_none=True))
        return True

    def get_notification_stats(self) -> NotificationStats:
        today = self.clock.now().date()
        sent = [log for log in self._logs if log.status == DeliveryStatus.SENT]
        return NotificationStats(
            total_sent=len(sent),
            total_failed=sum(1 for log in self._logs if log.status == DeliveryStatus.FAILED),
            today_sent=sum(1 for log in sent if log.timestamp.date() == today),
        )
