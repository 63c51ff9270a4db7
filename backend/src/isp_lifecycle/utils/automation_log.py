"""Bounded, append-only automation log.

Each service owns one log. Entries are mirrored to structlog so they also
reach the process log stream.
"""
from collections import deque

import structlog

from isp_lifecycle.scheduling import Clock
from isp_lifecycle.schemas.automation_log import (
    AutomationLogCounts,
    AutomationLogEntry,
    BillingAction,
    ExpirationAction,
    LogStatus,
)

logger = structlog.get_logger(__name__)


class AutomationLog:
    """FIFO log capped at ``limit`` entries; the oldest are evicted first."""

    def __init__(self, clock: Clock, limit: int = 1000, source: str = "automation"):
        if limit <= 0:
            raise ValueError("Automation log limit must be positive")
        self._clock = clock
        self._entries: deque[AutomationLogEntry] = deque(maxlen=limit)
        self._source = source

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def limit(self) -> int:
        return self._entries.maxlen or 0

    def record(
        self,
        account_id: str,
        action: BillingAction | ExpirationAction,
        status: LogStatus,
        details: str = "",
    ) -> AutomationLogEntry:
        """
        Append an entry.

        Args:
            account_id: Account the action concerns
            action: Action vocabulary member
            status: Outcome of the action
            details: Free-text detail

        Returns:
            The stored entry
        """
        entry = AutomationLogEntry(
            timestamp=self._clock.now(),
            account_id=account_id,
            action=action,
            status=status,
            details=details,
        )
        self._entries.append(entry)

        log = logger.warning if status == LogStatus.FAILED else logger.info
        log(
            "automation_action",
            source=self._source,
            account_id=account_id,
            action=action.value,
            status=status.value,
            details=details,
        )
        return entry

    def entries(self, account_id: str | None = None, limit: int = 100) -> list[AutomationLogEntry]:
        """
        Return the most recent entries, oldest first.

        Args:
            account_id: Only entries for this account
            limit: Maximum number of entries
        """
        entries = list(self._entries)
        if account_id:
            entries = [entry for entry in entries if entry.account_id == account_id]
        if limit <= 0:
            return []
        return entries[-limit:]

    def counts(self) -> AutomationLogCounts:
        success = pending = failed = 0
        for entry in self._entries:
            if entry.status == LogStatus.SUCCESS:
                success += 1
            elif entry.status == LogStatus.PENDING:
                pending += 1
            else:
                failed += 1
        return AutomationLogCounts(total=len(self._entries), success=success, pending=pending, failed=failed)

    def clear(self) -> None:
        self._entries.clear()
