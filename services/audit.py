"""
Best-effort audit sink for access attempts.

Audit writes must never change the answer a guest or staff member gets: a failed write is
logged, counted in `audit_write_failures_total`, and dropped. The write runs in a worker
thread so the event loop is not blocked by SQLite.
"""

import asyncio
import logging

from monitoring.metrics import AUDIT_WRITE_FAILURES
from shared.models import AccessLogEntry
from .access_store import AccessStore

logger = logging.getLogger(__name__)


class AuditSink:
    """Appends AccessLogEntry records to the access store."""

    def __init__(self, store: AccessStore) -> None:
        self.store = store

    async def record(self, entry: AccessLogEntry) -> bool:
        """
        Persist one entry.

        Returns:
            bool: True when the entry was written, False when the write failed.
        """
        try:
            await asyncio.to_thread(self.store.append_access_log, entry)
        except Exception as e:
            AUDIT_WRITE_FAILURES.labels(action=entry.action.value).inc()
            logger.warning(
                f"Failed to write access log ({entry.action.value}) for device {entry.device_id}: {e}",
                extra={'device_id': entry.device_id},
            )
            return False
        return True
