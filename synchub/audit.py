"""
Audit trail: change records with bounded retention, plus the audit-log sink.

ChangeRecords are immutable once written and only removed by ``purge``.
The audit-log sink records operator-facing outcomes (sync summaries,
write-backs, failures) and never raises on bad details.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from synchub.config import config
from synchub.models import AuditStatus, ChangeRecord, utcnow
from synchub.observability import get_logger

logger = get_logger(__name__)


class AuditTrail:
    """Append-only change history with retention purge."""

    def __init__(self, store, retention_days: Optional[int] = None):
        self.store = store
        self.retention_days = retention_days or config.retention.change_retention_days

    async def record_changes(self, records: List[ChangeRecord]) -> int:
        if not records:
            return 0
        return await self.store.insert_change_records(records)

    async def list_changes(
        self,
        entity_type: Optional[str] = None,
        native_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[ChangeRecord]:
        return await self.store.list_change_records(entity_type, native_id, limit)

    def retention_cutoff(self, now: Optional[datetime] = None) -> datetime:
        return (now or utcnow()) - timedelta(days=self.retention_days)

    async def purge(self, older_than: Optional[datetime] = None) -> int:
        """
        Delete every change record with ``created_at < older_than``.

        Args:
            older_than: Cutoff; defaults to now minus the retention window

        Returns:
            Number of records removed
        """
        cutoff = older_than or self.retention_cutoff()
        removed = await self.store.delete_change_records_before(cutoff)
        logger.info(
            f"Purged {removed} change records",
            extra={"cutoff": cutoff.isoformat(), "removed": removed},
        )
        return removed


class AuditLogSink:
    """
    Records ``(action, entity_type, entity_id, status, details)`` rows.

    Usage:
        await sink.record("procore_sync", "procore.projects", None,
                          AuditStatus.SUCCESS, {"created": 3})
    """

    def __init__(self, store):
        self.store = store

    async def record(
        self,
        action: str,
        entity_type: Optional[str],
        entity_id: Optional[str],
        status: AuditStatus,
        details: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
        destination: Optional[str] = None,
        error_message: Optional[str] = None,
        duration_ms: Optional[float] = None,
    ) -> int:
        if status == AuditStatus.ERROR:
            logger.warning(
                f"Audit error: {action} {entity_type or ''} {entity_id or ''}".rstrip(),
                extra={"action": action, "error": error_message},
            )
        return await self.store.insert_audit_log(
            action=action,
            status=AuditStatus(status).value,
            entity_type=entity_type,
            entity_id=entity_id,
            source=source,
            destination=destination,
            details=details,
            error_message=error_message,
            duration_ms=round(duration_ms, 2) if duration_ms is not None else None,
        )

    async def recent(
        self, limit: int = 100, status: Optional[str] = None, action: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        return await self.store.list_audit_logs(limit=limit, status=status, action=action)
