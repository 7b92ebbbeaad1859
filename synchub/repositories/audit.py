"""DuckDBStore change record and audit log methods."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

from synchub.models import ChangeRecord, ChangeType, utcnow
from synchub.repositories.base import dumps, loads, transaction

logger = logging.getLogger(__name__)


def stamp_change_records(records: List[ChangeRecord]) -> None:
    """Default a missing created_at to now."""
    now = utcnow()
    for record in records:
        record.created_at = record.created_at or now


def insert_change_rows(conn, records: List[ChangeRecord]) -> None:
    """Insert records on an open connection, filling in their ids."""
    for record in records:
        record.id = conn.execute("""
            INSERT INTO change_records
                (entity_type, native_id, change_type, field_name,
                 old_value, new_value, full_snapshot, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
        """, [
            record.entity_type,
            record.native_id,
            record.change_type.value,
            record.field_name,
            record.old_value,
            record.new_value,
            dumps(record.full_snapshot),
            record.created_at,
        ]).fetchone()[0]


class AuditMixin:

    # ─── Change records ──────────────────────────────────────────────────────

    async def insert_change_records(self, records: List[ChangeRecord]) -> int:
        """Append change records. Missing created_at defaults to now."""
        if not records:
            return 0

        stamp_change_records(records)

        def _op(conn):
            with transaction(conn):
                insert_change_rows(conn, records)
            return len(records)

        return await self._run(_op)

    async def list_change_records(
        self,
        entity_type: Optional[str] = None,
        native_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[ChangeRecord]:
        """Most recent change records first, optionally filtered."""
        clauses = []
        params: List[Any] = []
        if entity_type:
            clauses.append("entity_type = ?")
            params.append(entity_type)
        if native_id:
            clauses.append("native_id = ?")
            params.append(str(native_id))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        def _op(conn):
            return conn.execute(f"""
                SELECT id, entity_type, native_id, change_type, field_name,
                       old_value, new_value, full_snapshot, created_at
                FROM change_records {where}
                ORDER BY created_at DESC, id DESC
                LIMIT ?
            """, params).fetchall()

        return [
            ChangeRecord(
                id=row[0],
                entity_type=row[1],
                native_id=row[2],
                change_type=ChangeType(row[3]),
                field_name=row[4],
                old_value=row[5],
                new_value=row[6],
                full_snapshot=loads(row[7]),
                created_at=row[8],
            )
            for row in await self._run(_op)
        ]

    async def delete_change_records_before(self, cutoff: datetime) -> int:
        """Delete change records strictly older than cutoff. Returns count."""
        def _op(conn):
            count = conn.execute(
                "SELECT COUNT(*) FROM change_records WHERE created_at < ?", [cutoff]
            ).fetchone()[0]
            if count:
                conn.execute("DELETE FROM change_records WHERE created_at < ?", [cutoff])
            return count

        return await self._run(_op)

    # ─── Audit logs ──────────────────────────────────────────────────────────

    async def insert_audit_log(
        self,
        action: str,
        status: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        source: Optional[str] = None,
        destination: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
        duration_ms: Optional[float] = None,
    ) -> int:
        def _op(conn):
            return conn.execute("""
                INSERT INTO audit_logs
                    (action, entity_type, entity_id, source, destination, status,
                     details, error_message, duration_ms, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                RETURNING id
            """, [
                action,
                entity_type,
                str(entity_id) if entity_id is not None else None,
                source,
                destination,
                status,
                dumps(details),
                error_message,
                duration_ms,
                utcnow(),
            ]).fetchone()[0]

        return await self._run(_op)

    async def list_audit_logs(
        self, limit: int = 100, status: Optional[str] = None, action: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Most recent audit log rows first."""
        clauses = []
        params: List[Any] = []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if action:
            clauses.append("action = ?")
            params.append(action)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        def _op(conn):
            return conn.execute(f"""
                SELECT id, action, entity_type, entity_id, source, destination,
                       status, details, error_message, duration_ms, created_at
                FROM audit_logs {where}
                ORDER BY id DESC
                LIMIT ?
            """, params).fetchall()

        return [
            {
                "id": row[0],
                "action": row[1],
                "entity_type": row[2],
                "entity_id": row[3],
                "source": row[4],
                "destination": row[5],
                "status": row[6],
                "details": loads(row[7], {}),
                "error_message": row[8],
                "duration_ms": row[9],
                "created_at": row[10].isoformat() if row[10] else None,
            }
            for row in await self._run(_op)
        ]
