"""DuckDBStore idempotency key and webhook event log methods."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

from synchub.models import utcnow
from synchub.repositories.base import dumps, loads, transaction

logger = logging.getLogger(__name__)


def _claim_key(conn, key, source, event_type, expires_at, now) -> bool:
    row = conn.execute(
        "SELECT expires_at FROM idempotency_keys WHERE key = ?", [key]
    ).fetchone()
    if row and row[0] > now:
        return False
    conn.execute("""
        INSERT INTO idempotency_keys (key, source, event_type, expires_at, created_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT (key) DO UPDATE SET
            expires_at = excluded.expires_at,
            created_at = excluded.created_at
    """, [key, source, event_type, expires_at, now])
    return True


def _insert_event_row(
    conn, source, status, payload, event_type, resource_type, resource_id,
    idempotency_key, error_message,
) -> int:
    return conn.execute("""
        INSERT INTO webhook_events
            (source, event_type, resource_type, resource_id, status,
             payload, idempotency_key, error_message, received_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        RETURNING id
    """, [
        source,
        event_type,
        resource_type,
        str(resource_id) if resource_id is not None else None,
        status,
        dumps(payload),
        idempotency_key,
        error_message,
        utcnow(),
    ]).fetchone()[0]


class WebhookMixin:

    # ─── Idempotency keys ────────────────────────────────────────────────────

    async def claim_idempotency_key(
        self,
        key: str,
        source: str,
        event_type: Optional[str],
        expires_at: datetime,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Record ``key`` unless a live copy already exists.

        The check and the write run in one store call under the store lock.
        An expired key is treated as absent and re-armed.

        Returns:
            True if the key was claimed (first delivery), False if duplicate
        """
        now = now or utcnow()

        def _op(conn):
            return _claim_key(conn, key, source, event_type, expires_at, now)

        return await self._run(_op)

    async def has_live_idempotency_key(self, key: str, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()

        def _op(conn):
            return conn.execute(
                "SELECT 1 FROM idempotency_keys WHERE key = ? AND expires_at > ?", [key, now]
            ).fetchone()

        return await self._run(_op) is not None

    async def delete_expired_idempotency_keys(self, now: Optional[datetime] = None) -> int:
        """Remove keys whose expiry has passed. Returns count."""
        now = now or utcnow()

        def _op(conn):
            count = conn.execute(
                "SELECT COUNT(*) FROM idempotency_keys WHERE expires_at <= ?", [now]
            ).fetchone()[0]
            if count:
                conn.execute("DELETE FROM idempotency_keys WHERE expires_at <= ?", [now])
            return count

        return await self._run(_op)

    # ─── Webhook event log ───────────────────────────────────────────────────

    async def insert_webhook_event(
        self,
        source: str,
        status: str,
        payload: Any,
        event_type: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> int:
        """Persist a raw inbound event. Returns its id."""
        def _op(conn):
            return _insert_event_row(
                conn, source, status, payload, event_type, resource_type,
                resource_id, idempotency_key, error_message,
            )

        return await self._run(_op)

    async def claim_webhook_event(
        self,
        key: str,
        source: str,
        event_type: Optional[str],
        expires_at: datetime,
        payload: Any,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        status: str = "received",
        now: Optional[datetime] = None,
    ) -> Optional[int]:
        """
        Claim ``key`` and log the event in one transaction.

        Returns:
            The new webhook event id, or None if the key is already live
        """
        now = now or utcnow()

        def _op(conn):
            with transaction(conn):
                if not _claim_key(conn, key, source, event_type, expires_at, now):
                    return None
                return _insert_event_row(
                    conn, source, status, payload, event_type, resource_type,
                    resource_id, key, None,
                )

        return await self._run(_op)

    async def update_webhook_event(
        self,
        event_id: int,
        status: str,
        error_message: Optional[str] = None,
        processing_time_ms: Optional[float] = None,
    ) -> None:
        def _op(conn):
            conn.execute("""
                UPDATE webhook_events
                SET status = ?, error_message = ?, processing_time_ms = ?, processed_at = ?
                WHERE id = ?
            """, [status, error_message, processing_time_ms, utcnow(), event_id])

        await self._run(_op)

    async def get_webhook_event(self, event_id: int) -> Optional[Dict[str, Any]]:
        def _op(conn):
            return conn.execute("""
                SELECT id, source, event_type, resource_type, resource_id, status,
                       payload, idempotency_key, error_message, processing_time_ms,
                       received_at, processed_at
                FROM webhook_events WHERE id = ?
            """, [event_id]).fetchone()

        row = await self._run(_op)
        if not row:
            return None
        return {
            "id": row[0],
            "source": row[1],
            "event_type": row[2],
            "resource_type": row[3],
            "resource_id": row[4],
            "status": row[5],
            "payload": loads(row[6]),
            "idempotency_key": row[7],
            "error_message": row[8],
            "processing_time_ms": row[9],
            "received_at": row[10],
            "processed_at": row[11],
        }

    async def count_webhook_events(self, source: Optional[str] = None) -> int:
        def _op(conn):
            if source:
                return conn.execute(
                    "SELECT COUNT(*) FROM webhook_events WHERE source = ?", [source]
                ).fetchone()[0]
            return conn.execute("SELECT COUNT(*) FROM webhook_events").fetchone()[0]

        return await self._run(_op)

    async def list_webhook_events(self, limit: int = 50) -> List[Dict[str, Any]]:
        def _op(conn):
            return conn.execute("""
                SELECT id, source, event_type, resource_id, status, error_message, received_at
                FROM webhook_events ORDER BY id DESC LIMIT ?
            """, [limit]).fetchall()

        return [
            {
                "id": row[0],
                "source": row[1],
                "event_type": row[2],
                "resource_id": row[3],
                "status": row[4],
                "error_message": row[5],
                "received_at": row[6].isoformat() if row[6] else None,
            }
            for row in await self._run(_op)
        ]
