"""
DuckDB store for mirrored platform data and the audit trail.

Holds every piece of persistent state the hub owns: entity mirrors, change
records, idempotency keys, the webhook event log, audit logs, cross-platform
mappings and poll job configuration.

Domain-specific query methods are organized into repository mixins:
- MirrorMixin: Upsert-able copies of remote entities
- AuditMixin: Change records (with retention purge) and audit logs
- WebhookMixin: Idempotency keys and the raw webhook event log
- MappingsMixin: Cross-platform entity mappings
- JobsMixin: Persisted poll job configuration
"""
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import duckdb

from synchub.config import config
from synchub.exceptions import QueryTimeoutError
from synchub.repositories import (
    MirrorMixin, AuditMixin, WebhookMixin, MappingsMixin, JobsMixin,
)

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"


class DuckDBStore(MirrorMixin, AuditMixin, WebhookMixin, MappingsMixin, JobsMixin):
    """
    Async-compatible DuckDB store.

    Features:
    - Persistent storage (survives restarts)
    - Idempotent upserts keyed by natural ids
    - Serialized access through a single asyncio lock
    - Thread offloading to avoid blocking the asyncio event loop
    """

    def __init__(self, db_path: Optional[str] = None, query_timeout: Optional[float] = None):
        self.db_path = db_path or config.database.path
        self.query_timeout = query_timeout or config.database.query_timeout
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = asyncio.Lock()  # Serializes all database access
        self._executor: Optional[ThreadPoolExecutor] = None
        self._total_queries = 0

    async def connect(self) -> None:
        """Initialize database connection, schema, and thread pool."""
        if self.db_path != MEMORY_DB:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        async with self._lock:
            if self._connection is None:
                self._connection = duckdb.connect(str(self.db_path))
                self._init_schema(self._connection)

                self._executor = ThreadPoolExecutor(
                    max_workers=1,  # DuckDB connections need serialized access
                    thread_name_prefix="duckdb"
                )

                logger.info(f"DuckDB connected: {self.db_path}")

    async def close(self) -> None:
        """Close database connection and thread pool."""
        async with self._lock:
            if self._executor:
                self._executor.shutdown(wait=True)
                self._executor = None

            if self._connection:
                self._connection.close()
                self._connection = None
                logger.info("DuckDB connection closed")

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @asynccontextmanager
    async def connection(self):
        """Get the database connection, connecting lazily.

        Holds the store lock for the duration of the block: DuckDB
        connections are NOT thread-safe.
        """
        if self._connection is None:
            await self.connect()
        async with self._lock:
            yield self._connection

    async def _run(self, func: Callable[[duckdb.DuckDBPyConnection], Any], timeout: float = None) -> Any:
        """
        Run ``func(conn)`` on the DuckDB thread with a timeout.

        Everything inside ``func`` executes under the store lock, so a
        read-then-write inside one call is atomic for this process.

        Raises:
            QueryTimeoutError: If the call exceeds the timeout
        """
        timeout = timeout or self.query_timeout
        async with self.connection() as conn:
            self._total_queries += 1
            loop = asyncio.get_running_loop()
            try:
                return await asyncio.wait_for(
                    loop.run_in_executor(self._executor, func, conn),
                    timeout=timeout
                )
            except asyncio.TimeoutError:
                raise QueryTimeoutError(getattr(func, "__name__", "query"), timeout, "Store call failed")

    # ─── Schema ──────────────────────────────────────────────────────────────

    @staticmethod
    def _init_schema(conn: duckdb.DuckDBPyConnection) -> None:
        """Create database schema if not exists."""
        conn.execute("""
        -- Entity mirrors; position preserves first-seen (fetch) order
        CREATE SEQUENCE IF NOT EXISTS remote_entities_seq;
        CREATE TABLE IF NOT EXISTS remote_entities (
            platform VARCHAR NOT NULL,
            entity_type VARCHAR NOT NULL,
            native_id VARCHAR NOT NULL,
            fields VARCHAR NOT NULL,
            raw_payload VARCHAR,
            last_synced_at TIMESTAMP,
            position BIGINT DEFAULT nextval('remote_entities_seq'),
            PRIMARY KEY (platform, entity_type, native_id)
        );

        -- Append-only change history
        CREATE SEQUENCE IF NOT EXISTS change_records_seq;
        CREATE TABLE IF NOT EXISTS change_records (
            id BIGINT PRIMARY KEY DEFAULT nextval('change_records_seq'),
            entity_type VARCHAR NOT NULL,
            native_id VARCHAR NOT NULL,
            change_type VARCHAR NOT NULL,
            field_name VARCHAR,
            old_value VARCHAR,
            new_value VARCHAR,
            full_snapshot VARCHAR,
            created_at TIMESTAMP NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_change_records_created ON change_records(created_at);

        -- Webhook deduplication
        CREATE TABLE IF NOT EXISTS idempotency_keys (
            key VARCHAR PRIMARY KEY,
            source VARCHAR NOT NULL,
            event_type VARCHAR,
            expires_at TIMESTAMP NOT NULL,
            created_at TIMESTAMP NOT NULL
        );

        -- Raw inbound webhook events
        CREATE SEQUENCE IF NOT EXISTS webhook_events_seq;
        CREATE TABLE IF NOT EXISTS webhook_events (
            id BIGINT PRIMARY KEY DEFAULT nextval('webhook_events_seq'),
            source VARCHAR NOT NULL,
            event_type VARCHAR,
            resource_type VARCHAR,
            resource_id VARCHAR,
            status VARCHAR NOT NULL,
            payload VARCHAR,
            idempotency_key VARCHAR,
            error_message VARCHAR,
            processing_time_ms DOUBLE,
            received_at TIMESTAMP NOT NULL,
            processed_at TIMESTAMP
        );

        -- Operator-facing audit log
        CREATE SEQUENCE IF NOT EXISTS audit_logs_seq;
        CREATE TABLE IF NOT EXISTS audit_logs (
            id BIGINT PRIMARY KEY DEFAULT nextval('audit_logs_seq'),
            action VARCHAR NOT NULL,
            entity_type VARCHAR,
            entity_id VARCHAR,
            source VARCHAR,
            destination VARCHAR,
            status VARCHAR NOT NULL,
            details VARCHAR,
            error_message VARCHAR,
            duration_ms DOUBLE,
            created_at TIMESTAMP NOT NULL
        );

        -- Cross-platform mappings (one id column per platform)
        CREATE SEQUENCE IF NOT EXISTS entity_mappings_seq;
        CREATE TABLE IF NOT EXISTS entity_mappings (
            id BIGINT PRIMARY KEY DEFAULT nextval('entity_mappings_seq'),
            procore_id VARCHAR,
            hubspot_id VARCHAR,
            companycam_id VARCHAR,
            names VARCHAR,
            match_type VARCHAR NOT NULL,
            metadata VARCHAR,
            last_sync_at TIMESTAMP,
            last_sync_status VARCHAR NOT NULL,
            created_at TIMESTAMP NOT NULL
        );

        -- Poll job configuration
        CREATE TABLE IF NOT EXISTS poll_jobs (
            job_name VARCHAR PRIMARY KEY,
            enabled BOOLEAN NOT NULL,
            interval_minutes INTEGER NOT NULL,
            last_run_at TIMESTAMP,
            last_result VARCHAR,
            disabled_reason VARCHAR,
            error_count INTEGER DEFAULT 0
        );
        """)

    async def get_stats(self) -> Dict[str, Any]:
        """Row counts per table, for health checks."""
        tables = (
            "remote_entities", "change_records", "idempotency_keys",
            "webhook_events", "audit_logs", "entity_mappings", "poll_jobs",
        )

        def _count(conn):
            return {
                table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in tables
            }

        stats = await self._run(_count)
        stats["total_queries"] = self._total_queries
        return stats


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_store_instance: Optional[DuckDBStore] = None
_store_lock = asyncio.Lock()


async def get_store() -> DuckDBStore:
    """Get singleton DuckDB store instance (coroutine-safe)."""
    global _store_instance
    async with _store_lock:
        if _store_instance is None:
            _store_instance = DuckDBStore()
            await _store_instance.connect()
    return _store_instance


async def close_store() -> None:
    """Close singleton store instance."""
    global _store_instance
    if _store_instance:
        await _store_instance.close()
        _store_instance = None
