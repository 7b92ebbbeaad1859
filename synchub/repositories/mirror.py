"""DuckDBStore entity mirror methods."""
from __future__ import annotations

import logging
from typing import Optional, List

from synchub.models import ChangeRecord, RemoteEntity, utcnow
from synchub.repositories.audit import insert_change_rows, stamp_change_records
from synchub.repositories.base import dumps, loads, transaction

logger = logging.getLogger(__name__)

_ENTITY_COLUMNS = "platform, entity_type, native_id, fields, raw_payload, last_synced_at"


def upsert_entity_row(conn, entity: RemoteEntity) -> None:
    conn.execute("""
        INSERT INTO remote_entities (platform, entity_type, native_id, fields, raw_payload, last_synced_at)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT (platform, entity_type, native_id) DO UPDATE SET
            fields = excluded.fields,
            raw_payload = excluded.raw_payload,
            last_synced_at = excluded.last_synced_at
    """, [
        entity.platform,
        entity.entity_type,
        str(entity.native_id),
        dumps(entity.fields),
        dumps(entity.raw_payload),
        entity.last_synced_at,
    ])


def _row_to_entity(row) -> RemoteEntity:
    return RemoteEntity(
        platform=row[0],
        entity_type=row[1],
        native_id=row[2],
        fields=loads(row[3], {}),
        raw_payload=loads(row[4], {}),
        last_synced_at=row[5],
    )


class MirrorMixin:

    async def get_entity(
        self, platform: str, entity_type: str, native_id: str
    ) -> Optional[RemoteEntity]:
        """Get the mirrored copy of one remote entity."""
        def _op(conn):
            return conn.execute(f"""
                SELECT {_ENTITY_COLUMNS} FROM remote_entities
                WHERE platform = ? AND entity_type = ? AND native_id = ?
            """, [platform, entity_type, str(native_id)]).fetchone()

        row = await self._run(_op)
        return _row_to_entity(row) if row else None

    async def upsert_entity(self, entity: RemoteEntity) -> None:
        """Insert or overwrite a mirror row. First-seen position is kept."""
        entity.last_synced_at = entity.last_synced_at or utcnow()
        await self._run(lambda conn: upsert_entity_row(conn, entity))

    async def mirror_entity(self, entity: RemoteEntity, changes: List[ChangeRecord]) -> None:
        """
        Append ``changes`` and overwrite the mirror row in one transaction.

        Either both land or neither does, so a ``created`` record exists
        exactly when the first mirror row does.
        """
        entity.last_synced_at = entity.last_synced_at or utcnow()
        stamp_change_records(changes)

        def _op(conn):
            with transaction(conn):
                insert_change_rows(conn, changes)
                upsert_entity_row(conn, entity)

        await self._run(_op)

    async def list_entities(self, platform: str, entity_type: str) -> List[RemoteEntity]:
        """All mirrored entities of one type, in first-seen order."""
        def _op(conn):
            return conn.execute(f"""
                SELECT {_ENTITY_COLUMNS} FROM remote_entities
                WHERE platform = ? AND entity_type = ?
                ORDER BY position
            """, [platform, entity_type]).fetchall()

        return [_row_to_entity(row) for row in await self._run(_op)]

    async def set_entity_field(
        self,
        platform: str,
        entity_type: str,
        native_id: str,
        field_name: str,
        value: Optional[str],
    ) -> bool:
        """
        Overwrite one field on a mirror row after a successful write-back.

        Returns:
            False if the entity is not mirrored
        """
        def _op(conn):
            row = conn.execute("""
                SELECT fields FROM remote_entities
                WHERE platform = ? AND entity_type = ? AND native_id = ?
            """, [platform, entity_type, str(native_id)]).fetchone()
            if not row:
                return False
            fields = loads(row[0], {})
            fields[field_name] = value
            conn.execute("""
                UPDATE remote_entities SET fields = ?, last_synced_at = ?
                WHERE platform = ? AND entity_type = ? AND native_id = ?
            """, [dumps(fields), utcnow(), platform, entity_type, str(native_id)])
            return True

        return await self._run(_op)
