"""DuckDBStore cross-platform mapping methods."""
from __future__ import annotations

import logging
from typing import Optional, List

from synchub.models import (
    ConflictRecord, EntityMapping, MatchType, Platform, SyncStatus, utcnow,
)
from synchub.repositories.base import dumps, loads

logger = logging.getLogger(__name__)

_ID_COLUMNS = [f"{p.value}_id" for p in Platform]
_MAPPING_COLUMNS = ", ".join(
    ["id"] + _ID_COLUMNS
    + ["names", "match_type", "metadata", "last_sync_at", "last_sync_status", "created_at"]
)


def _id_column(platform: str) -> str:
    return f"{Platform(platform).value}_id"


def _row_to_mapping(row) -> EntityMapping:
    offset = 1 + len(_ID_COLUMNS)
    metadata = loads(row[offset + 2], {})
    return EntityMapping(
        id=row[0],
        ids_by_platform={p.value: row[1 + i] for i, p in enumerate(Platform)},
        names_by_platform=loads(row[offset], {}),
        match_type=MatchType(row[offset + 1]),
        conflicts=[ConflictRecord.from_dict(c) for c in metadata.get("conflicts", [])],
        updated_fields=list(metadata.get("updated_fields", [])),
        last_sync_at=row[offset + 3],
        last_sync_status=SyncStatus(row[offset + 4]),
        created_at=row[offset + 5],
    )


class MappingsMixin:

    async def insert_mapping(self, mapping: EntityMapping) -> EntityMapping:
        """Persist a new mapping and assign its id."""
        mapping.created_at = mapping.created_at or utcnow()

        def _op(conn):
            return conn.execute(f"""
                INSERT INTO entity_mappings
                    ({", ".join(_ID_COLUMNS)}, names, match_type, metadata,
                     last_sync_at, last_sync_status, created_at)
                VALUES ({", ".join("?" for _ in _ID_COLUMNS)}, ?, ?, ?, ?, ?, ?)
                RETURNING id
            """, [
                *[mapping.ids_by_platform.get(p.value) for p in Platform],
                dumps(mapping.names_by_platform),
                mapping.match_type.value,
                dumps(mapping.metadata),
                mapping.last_sync_at,
                mapping.last_sync_status.value,
                mapping.created_at,
            ]).fetchone()[0]

        mapping.id = await self._run(_op)
        return mapping

    async def update_mapping(self, mapping: EntityMapping) -> None:
        """Overwrite every mutable column of an existing mapping."""
        assignments = ", ".join(f"{column} = ?" for column in _ID_COLUMNS)

        def _op(conn):
            conn.execute(f"""
                UPDATE entity_mappings SET
                    {assignments},
                    names = ?, match_type = ?, metadata = ?,
                    last_sync_at = ?, last_sync_status = ?
                WHERE id = ?
            """, [
                *[mapping.ids_by_platform.get(p.value) for p in Platform],
                dumps(mapping.names_by_platform),
                mapping.match_type.value,
                dumps(mapping.metadata),
                mapping.last_sync_at,
                mapping.last_sync_status.value,
                mapping.id,
            ])

        await self._run(_op)

    async def get_mapping(self, mapping_id: int) -> Optional[EntityMapping]:
        def _op(conn):
            return conn.execute(
                f"SELECT {_MAPPING_COLUMNS} FROM entity_mappings WHERE id = ?", [mapping_id]
            ).fetchone()

        row = await self._run(_op)
        return _row_to_mapping(row) if row else None

    async def find_mapping(self, platform: str, native_id: str) -> Optional[EntityMapping]:
        """Mapping that references ``(platform, native_id)``, if any."""
        column = _id_column(platform)

        def _op(conn):
            return conn.execute(
                f"SELECT {_MAPPING_COLUMNS} FROM entity_mappings WHERE {column} = ? ORDER BY id LIMIT 1",
                [str(native_id)],
            ).fetchone()

        row = await self._run(_op)
        return _row_to_mapping(row) if row else None

    async def list_mappings(
        self, platform_a: Optional[str] = None, platform_b: Optional[str] = None
    ) -> List[EntityMapping]:
        """
        All mappings, oldest first.

        When platforms are given, only mappings populated on every one
        of them are returned.
        """
        clauses = [
            f"{_id_column(p)} IS NOT NULL" for p in (platform_a, platform_b) if p
        ]
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        def _op(conn):
            return conn.execute(
                f"SELECT {_MAPPING_COLUMNS} FROM entity_mappings {where} ORDER BY id"
            ).fetchall()

        return [_row_to_mapping(row) for row in await self._run(_op)]

    async def delete_mapping(self, mapping_id: int) -> bool:
        def _op(conn):
            row = conn.execute(
                "SELECT id FROM entity_mappings WHERE id = ?", [mapping_id]
            ).fetchone()
            if not row:
                return False
            conn.execute("DELETE FROM entity_mappings WHERE id = ?", [mapping_id])
            return True

        return await self._run(_op)
