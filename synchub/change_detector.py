"""
Field-level change detection between a stored mirror row and a fresh fetch.

Pure functions only: callers persist the returned records together with the
new mirror row.
Usage:
    changes = detect(existing, incoming, registry.tracked_fields("procore", "projects"))
    await store.mirror_entity(incoming, changes)
"""
from typing import Any, Iterable, List, Optional

from synchub.models import ChangeRecord, RemoteEntity


def stringify(value: Any) -> str:
    """Null-safe string form used for every comparison (None == absent == '')."""
    if value is None:
        return ""
    return str(value)


def detect(
    existing: Optional[RemoteEntity],
    incoming: RemoteEntity,
    tracked_fields: Iterable[str],
) -> List[ChangeRecord]:
    """
    Compare ``incoming`` against its stored mirror.

    Args:
        existing: Previously mirrored entity, or None if never seen
        incoming: Newly fetched entity
        tracked_fields: Allowlist of fields to diff; anything else is ignored

    Returns:
        One ``created`` record when ``existing`` is None, otherwise one
        ``field_changed`` record per tracked field whose string form differs.
    """
    if existing is None:
        return [ChangeRecord.created(incoming)]

    changes: List[ChangeRecord] = []
    for field_name in tracked_fields:
        old_value = stringify(existing.fields.get(field_name))
        new_value = stringify(incoming.fields.get(field_name))
        if old_value != new_value:
            changes.append(
                ChangeRecord.field_changed(incoming, field_name, old_value, new_value)
            )
    return changes