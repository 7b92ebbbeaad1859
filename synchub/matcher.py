"""
Cross-platform entity matching.

Pairs mirrored entities of two platforms into EntityMappings:

1. Exact: normalized key equality, trying each key pair of the rule in order
2. Partial: normalized name containment (either direction), first found wins

Both are tried for one A entity before moving to the next.
3. Manual: operator link, never superseded by (1) or (2)

Usage:
    matcher = Matcher(store)
    result = await matcher.run(RULES["procore_hubspot"])
    await matcher.manual_link(RULES["procore_hubspot"], "P123", "D45")
"""
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from synchub.events import EventBus, SyncEvent, events as default_events
from synchub.exceptions import MappingNotFoundError
from synchub.models import EntityMapping, MatchType, Platform, RemoteEntity, SyncStatus
from synchub.observability import get_logger

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")

# Shorter side of a partial match must be longer than this
MIN_PARTIAL_LENGTH = 3


def normalize_name(value: Optional[str]) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    if not value:
        return ""
    return _WHITESPACE.sub(" ", str(value).strip().lower())


@dataclass(frozen=True)
class MatchRule:
    """How entities of one platform pair are matched."""
    name: str
    platform_a: Platform
    resource_a: str
    platform_b: Platform
    resource_b: str
    exact_keys: Tuple[Tuple[str, str], ...]
    name_a: str
    name_b: str


@dataclass
class MatchResult:
    mappings: List[EntityMapping] = field(default_factory=list)
    unmatched_a: List[RemoteEntity] = field(default_factory=list)
    unmatched_b: List[RemoteEntity] = field(default_factory=list)

    def to_dict(self) -> Dict[str, int]:
        return {
            "matched": len(self.mappings),
            "exact": sum(1 for m in self.mappings if m.match_type == MatchType.EXACT),
            "partial": sum(1 for m in self.mappings if m.match_type == MatchType.PARTIAL),
            "unmatched_a": len(self.unmatched_a),
            "unmatched_b": len(self.unmatched_b),
        }


PROCORE_HUBSPOT = MatchRule(
    name="procore_hubspot",
    platform_a=Platform.PROCORE,
    resource_a="projects",
    platform_b=Platform.HUBSPOT,
    resource_b="deals",
    exact_keys=(("project_number", "project_number"), ("name", "dealname")),
    name_a="name",
    name_b="dealname",
)

PROCORE_COMPANYCAM = MatchRule(
    name="procore_companycam",
    platform_a=Platform.PROCORE,
    resource_a="projects",
    platform_b=Platform.COMPANYCAM,
    resource_b="projects",
    exact_keys=(("name", "name"),),
    name_a="name",
    name_b="name",
)

RULES: Dict[str, MatchRule] = {rule.name: rule for rule in (PROCORE_HUBSPOT, PROCORE_COMPANYCAM)}


def _new_mapping(
    rule: MatchRule, a: RemoteEntity, b: RemoteEntity, match_type: MatchType
) -> EntityMapping:
    return EntityMapping(
        ids_by_platform={rule.platform_a.value: a.native_id, rule.platform_b.value: b.native_id},
        names_by_platform={
            rule.platform_a.value: a.get(rule.name_a),
            rule.platform_b.value: b.get(rule.name_b),
        },
        match_type=match_type,
    )


def _is_partial_match(name_a: str, name_b: str) -> bool:
    if not name_a or not name_b:
        return False
    if min(len(name_a), len(name_b)) <= MIN_PARTIAL_LENGTH:
        return False
    return name_a in name_b or name_b in name_a


def find_candidates(
    unmatched_a: List[RemoteEntity],
    unmatched_b: List[RemoteEntity],
    rule: MatchRule,
) -> MatchResult:
    """
    Pure matching pass over two unmatched lists.

    Each A in turn takes the first free B equal on one of the exact key
    pairs (in rule order), and only failing that the first free B whose
    name contains or is contained in its own. Each B is used at most once.
    """
    used_b: Set[str] = set()
    matched: Dict[str, EntityMapping] = {}

    def _take(a: RemoteEntity, predicate, match_type: MatchType) -> bool:
        b = next((b for b in unmatched_b if b.native_id not in used_b and predicate(b)), None)
        if b is None:
            return False
        used_b.add(b.native_id)
        matched[a.native_id] = _new_mapping(rule, a, b, match_type)
        return True

    for a in unmatched_a:
        for key_a, key_b in rule.exact_keys:
            value = normalize_name(a.get(key_a))
            if value and _take(
                a, lambda b: normalize_name(b.get(key_b)) == value, MatchType.EXACT
            ):
                break
        else:
            name_a = normalize_name(a.get(rule.name_a))
            _take(
                a,
                lambda b: _is_partial_match(name_a, normalize_name(b.get(rule.name_b))),
                MatchType.PARTIAL,
            )

    return MatchResult(
        mappings=[matched[a.native_id] for a in unmatched_a if a.native_id in matched],
        unmatched_a=[a for a in unmatched_a if a.native_id not in matched],
        unmatched_b=[b for b in unmatched_b if b.native_id not in used_b],
    )


class Matcher:
    """Persists matching results as EntityMappings."""

    def __init__(self, store, bus: Optional[EventBus] = None):
        self.store = store
        self.bus = bus or default_events

    async def _partition(
        self, rule: MatchRule
    ) -> Tuple[List[RemoteEntity], List[RemoteEntity], Dict[str, EntityMapping]]:
        """Unmatched A and B mirrors, plus mappings keyed by their A id."""
        pa, pb = rule.platform_a.value, rule.platform_b.value
        entities_a = await self.store.list_entities(pa, rule.resource_a)
        entities_b = await self.store.list_entities(pb, rule.resource_b)
        mappings = await self.store.list_mappings()

        linked_a = {m.id_for(pa) for m in mappings if m.links(pa, pb)}
        claimed_b = {m.id_for(pb) for m in mappings if m.id_for(pb)}
        by_a = {m.id_for(pa): m for m in mappings if m.id_for(pa)}

        unmatched_a = [e for e in entities_a if e.native_id not in linked_a]
        unmatched_b = [e for e in entities_b if e.native_id not in claimed_b]
        return unmatched_a, unmatched_b, by_a

    async def run(self, rule: MatchRule, persist: bool = True) -> MatchResult:
        """
        Match unmatched mirrors of a pair and persist the new links.

        With ``persist=False`` the candidates are returned unsaved.
        """
        unmatched_a, unmatched_b, by_a = await self._partition(rule)
        result = find_candidates(unmatched_a, unmatched_b, rule)
        if not persist:
            logger.info(f"Matched {rule.name} (not persisted)", extra=result.to_dict())
            return result
        pa, pb = rule.platform_a.value, rule.platform_b.value

        persisted = []
        for candidate in result.mappings:
            existing = by_a.get(candidate.id_for(pa))
            if existing is not None:
                existing.ids_by_platform[pb] = candidate.id_for(pb)
                existing.names_by_platform.update(candidate.names_by_platform)
                existing.match_type = candidate.match_type
                await self.store.update_mapping(existing)
                mapping = existing
            else:
                mapping = await self.store.insert_mapping(candidate)
            persisted.append(mapping)
            await self.bus.emit(
                SyncEvent.MAPPING_CREATED,
                {"mapping_id": mapping.id, "pair": rule.name, "match_type": mapping.match_type.value},
                source="matcher",
            )

        result.mappings = persisted
        logger.info(f"Matched {rule.name}", extra=result.to_dict())
        return result

    async def unmatched(self, rule: MatchRule) -> Tuple[List[RemoteEntity], List[RemoteEntity]]:
        """Entities of each side still awaiting a link."""
        unmatched_a, unmatched_b, _ = await self._partition(rule)
        return unmatched_a, unmatched_b

    async def list_mappings(self, rule: MatchRule) -> List[EntityMapping]:
        return await self.store.list_mappings(rule.platform_a.value, rule.platform_b.value)

    async def _release(self, mapping: EntityMapping, platform: str) -> None:
        """Drop one platform's claim; a mapping left with a single id is deleted."""
        mapping.ids_by_platform[platform] = None
        mapping.names_by_platform.pop(platform, None)
        remaining = [v for v in mapping.ids_by_platform.values() if v]
        if len(remaining) < 2:
            await self.store.delete_mapping(mapping.id)
            logger.info(f"Removed mapping {mapping.id} after releasing {platform}")
        else:
            await self.store.update_mapping(mapping)

    async def manual_link(self, rule: MatchRule, id_a: str, id_b: str) -> EntityMapping:
        """
        Link two entities by hand, overwriting any automatic match.

        Other mappings holding either id give it up, so each id stays
        referenced by at most one mapping.
        """
        pa, pb = rule.platform_a.value, rule.platform_b.value
        id_a, id_b = str(id_a), str(id_b)
        existing_a = await self.store.find_mapping(pa, id_a)
        existing_b = await self.store.find_mapping(pb, id_b)

        target = existing_a
        if existing_b is not None and (existing_a is None or existing_b.id != existing_a.id):
            await self._release(existing_b, pb)

        entity_a = await self.store.get_entity(pa, rule.resource_a, id_a)
        entity_b = await self.store.get_entity(pb, rule.resource_b, id_b)
        names = {
            pa: entity_a.get(rule.name_a) if entity_a else None,
            pb: entity_b.get(rule.name_b) if entity_b else None,
        }

        if target is None:
            target = EntityMapping(ids_by_platform={}, match_type=MatchType.MANUAL)

        target.ids_by_platform[pa] = id_a
        target.ids_by_platform[pb] = id_b
        target.names_by_platform.update(names)
        target.match_type = MatchType.MANUAL
        target.last_sync_status = SyncStatus.PENDING

        if target.id is None:
            target = await self.store.insert_mapping(target)
        else:
            await self.store.update_mapping(target)

        logger.info(
            f"Manually linked {pa}:{id_a} to {pb}:{id_b}",
            extra={"mapping_id": target.id, "pair": rule.name},
        )
        await self.bus.emit(
            SyncEvent.MAPPING_CREATED,
            {"mapping_id": target.id, "pair": rule.name, "match_type": MatchType.MANUAL.value},
            source="matcher",
        )
        return target

    async def unlink(self, mapping_id: int) -> None:
        """Hard-delete a mapping."""
        if not await self.store.delete_mapping(mapping_id):
            raise MappingNotFoundError(mapping_id)
        logger.info(f"Unlinked mapping {mapping_id}")
