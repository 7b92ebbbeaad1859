"""
Pytest configuration and shared fixtures.
"""
import pytest
from typing import Dict, List, Optional, Tuple

from synchub.events import EventBus
from synchub.models import Page, Platform, RemoteEntity
from synchub.platforms import PlatformRegistry
from synchub.services import build_services
from synchub.store import DuckDBStore, MEMORY_DB


class FakePlatformClient:
    """
    In-memory stand-in for a platform client.

    Records are kept in insertion order per resource. Pages are cut at
    ``page_size`` with an offset cursor.
    """

    def __init__(self, platform: Platform, fields: Dict[str, List[str]], page_size: int = 2):
        self.platform = Platform(platform)
        self.fields = fields
        self.page_size = page_size
        self.records: Dict[str, Dict[str, Dict[str, Optional[str]]]] = {r: {} for r in fields}
        self.writes: List[Tuple[str, str, str, Optional[str]]] = []
        self.write_errors: Dict[str, Exception] = {}
        self.fetch_error: Optional[Exception] = None
        self.fetch_calls = 0

    @property
    def resources(self) -> List[str]:
        return list(self.fields)

    def tracked_fields(self, resource: str) -> List[str]:
        return list(self.fields[resource])

    def put(self, resource: str, native_id: str, **values) -> None:
        record = self.records[resource].setdefault(str(native_id), {})
        record.update(values)

    def _entity(self, resource: str, native_id: str) -> RemoteEntity:
        values = self.records[resource][native_id]
        return RemoteEntity(
            platform=self.platform.value,
            entity_type=resource,
            native_id=native_id,
            fields={f: values.get(f) for f in self.fields[resource]},
            raw_payload={"id": native_id, **values},
        )

    async def fetch_page(self, resource: str, cursor: Optional[str] = None) -> Page:
        self.fetch_calls += 1
        if self.fetch_error:
            raise self.fetch_error
        ids = list(self.records[resource])
        start = int(cursor or 0)
        end = start + self.page_size
        return Page(
            entities=[self._entity(resource, i) for i in ids[start:end]],
            next_cursor=str(end) if end < len(ids) else None,
        )

    async def fetch_one(self, resource: str, native_id: str) -> Optional[RemoteEntity]:
        self.fetch_calls += 1
        if self.fetch_error:
            raise self.fetch_error
        if str(native_id) not in self.records[resource]:
            return None
        return self._entity(resource, str(native_id))

    async def write_field(
        self, resource: str, native_id: str, field: str, value: Optional[str]
    ) -> None:
        if field in self.write_errors:
            raise self.write_errors[field]
        self.writes.append((resource, native_id, field, value))
        self.records[resource][native_id][field] = value

    async def close(self) -> None:
        pass


@pytest.fixture
async def store():
    """Fresh in-memory DuckDB store."""
    store = DuckDBStore(db_path=MEMORY_DB)
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def procore() -> FakePlatformClient:
    return FakePlatformClient(Platform.PROCORE, {
        "projects": ["name", "project_number", "status", "stage", "address", "estimated_value"],
    })


@pytest.fixture
def hubspot() -> FakePlatformClient:
    return FakePlatformClient(Platform.HUBSPOT, {
        "deals": [
            "dealname", "project_number", "status", "dealstage", "dealstage_name", "address", "amount",
        ],
    })


@pytest.fixture
def companycam() -> FakePlatformClient:
    return FakePlatformClient(Platform.COMPANYCAM, {
        "projects": ["name", "status", "address"],
        "users": ["first_name", "last_name", "email_address", "status"],
        "photos": ["project_id", "creator_name", "status"],
    })


@pytest.fixture
def registry(procore, hubspot, companycam) -> PlatformRegistry:
    return PlatformRegistry({
        Platform.PROCORE: procore,
        Platform.HUBSPOT: hubspot,
        Platform.COMPANYCAM: companycam,
    })


@pytest.fixture
def services(store, registry, bus):
    """Engine services wired to the in-memory store and fake platforms."""
    return build_services(store=store, platforms=registry, bus=bus, queue_size=10, workers=1)


@pytest.fixture
def make_entity():
    """Factory for RemoteEntity instances with the given field values."""
    def _make(platform: str, entity_type: str, native_id: str, **fields) -> RemoteEntity:
        return RemoteEntity(
            platform=Platform(platform).value,
            entity_type=entity_type,
            native_id=str(native_id),
            fields=dict(fields),
            raw_payload={"id": native_id, **fields},
        )
    return _make
