"""
External platform integrations.

Each platform module defines a PlatformClient subclass with its resource
field projections. The registry routes the engine's generic calls
(fetch_page / fetch_one / write_field) to the right client.
"""
from typing import AsyncIterator, Dict, List, Optional, Union

from synchub.models import Page, Platform, RemoteEntity
from synchub.observability import get_logger
from synchub.platforms.base import EnvTokenProvider, PlatformClient, TokenProvider
from synchub.platforms.companycam import CompanyCamClient
from synchub.platforms.hubspot import HubSpotClient
from synchub.platforms.procore import ProcoreClient

logger = get_logger(__name__)

PlatformKey = Union[Platform, str]


class PlatformRegistry:
    """Routes generic platform calls to per-platform clients."""

    def __init__(self, clients: Dict[PlatformKey, PlatformClient]):
        self._clients = {Platform(k): v for k, v in clients.items()}

    def client(self, platform: PlatformKey) -> PlatformClient:
        try:
            return self._clients[Platform(platform)]
        except KeyError:
            raise KeyError(f"No client registered for {platform}") from None

    @property
    def platforms(self) -> List[Platform]:
        return list(self._clients)

    def tracked_fields(self, platform: PlatformKey, resource: str) -> List[str]:
        return self.client(platform).tracked_fields(resource)

    async def fetch_page(
        self, platform: PlatformKey, resource: str, cursor: Optional[str] = None
    ) -> Page:
        return await self.client(platform).fetch_page(resource, cursor)

    async def iter_pages(self, platform: PlatformKey, resource: str) -> AsyncIterator[Page]:
        """Yield pages in fetch order until the platform reports no next cursor."""
        cursor: Optional[str] = None
        while True:
            page = await self.fetch_page(platform, resource, cursor)
            yield page
            if not page.next_cursor or page.next_cursor == cursor:
                break
            cursor = page.next_cursor

    async def fetch_one(
        self, platform: PlatformKey, resource: str, native_id: str
    ) -> Optional[RemoteEntity]:
        return await self.client(platform).fetch_one(resource, native_id)

    async def write_field(
        self,
        platform: PlatformKey,
        resource: str,
        native_id: str,
        field: str,
        value: Optional[str],
    ) -> None:
        await self.client(platform).write_field(resource, native_id, field, value)

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()


def build_registry(token_provider: Optional[TokenProvider] = None) -> PlatformRegistry:
    """Registry with the three production clients."""
    token_provider = token_provider or EnvTokenProvider()
    return PlatformRegistry({
        Platform.PROCORE: ProcoreClient(token_provider),
        Platform.HUBSPOT: HubSpotClient(token_provider),
        Platform.COMPANYCAM: CompanyCamClient(token_provider),
    })


__all__ = [
    "PlatformRegistry",
    "PlatformClient",
    "TokenProvider",
    "EnvTokenProvider",
    "ProcoreClient",
    "HubSpotClient",
    "CompanyCamClient",
    "build_registry",
]
