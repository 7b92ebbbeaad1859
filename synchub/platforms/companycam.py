"""CompanyCam v2 client: projects, users and photos. Only projects are written."""
from typing import Any, Dict, Optional

from synchub.config import config
from synchub.exceptions import ValidationError
from synchub.models import Page, Platform, RemoteEntity
from synchub.platforms.base import PlatformClient, TokenProvider, nested

PROJECT_FIELDS = {
    "name": nested("name"),
    "status": nested("status"),
    "address": nested("address", "street_address_1"),
    "city": nested("address", "city"),
    "state": nested("address", "state"),
    "postal_code": nested("address", "postal_code"),
    "creator_name": nested("creator_name"),
}

USER_FIELDS = {
    "first_name": nested("first_name"),
    "last_name": nested("last_name"),
    "email_address": nested("email_address"),
    "phone_number": nested("phone_number"),
    "status": nested("status"),
    "user_role": nested("user_role"),
}

PHOTO_FIELDS = {
    "project_id": nested("project_id"),
    "creator_name": nested("creator_name"),
    "description": nested("description"),
    "status": nested("status"),
    "captured_at": nested("captured_at"),
}

# Mirror field -> request body builder
_WRITERS = {
    "name": lambda v: {"name": v},
    "address": lambda v: {"address": {"street_address_1": v}},
    "city": lambda v: {"address": {"city": v}},
    "state": lambda v: {"address": {"state": v}},
    "postal_code": lambda v: {"address": {"postal_code": v}},
}


class CompanyCamClient(PlatformClient):
    """Client for CompanyCam projects, users and photos."""

    platform = Platform.COMPANYCAM
    EXTRACTORS = {"projects": PROJECT_FIELDS, "users": USER_FIELDS, "photos": PHOTO_FIELDS}

    def __init__(self, token_provider: TokenProvider, base_url: Optional[str] = None, **kwargs):
        kwargs.setdefault("page_size", config.companycam.page_size)
        super().__init__(base_url or config.companycam.base_url, token_provider, **kwargs)

    def _path(self, resource: str, native_id: Optional[str] = None) -> str:
        self._extractors(resource)
        base = f"/v2/{resource}"
        return f"{base}/{native_id}" if native_id is not None else base

    async def fetch_page(self, resource: str, cursor: Optional[str] = None) -> Page:
        page = int(cursor or 1)
        data = await self._request(
            "GET", self._path(resource), params={"page": page, "per_page": self.page_size}
        )
        items = self._expect_list(data, resource)
        next_cursor = str(page + 1) if len(items) >= self.page_size else None
        return Page(entities=self._decode_many(resource, items), next_cursor=next_cursor)

    async def fetch_one(self, resource: str, native_id: str) -> Optional[RemoteEntity]:
        data = await self._fetch_optional(self._path(resource, native_id))
        return self.decode(resource, data) if data else None

    async def write_field(
        self, resource: str, native_id: str, field: str, value: Optional[str]
    ) -> None:
        if resource != "projects" or field not in _WRITERS:
            raise ValidationError("field", f"not writable on companycam {resource}", field)
        body: Dict[str, Any] = {"project": _WRITERS[field](value)}
        await self._request("PUT", self._path(resource, native_id), json=body)
