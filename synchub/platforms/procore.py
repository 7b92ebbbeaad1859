"""
Procore REST client.

Procore is the master platform for project data. Lists are page-numbered
(``page`` / ``per_page``); a page shorter than ``per_page`` is the last one.
"""
from typing import Any, Dict, Optional

from synchub.config import config
from synchub.exceptions import ValidationError
from synchub.models import Page, Platform, RemoteEntity
from synchub.platforms.base import PlatformClient, TokenProvider, nested

API_ROOT = "/rest/v1.0"

PROJECT_FIELDS = {
    "name": nested("name"),
    "display_name": nested("display_name"),
    "project_number": nested("project_number"),
    "address": nested("address"),
    "city": nested("city"),
    "state_code": nested("state_code"),
    "zip": nested("zip"),
    "phone": nested("phone"),
    "active": nested("active"),
    "stage": lambda p: nested("project_stage", "name")(p) or p.get("stage"),
    "start_date": nested("start_date"),
    "completion_date": nested("completion_date"),
    "estimated_value": nested("estimated_value"),
    "total_value": nested("total_value"),
    "delivery_method": nested("delivery_method"),
    "company_name": nested("company", "name"),
}

VENDOR_FIELDS = {
    "name": nested("name"),
    "abbreviated_name": nested("abbreviated_name"),
    "email_address": nested("email_address"),
    "business_phone": nested("business_phone"),
    "address": nested("address"),
    "city": nested("city"),
    "state_code": nested("state_code"),
    "zip": nested("zip"),
    "is_active": nested("is_active"),
    "trade_name": nested("trade_name"),
}

USER_FIELDS = {
    "name": nested("name"),
    "email_address": nested("email_address"),
    "job_title": nested("job_title"),
    "business_phone": nested("business_phone"),
    "mobile_phone": nested("mobile_phone"),
    "is_active": nested("is_active"),
    "is_employee": nested("is_employee"),
    "vendor_name": nested("vendor", "name"),
}

# Request body envelope per resource, and fields that may be written back
_ENVELOPES = {"projects": "project", "vendors": "vendor", "users": "user"}
_READ_ONLY = {"stage", "company_name", "vendor_name"}


class ProcoreClient(PlatformClient):
    """Client for Procore projects, vendors and company users."""

    platform = Platform.PROCORE
    EXTRACTORS = {
        "projects": PROJECT_FIELDS,
        "vendors": VENDOR_FIELDS,
        "users": USER_FIELDS,
    }

    def __init__(
        self,
        token_provider: TokenProvider,
        company_id: Optional[str] = None,
        base_url: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("page_size", config.procore.page_size)
        super().__init__(base_url or config.procore.base_url, token_provider, **kwargs)
        self.company_id = company_id or config.procore.company_id

    async def _headers(self) -> Dict[str, str]:
        headers = await super()._headers()
        if self.company_id:
            headers["Procore-Company-Id"] = str(self.company_id)
        return headers

    def _path(self, resource: str, native_id: Optional[str] = None) -> str:
        self._extractors(resource)
        if resource == "users":
            base = f"{API_ROOT}/companies/{self.company_id}/users"
        else:
            base = f"{API_ROOT}/{resource}"
        return f"{base}/{native_id}" if native_id is not None else base

    def _params(self, **extra: Any) -> Dict[str, Any]:
        return {"company_id": self.company_id, **extra}

    async def fetch_page(self, resource: str, cursor: Optional[str] = None) -> Page:
        page = int(cursor or 1)
        data = await self._request(
            "GET",
            self._path(resource),
            params=self._params(page=page, per_page=self.page_size),
        )
        items = self._expect_list(data, resource)
        next_cursor = str(page + 1) if len(items) >= self.page_size else None
        return Page(entities=self._decode_many(resource, items), next_cursor=next_cursor)

    async def fetch_one(self, resource: str, native_id: str) -> Optional[RemoteEntity]:
        data = await self._fetch_optional(self._path(resource, native_id), params=self._params())
        return self.decode(resource, data) if data else None

    async def write_field(
        self, resource: str, native_id: str, field: str, value: Optional[str]
    ) -> None:
        if field not in self._extractors(resource) or field in _READ_ONLY:
            raise ValidationError("field", f"not writable on procore {resource}", field)
        await self._request(
            "PATCH",
            self._path(resource, native_id),
            params=self._params(),
            json={_ENVELOPES[resource]: {field: value}},
        )
