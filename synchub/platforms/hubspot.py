"""
HubSpot CRM v3 client.

Objects are read with an explicit property list and paginated with the
opaque ``paging.next.after`` cursor. Deal stages are stored as internal ids;
the deal pipelines are read once per client to add readable
``dealstage_name`` and ``pipeline_name`` fields, and to turn a stage label
back into its id on write.
"""
from typing import Any, Dict, List, Optional, Tuple

from synchub.config import config
from synchub.exceptions import PlatformDataError, ValidationError
from synchub.models import Page, Platform, RemoteEntity
from synchub.platforms.base import PlatformClient, TokenProvider, nested

DEAL_PROPERTIES = [
    "dealname", "amount", "dealstage", "pipeline", "closedate",
    "project_number", "address", "hubspot_owner_id",
]
COMPANY_PROPERTIES = [
    "name", "domain", "phone", "address", "city", "state", "zip",
    "industry", "hubspot_owner_id",
]
CONTACT_PROPERTIES = [
    "email", "firstname", "lastname", "phone", "company", "jobtitle",
    "lifecyclestage", "hubspot_owner_id",
]

# Derived from the deal pipelines, not HubSpot properties
DEAL_LABEL_FIELDS = ["dealstage_name", "pipeline_name"]


def _properties(names: List[str]):
    return {name: nested("properties", name) for name in names}


class HubSpotClient(PlatformClient):
    """Client for HubSpot deals, companies and contacts."""

    platform = Platform.HUBSPOT
    EXTRACTORS = {
        "deals": _properties(DEAL_PROPERTIES),
        "companies": _properties(COMPANY_PROPERTIES),
        "contacts": _properties(CONTACT_PROPERTIES),
    }

    def __init__(self, token_provider: TokenProvider, base_url: Optional[str] = None, **kwargs):
        kwargs.setdefault("page_size", config.hubspot.page_size)
        super().__init__(base_url or config.hubspot.base_url, token_provider, **kwargs)
        # stage id -> (stage label, pipeline label)
        self._stages: Optional[Dict[str, Tuple[Optional[str], Optional[str]]]] = None

    def tracked_fields(self, resource: str) -> List[str]:
        fields = super().tracked_fields(resource)
        if resource == "deals":
            fields += DEAL_LABEL_FIELDS
        return fields

    def decode(self, resource: str, payload: Dict[str, Any]) -> RemoteEntity:
        entity = super().decode(resource, payload)
        if resource == "deals":
            stage = (self._stages or {}).get(entity.get("dealstage") or "")
            entity.fields["dealstage_name"] = stage[0] if stage else None
            entity.fields["pipeline_name"] = stage[1] if stage else None
        return entity

    async def deal_stages(
        self, refresh: bool = False
    ) -> Dict[str, Tuple[Optional[str], Optional[str]]]:
        """Stage id -> (stage label, pipeline label) across every deal pipeline."""
        if self._stages is None or refresh:
            data = await self._request("GET", "/crm/v3/pipelines/deals")
            results = data.get("results") if isinstance(data, dict) else None
            stages = {}
            for pipeline in self._expect_list(results, "pipelines"):
                for stage in pipeline.get("stages") or []:
                    stages[str(stage.get("id"))] = (stage.get("label"), pipeline.get("label"))
            self._stages = stages
        return self._stages

    async def stage_id(self, label: Optional[str]) -> str:
        """
        Resolve a stage label to its id, re-reading the pipelines once.

        Raises:
            ValidationError: If no pipeline has a stage with this label
        """
        for refresh in ((False, True) if label else ()):
            stages = await self.deal_stages(refresh=refresh)
            for stage_id, (stage_label, _) in stages.items():
                if stage_label == label:
                    return stage_id
        raise ValidationError("dealstage_name", "unknown HubSpot deal stage", label)

    def _path(self, resource: str, native_id: Optional[str] = None) -> str:
        self._extractors(resource)
        base = f"/crm/v3/objects/{resource}"
        return f"{base}/{native_id}" if native_id is not None else base

    def _property_param(self, resource: str) -> str:
        return ",".join(self._extractors(resource))

    async def fetch_page(self, resource: str, cursor: Optional[str] = None) -> Page:
        if resource == "deals":
            await self.deal_stages()
        params: Dict[str, Any] = {
            "limit": self.page_size,
            "properties": self._property_param(resource),
            "archived": "false",
        }
        if cursor:
            params["after"] = cursor

        data = await self._request("GET", self._path(resource), params=params)
        if not isinstance(data, dict):
            raise PlatformDataError(
                f"{resource} page is not an object",
                platform=self.platform.value,
                expected="dict",
                got=type(data).__name__,
            )
        items = self._expect_list(data.get("results"), resource)
        next_cursor = nested("paging", "next", "after")(data)
        return Page(
            entities=self._decode_many(resource, items),
            next_cursor=str(next_cursor) if next_cursor else None,
        )

    async def fetch_one(self, resource: str, native_id: str) -> Optional[RemoteEntity]:
        if resource == "deals":
            await self.deal_stages()
        data = await self._fetch_optional(
            self._path(resource, native_id),
            params={"properties": self._property_param(resource)},
        )
        return self.decode(resource, data) if data else None

    async def write_field(
        self, resource: str, native_id: str, field: str, value: Optional[str]
    ) -> None:
        if resource == "deals" and field == "dealstage_name":
            field, value = "dealstage", await self.stage_id(value)
        await self._request(
            "PATCH",
            self._path(resource, native_id),
            json={"properties": {field: value if value is not None else ""}},
        )
