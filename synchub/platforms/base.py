"""
Shared async HTTP client machinery for external platforms.

Every platform client exposes the same narrow contract the sync engine uses:
- fetch_page(resource, cursor) -> Page
- fetch_one(resource, native_id) -> RemoteEntity | None
- write_field(resource, native_id, field, value) -> None (raises on failure)

Features:
- Connection pooling with httpx and a bounded request timeout
- Bearer tokens from a pluggable TokenProvider
- Retry with backoff for transient failures only
- Token bucket rate limiting per client
- Request correlation IDs for tracing
"""
from typing import Any, Callable, Dict, List, Optional

import httpx

from synchub.config import config
from synchub.exceptions import (
    PlatformAPIError,
    PlatformAuthError,
    PlatformConnectionError,
    PlatformDataError,
    ValidationError,
)
from synchub.models import Page, Platform, RemoteEntity, to_field_value
from synchub.observability import get_logger, get_correlation_id, Timer
from synchub.resilience import RateLimiter, RetryConfig, retry_with_backoff

logger = get_logger(__name__)

# Field extractor: raw payload -> projected value
Extractor = Callable[[Dict[str, Any]], Any]


class TokenProvider:
    """Credential source consumed by platform clients."""

    async def get_token(self, platform: Platform) -> str:
        raise NotImplementedError


class EnvTokenProvider(TokenProvider):
    """
    Static access tokens from configuration.

    Token acquisition and refresh happen outside this service; an empty
    token is reported as an authentication failure.
    """

    def __init__(self, tokens: Optional[Dict[str, str]] = None):
        if tokens is None:
            tokens = {
                Platform.PROCORE.value: config.procore.access_token,
                Platform.HUBSPOT.value: config.hubspot.access_token,
                Platform.COMPANYCAM.value: config.companycam.access_token,
            }
        self.tokens = tokens

    async def get_token(self, platform: Platform) -> str:
        token = self.tokens.get(Platform(platform).value)
        if not token:
            raise PlatformAuthError(
                "No access token configured",
                platform=Platform(platform).value,
            )
        return token


def project(payload: Dict[str, Any], extractors: Dict[str, Extractor]) -> Dict[str, Optional[str]]:
    """Apply per-field extractors and stringify the results."""
    fields: Dict[str, Optional[str]] = {}
    for name, extract in extractors.items():
        try:
            fields[name] = to_field_value(extract(payload))
        except (AttributeError, KeyError, TypeError):
            fields[name] = None
    return fields


def nested(*path: str) -> Extractor:
    """Extractor for a nested key path, e.g. nested('project_stage', 'name')."""
    def _extract(payload: Dict[str, Any]) -> Any:
        value: Any = payload
        for key in path:
            if not isinstance(value, dict):
                return None
            value = value.get(key)
        return value
    return _extract


class PlatformClient:
    """
    Base async client for one external platform.

    Subclasses declare ``platform``, ``EXTRACTORS`` (resource -> field
    extractors) and implement the page/one/write endpoints.

    Usage:
        async with ProcoreClient(token_provider) as client:
            page = await client.fetch_page("projects")
    """

    platform: Platform
    EXTRACTORS: Dict[str, Dict[str, Extractor]] = {}

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        page_size: int = 100,
        timeout: Optional[float] = None,
        retry_config: Optional[RetryConfig] = None,
        rate_limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: API root for the platform
            token_provider: Source of bearer tokens
            page_size: Items requested per page
            timeout: Request timeout in seconds (hung upstreams become transient errors)
            retry_config: Backoff for transient failures
            rate_limiter: Token bucket shared by this client's requests
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.page_size = page_size
        self.timeout = timeout or config.http.timeout_seconds
        self.retry_config = retry_config or RetryConfig(max_attempts=config.http.retry_attempts)
        self.rate_limiter = rate_limiter or RateLimiter(
            rate=config.http.requests_per_second, burst=config.http.burst
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def resources(self) -> List[str]:
        return list(self.EXTRACTORS)

    def tracked_fields(self, resource: str) -> List[str]:
        """Fields whose changes are recorded for ``resource``."""
        return list(self._extractors(resource))

    def _extractors(self, resource: str) -> Dict[str, Extractor]:
        if resource not in self.EXTRACTORS:
            raise ValidationError(
                "resource", f"not supported by {self.platform.value}", resource
            )
        return self.EXTRACTORS[resource]

    def decode(self, resource: str, payload: Dict[str, Any]) -> RemoteEntity:
        """Project a raw platform payload onto a RemoteEntity."""
        if not isinstance(payload, dict) or payload.get("id") in (None, ""):
            raise PlatformDataError(
                f"{resource} payload has no id",
                platform=self.platform.value,
                expected="object with id",
                got=type(payload).__name__,
            )
        return RemoteEntity(
            platform=self.platform.value,
            entity_type=resource,
            native_id=str(payload["id"]),
            fields=project(payload, self._extractors(resource)),
            raw_payload=payload,
        )

    # ─── Lifecycle ───────────────────────────────────────────────────────────

    async def connect(self) -> None:
        """Create HTTP client with connection pooling."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                limits=httpx.Limits(
                    max_keepalive_connections=10,
                    max_connections=config.http.max_connections,
                ),
            )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "PlatformClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ─── Transport ───────────────────────────────────────────────────────────

    async def _headers(self) -> Dict[str, str]:
        token = await self.token_provider.get_token(self.platform)
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Request-ID"] = correlation_id
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Make an HTTP request with retry on transient failures.

        Raises:
            PlatformConnectionError: Network/timeout/5xx/429 after retries
            PlatformAuthError: 401/403 or missing credentials (never retried)
            PlatformAPIError: Any other error response
        """
        return await retry_with_backoff(
            self._do_request,
            method, path, params, json,
            config=self.retry_config,
            retryable_exceptions=(PlatformConnectionError,),
        )

    async def _do_request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Execute a single HTTP request (called by retry wrapper)."""
        if not self._client:
            await self.connect()

        headers = await self._headers()
        await self.rate_limiter.acquire()
        platform = self.platform.value

        try:
            with Timer(f"{platform} {method} {path}", logger):
                response = await self._client.request(
                    method=method, url=path, params=params, json=json, headers=headers,
                )
        except httpx.TimeoutException as e:
            logger.error(
                f"Request timeout: {method} {path}",
                extra={"platform": platform, "timeout": self.timeout}
            )
            raise PlatformConnectionError(
                f"Request timeout after {self.timeout}s", platform=platform, retry_after=1
            ) from e
        except httpx.RequestError as e:
            logger.error(
                f"Request failed: {method} {path} - {e}",
                extra={"platform": platform, "error": str(e)}
            )
            raise PlatformConnectionError(str(e), platform=platform) from e

        status = response.status_code
        if status in (401, 403):
            raise PlatformAuthError(
                f"{self.platform.display_name} rejected credentials",
                details=response.text[:200],
                platform=platform,
                status_code=status,
            )
        if status == 429 or status >= 500:
            retry_after = response.headers.get("Retry-After", "")
            raise PlatformConnectionError(
                f"{self.platform.display_name} returned {status}",
                details=response.text[:200],
                platform=platform,
                retry_after=int(retry_after) if retry_after.isdigit() else None,
            )
        if status >= 400:
            error_text = response.text[:500]
            logger.error(
                f"API error {status}: {error_text}",
                extra={"platform": platform, "path": path, "status_code": status}
            )
            raise PlatformAPIError(
                f"{self.platform.display_name} returned {status}",
                details=error_text,
                platform=platform,
                status_code=status,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise PlatformDataError(
                "Response is not JSON", platform=platform, expected="json", got="text"
            ) from e

    def _expect_list(self, data: Any, resource: str) -> List[Dict[str, Any]]:
        if not isinstance(data, list):
            raise PlatformDataError(
                f"{resource} page is not a list",
                platform=self.platform.value,
                expected="list",
                got=type(data).__name__,
            )
        return data

    def _decode_many(self, resource: str, items: List[Dict[str, Any]]) -> List[RemoteEntity]:
        entities = []
        for item in items:
            try:
                entities.append(self.decode(resource, item))
            except PlatformDataError as e:
                logger.warning(f"Skipping malformed {resource} item: {e}")
        return entities

    async def _fetch_optional(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET that maps 404 to None."""
        try:
            return await self._request("GET", path, params=params)
        except PlatformAPIError as e:
            if e.status_code == 404 and not isinstance(e, PlatformAuthError):
                return None
            raise

    # ─── Contract ────────────────────────────────────────────────────────────

    async def fetch_page(self, resource: str, cursor: Optional[str] = None) -> Page:
        raise NotImplementedError

    async def fetch_one(self, resource: str, native_id: str) -> Optional[RemoteEntity]:
        raise NotImplementedError

    async def write_field(
        self, resource: str, native_id: str, field: str, value: Optional[str]
    ) -> None:
        raise NotImplementedError
