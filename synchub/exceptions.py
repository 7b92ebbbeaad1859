"""
Custom exception hierarchy for platform sync operations.

Exception Hierarchy:
    SyncHubError (base)
    ├── PlatformError               - Raised while talking to an external platform
    │   ├── PlatformConnectionError - Network/timeout issues (recoverable)
    │   ├── PlatformAPIError        - Platform returned error response
    │   │   └── PlatformAuthError   - Credentials expired or rejected (fatal to a job)
    │   └── PlatformDataError       - Invalid response structure
    ├── MalformedEventError         - Webhook envelope cannot be used
    ├── JobNotFoundError            - Unknown scheduled job
    ├── MappingNotFoundError        - Unknown entity mapping
    └── ValidationError             - Input validation failed

    QueryTimeoutError               - Store query exceeded timeout
"""
from typing import Any, Optional


class SyncHubError(Exception):
    """Base exception for all sync-related errors."""

    def __init__(self, message: str, details: str = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class PlatformError(SyncHubError):
    """Error raised by an external platform integration."""

    def __init__(self, message: str, details: str = None, platform: str = None):
        super().__init__(message, details)
        self.platform = platform


class PlatformConnectionError(PlatformError):
    """
    Network-related errors (timeout, connection refused, etc.).

    These are transient: the next scheduled tick retries naturally.
    """

    def __init__(
        self,
        message: str,
        details: str = None,
        platform: str = None,
        retry_after: int = None,
    ):
        super().__init__(message, details, platform)
        self.retry_after = retry_after


class PlatformAPIError(PlatformError):
    """
    Platform returned an error response.

    Check status_code and error_code for specifics.
    """

    def __init__(
        self,
        message: str,
        details: str = None,
        platform: str = None,
        status_code: int = None,
        error_code: str = None,
    ):
        super().__init__(message, details, platform)
        self.status_code = status_code
        self.error_code = error_code


class PlatformAuthError(PlatformAPIError):
    """
    Credentials are missing, expired or were rejected (401/403).

    A job that hits this disables itself until an operator re-authenticates.
    """


class PlatformDataError(PlatformError):
    """
    Platform response has unexpected structure.

    This indicates a contract violation - the platform returned
    data in a format we don't understand.
    """

    def __init__(
        self,
        message: str,
        details: str = None,
        platform: str = None,
        expected: str = None,
        got: str = None,
    ):
        super().__init__(message, details, platform)
        self.expected = expected
        self.got = got


class MalformedEventError(SyncHubError):
    """Inbound webhook payload could not be parsed into events."""

    def __init__(self, message: str, details: str = None, source: str = None):
        super().__init__(message, details)
        self.source = source


class JobNotFoundError(SyncHubError):
    """Scheduled job is not registered."""

    def __init__(self, job_name: str):
        super().__init__("Unknown job", job_name)
        self.job_name = job_name


class MappingNotFoundError(SyncHubError):
    """Entity mapping does not exist."""

    def __init__(self, mapping_id: Any):
        super().__init__("Mapping not found", str(mapping_id))
        self.mapping_id = mapping_id


class ValidationError(SyncHubError):
    """
    Input validation failed.

    Used for validating operator input before processing.
    """

    def __init__(self, field: str, message: str, value: Optional[Any] = None):
        self.field = field
        self.value = value
        super().__init__(message)

    def __str__(self) -> str:
        if self.value is not None:
            return f"{self.field}: {self.message} (got: {self.value!r})"
        return f"{self.field}: {self.message}"


class QueryTimeoutError(Exception):
    """
    Store query exceeded timeout.

    Indicates a long-running query that should be investigated.
    """

    def __init__(self, query: str, timeout: float, details: str = None):
        self.query = query[:200] + "..." if len(query) > 200 else query
        self.timeout = timeout
        self.details = details
        message = f"Query timed out after {timeout}s"
        if details:
            message = f"{message}: {details}"
        super().__init__(message)

    def __str__(self) -> str:
        return f"QueryTimeoutError: Query timed out after {self.timeout}s - {self.query}"
