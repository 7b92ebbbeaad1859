"""
Core sync engine for the Procore / HubSpot / CompanyCam hub.

This package contains the logic shared by the web service and its jobs:
- exceptions: Custom exception hierarchy
- models: Mirrors, change records, mappings, job state
- store: DuckDB persistence (mirrors, audit trail, mappings, job config)
- platforms: HTTP clients for each external platform
- poller / scheduler: Periodic polling with single-flight jobs
- matcher / reconciler: Cross-platform linking and master-wins propagation
- webhooks: Idempotent inbound event handling
"""

# Import in dependency order
from synchub.exceptions import (
    SyncHubError,
    PlatformError,
    PlatformConnectionError,
    PlatformAPIError,
    PlatformAuthError,
    PlatformDataError,
    MalformedEventError,
    JobNotFoundError,
    MappingNotFoundError,
    ValidationError,
)

from synchub.config import config, VERSION

from synchub.models import (
    Platform,
    RemoteEntity,
    ChangeRecord,
    ConflictRecord,
    EntityMapping,
    PollJobState,
    InboundEvent,
    AckResult,
)

__all__ = [
    # Exceptions
    "SyncHubError",
    "PlatformError",
    "PlatformConnectionError",
    "PlatformAPIError",
    "PlatformAuthError",
    "PlatformDataError",
    "MalformedEventError",
    "JobNotFoundError",
    "MappingNotFoundError",
    "ValidationError",
    # Config
    "config",
    "VERSION",
    # Models
    "Platform",
    "RemoteEntity",
    "ChangeRecord",
    "ConflictRecord",
    "EntityMapping",
    "PollJobState",
    "InboundEvent",
    "AckResult",
]
