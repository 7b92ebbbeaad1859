"""
Repository mixins for the DuckDB store.

The store class composes these focused mixins:
- MirrorMixin: Remote entity mirrors
- AuditMixin: Change records and audit logs
- WebhookMixin: Idempotency keys and webhook event log
- MappingsMixin: Cross-platform entity mappings
- JobsMixin: Poll job configuration
"""
from synchub.repositories.mirror import MirrorMixin
from synchub.repositories.audit import AuditMixin
from synchub.repositories.webhooks import WebhookMixin
from synchub.repositories.mappings import MappingsMixin
from synchub.repositories.jobs import JobsMixin

__all__ = [
    "MirrorMixin",
    "AuditMixin",
    "WebhookMixin",
    "MappingsMixin",
    "JobsMixin",
]
