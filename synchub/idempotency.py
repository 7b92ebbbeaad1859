"""
Idempotency guard for inbound webhook events.

Every event is reduced to a deterministic key; the key is recorded with an
expiry before any side effect of processing the event runs. A second delivery
of the same logical event finds the live key and is short-circuited.

Usage:
    guard = IdempotencyGuard(store)
    key = guard.derive_key(Platform.PROCORE, "123", "update", occurred_at)
    event_id = await guard.claim_event(key, inbound_event)
    if event_id is not None:
        ...  # first delivery, already logged as received
"""
import hashlib
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

import orjson

from synchub.config import config
from synchub.models import InboundEvent, Platform, WebhookStatus, utcnow
from synchub.observability import get_logger

logger = get_logger(__name__)


class IdempotencyGuard:
    """Keyed, TTL-bounded record of processed events."""

    def __init__(
        self,
        store,
        ttl_days: Optional[int] = None,
        bucket_seconds: Optional[int] = None,
    ):
        self.store = store
        self.ttl = timedelta(days=ttl_days or config.retention.idempotency_ttl_days)
        self.bucket_seconds = bucket_seconds or config.webhooks.bucket_seconds

    def derive_key(
        self,
        source: Union[Platform, str],
        resource_id: str,
        event_type: str,
        occurred_at: Optional[datetime] = None,
        event_id: Optional[str] = None,
        payload: Any = None,
    ) -> str:
        """
        Build a deterministic key for one logical event.

        A platform-assigned event id is the most precise identity and wins.
        Otherwise the event time is reduced to a bucket so redeliveries of
        the same event (which carry the same timestamp) collide. With neither,
        a digest of the canonical payload tells distinct events apart.
        """
        prefix = Platform(source).key_prefix
        if event_id:
            discriminator = f"e{event_id}"
        elif occurred_at is not None:
            stamp = occurred_at if occurred_at.tzinfo else occurred_at.replace(tzinfo=timezone.utc)
            discriminator = str(int(stamp.timestamp()) // self.bucket_seconds)
        elif payload:
            canonical = orjson.dumps(payload, option=orjson.OPT_SORT_KEYS, default=str)
            discriminator = "d" + hashlib.sha256(canonical).hexdigest()[:16]
        else:
            discriminator = "na"
        return f"{prefix}_{event_type}_{resource_id}_{discriminator}"

    async def claim(
        self,
        key: str,
        source: Union[Platform, str],
        event_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Atomically check and record ``key``.

        Returns:
            True on first sight (caller should process), False for a duplicate
        """
        now = now or utcnow()
        claimed = await self.store.claim_idempotency_key(
            key, Platform(source).value, event_type, now + self.ttl, now=now
        )
        if not claimed:
            logger.info(f"Duplicate event skipped: {key}", extra={"idempotency_key": key})
        return claimed

    async def claim_event(
        self, key: str, event: InboundEvent, now: Optional[datetime] = None
    ) -> Optional[int]:
        """
        Claim ``key`` and log ``event`` as received in one store transaction.

        Returns:
            The webhook event id on first sight, None for a duplicate
        """
        now = now or utcnow()
        event_id = await self.store.claim_webhook_event(
            key,
            event.source.value,
            event.event_type,
            now + self.ttl,
            payload=event.payload,
            resource_type=event.resource_type,
            resource_id=event.resource_id,
            status=WebhookStatus.RECEIVED.value,
            now=now,
        )
        if event_id is None:
            logger.info(f"Duplicate event skipped: {key}", extra={"idempotency_key": key})
        return event_id

    async def is_handled(self, key: str) -> bool:
        """True if a live key exists (read-only check)."""
        return await self.store.has_live_idempotency_key(key)

    async def reap(self, now: Optional[datetime] = None) -> int:
        """Delete expired keys. Returns the number removed."""
        removed = await self.store.delete_expired_idempotency_keys(now)
        if removed:
            logger.info(f"Reaped {removed} expired idempotency keys")
        return removed
