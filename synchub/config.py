"""
Centralized configuration for the sync hub.

This module provides a single source of truth for all configuration values.
Configuration is loaded from environment variables with sensible defaults.

Usage:
    from synchub.config import config

    token = config.procore.access_token
    retention = config.retention.change_retention_days
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "")
    return int(value) if value.strip().isdigit() else default



def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class DatabaseConfig:
    """DuckDB store configuration."""

    path: str = field(
        default_factory=lambda: os.getenv(
            "SYNCHUB_DB_PATH",
            str(Path(__file__).parent.parent / "data" / "synchub.duckdb"),
        )
    )
    query_timeout: float = 30.0


@dataclass(frozen=True)
class ProcoreConfig:
    """Procore API configuration."""

    base_url: str = field(
        default_factory=lambda: os.getenv("PROCORE_BASE_URL", "https://api.procore.com")
    )
    access_token: str = field(default_factory=lambda: os.getenv("PROCORE_ACCESS_TOKEN", ""))
    company_id: str = field(default_factory=lambda: os.getenv("PROCORE_COMPANY_ID", ""))
    page_size: int = 100


@dataclass(frozen=True)
class HubSpotConfig:
    """HubSpot CRM API configuration."""

    base_url: str = field(
        default_factory=lambda: os.getenv("HUBSPOT_BASE_URL", "https://api.hubapi.com")
    )
    access_token: str = field(default_factory=lambda: os.getenv("HUBSPOT_ACCESS_TOKEN", ""))
    page_size: int = 100


@dataclass(frozen=True)
class CompanyCamConfig:
    """CompanyCam API configuration."""

    base_url: str = field(
        default_factory=lambda: os.getenv("COMPANYCAM_BASE_URL", "https://api.companycam.com")
    )
    access_token: str = field(default_factory=lambda: os.getenv("COMPANYCAM_ACCESS_TOKEN", ""))
    page_size: int = 50


@dataclass(frozen=True)
class HTTPConfig:
    """Outbound HTTP behaviour shared by all platform clients."""

    timeout_seconds: float = 10.0
    max_connections: int = 20
    retry_attempts: int = 2
    requests_per_second: float = 8.0
    burst: int = 10


@dataclass(frozen=True)
class SchedulerConfig:
    """Poll job defaults."""

    platform_sync_interval_minutes: int = 60
    reconcile_interval_minutes: int = 30
    maintenance_interval_minutes: int = 1440
    immediate_run_delay_seconds: int = 5
    misfire_grace_time: int = 60


@dataclass(frozen=True)
class ReconcileConfig:
    """
    Write-back switches for scheduled reconciles.

    dry_run computes conflicts without writing to any platform or saving
    mappings; skip_writes saves mappings and conflicts but writes nothing
    back to the secondary platform.
    """

    dry_run: bool = field(default_factory=lambda: _env_flag("RECONCILE_DRY_RUN"))
    skip_writes: bool = field(default_factory=lambda: _env_flag("RECONCILE_SKIP_WRITES"))


@dataclass(frozen=True)
class RetentionConfig:
    """How long audit data is kept."""

    change_retention_days: int = field(
        default_factory=lambda: _env_int("CHANGE_RETENTION_DAYS", 14)
    )
    idempotency_ttl_days: int = field(
        default_factory=lambda: _env_int("IDEMPOTENCY_TTL_DAYS", 7)
    )


@dataclass(frozen=True)
class WebhookConfig:
    """Webhook ingestion configuration."""

    queue_size: int = 500
    workers: int = 4
    bucket_seconds: int = 60


@dataclass(frozen=True)
class WebConfig:
    """HTTP service configuration."""

    host: str = "0.0.0.0"
    port: int = field(default_factory=lambda: _env_int("PORT", 8080))

    # Rate limiting
    webhook_rate_limit: str = "600/minute"
    admin_rate_limit: str = "30/minute"


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""

    version: str = "1.0.0"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    procore: ProcoreConfig = field(default_factory=ProcoreConfig)
    hubspot: HubSpotConfig = field(default_factory=HubSpotConfig)
    companycam: CompanyCamConfig = field(default_factory=CompanyCamConfig)
    http: HTTPConfig = field(default_factory=HTTPConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    webhooks: WebhookConfig = field(default_factory=WebhookConfig)
    web: WebConfig = field(default_factory=WebConfig)


# Global config instance
config = AppConfig()

VERSION = config.version


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(cfg: AppConfig = None, require_platforms: bool = True) -> None:
    """
    Validate that all required configuration is present.

    Call this on application startup to fail fast with clear error messages
    instead of cryptic runtime failures.

    Args:
        cfg: Config to validate (defaults to the global instance)
        require_platforms: If True, every platform token must be set

    Raises:
        ConfigurationError: If required configuration is missing
    """
    cfg = cfg or config
    errors: List[str] = []

    if require_platforms:
        if not cfg.procore.access_token:
            errors.append("PROCORE_ACCESS_TOKEN is required but not set")
        if not cfg.procore.company_id:
            errors.append("PROCORE_COMPANY_ID is required but not set")
        if not cfg.hubspot.access_token:
            errors.append("HUBSPOT_ACCESS_TOKEN is required but not set")
        if not cfg.companycam.access_token:
            errors.append("COMPANYCAM_ACCESS_TOKEN is required but not set")

    if cfg.procore.company_id and not cfg.procore.company_id.isdigit():
        errors.append("PROCORE_COMPANY_ID must be numeric")

    if cfg.retention.change_retention_days < 1:
        errors.append("CHANGE_RETENTION_DAYS must be at least 1")

    if cfg.webhooks.workers < 1:
        errors.append("Webhook worker count must be at least 1")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)
