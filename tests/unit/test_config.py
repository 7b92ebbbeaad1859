"""
Tests for synchub.config validation.
"""
import pytest

from synchub.config import (
    AppConfig,
    CompanyCamConfig,
    ConfigurationError,
    HubSpotConfig,
    ProcoreConfig,
    RetentionConfig,
    WebhookConfig,
    validate_config,
)


def _configured(**overrides) -> AppConfig:
    values = {
        "procore": ProcoreConfig(access_token="pc", company_id="42"),
        "hubspot": HubSpotConfig(access_token="hs"),
        "companycam": CompanyCamConfig(access_token="cc"),
    }
    values.update(overrides)
    return AppConfig(**values)


class TestValidateConfig:

    def test_complete_config_passes(self):
        validate_config(_configured())

    def test_missing_tokens_are_listed(self):
        cfg = _configured(
            hubspot=HubSpotConfig(access_token=""),
            companycam=CompanyCamConfig(access_token=""),
        )

        with pytest.raises(ConfigurationError) as exc_info:
            validate_config(cfg)

        message = str(exc_info.value)
        assert "HUBSPOT_ACCESS_TOKEN" in message
        assert "COMPANYCAM_ACCESS_TOKEN" in message
        assert "PROCORE_ACCESS_TOKEN" not in message

    def test_tokens_optional_when_not_required(self):
        cfg = _configured(procore=ProcoreConfig(access_token="", company_id=""))

        validate_config(cfg, require_platforms=False)

    def test_company_id_must_be_numeric(self):
        cfg = _configured(procore=ProcoreConfig(access_token="pc", company_id="acme"))

        with pytest.raises(ConfigurationError, match="PROCORE_COMPANY_ID must be numeric"):
            validate_config(cfg, require_platforms=False)

    def test_retention_and_workers_bounds(self):
        cfg = _configured(
            retention=RetentionConfig(change_retention_days=0),
            webhooks=WebhookConfig(workers=0),
        )

        with pytest.raises(ConfigurationError) as exc_info:
            validate_config(cfg)

        assert "CHANGE_RETENTION_DAYS" in str(exc_info.value)
        assert "worker" in str(exc_info.value)


class TestDefaults:

    def test_retention_defaults(self, monkeypatch):
        monkeypatch.delenv("CHANGE_RETENTION_DAYS", raising=False)
        monkeypatch.delenv("IDEMPOTENCY_TTL_DAYS", raising=False)

        retention = RetentionConfig()

        assert retention.change_retention_days == 14
        assert retention.idempotency_ttl_days == 7

    def test_retention_from_environment(self, monkeypatch):
        monkeypatch.setenv("CHANGE_RETENTION_DAYS", "30")

        assert RetentionConfig().change_retention_days == 30
