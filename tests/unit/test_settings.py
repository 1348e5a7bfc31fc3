"""
Unit tests for the configuration settings module.

Tests cover:
- Defaults and environment variable loading
- Invalid field format validation
- Elasticsearch backend requirements
- Production startup checks
"""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from config.settings import (
    ConfigurationError,
    Environment,
    Settings,
    StorageBackend,
    clear_settings_cache,
    get_settings,
    validate_startup,
)
from support import TENANT_ID


def load(**env):
    with patch.dict(os.environ, env, clear=True):
        return Settings(_env_file=None)


class TestSettings:

    def test_defaults(self):
        settings = load()

        assert settings.environment == Environment.DEVELOPMENT
        assert settings.storage_backend == StorageBackend.MEMORY
        assert settings.max_batch_size == 1000
        assert settings.default_stale_after_seconds == 300
        assert settings.snapshot_conflict_max_attempts == 3
        assert settings.rate_limit_requests_per_minute == 600
        assert settings.log_level == "INFO"
        assert settings.otel_service_name == "geotrack-ingestion"
        assert settings.bootstrap_tenant_ids == []

    def test_environment_variables(self):
        settings = load(
            STORAGE_BACKEND="elasticsearch",
            ELASTIC_ENDPOINT=" https://es.example.com:9200 ",
            ELASTIC_API_KEY="key",
            BOOTSTRAP_TENANT_IDS=f'["{TENANT_ID.upper()}"]',
            LOG_LEVEL="debug",
        )

        assert settings.storage_backend == StorageBackend.ELASTICSEARCH
        assert settings.elastic_endpoint == "https://es.example.com:9200"
        assert settings.bootstrap_tenant_ids == [TENANT_ID]
        assert settings.log_level == "DEBUG"

    def test_elasticsearch_backend_requires_connection(self):
        with pytest.raises(ValidationError) as exc_info:
            load(STORAGE_BACKEND="elasticsearch", ELASTIC_API_KEY="key")
        assert "elastic_endpoint" in str(exc_info.value)

    @pytest.mark.parametrize("env", [
        {"ELASTIC_ENDPOINT": "es.example.com"},
        {"LOG_LEVEL": "LOUD"},
        {"CORS_ORIGINS": '["*"]'},
        {"BOOTSTRAP_TENANT_IDS": '["00000000-0000-0000-0000-000000000000"]'},
        {"BOOTSTRAP_TENANT_IDS": '["acme"]'},
        {"MAX_BATCH_SIZE": "0"},
        {"DEFAULT_STALE_AFTER_SECONDS": "86401"},
    ])
    def test_invalid_values(self, env):
        with pytest.raises(ValidationError):
            load(**env)


class TestGetSettings:

    def teardown_method(self):
        clear_settings_cache()

    def test_cached(self):
        clear_settings_cache()
        with patch.dict(os.environ, {"ENVIRONMENT": "staging"}, clear=True):
            first = get_settings()
            assert get_settings() is first
            assert first.environment == Environment.STAGING

    def test_invalid_configuration_is_reported(self):
        clear_settings_cache()
        with patch.dict(os.environ, {"LOG_LEVEL": "LOUD"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                get_settings()
        assert "log_level" in exc_info.value.invalid_fields
        assert "log_level" in str(exc_info.value)


class TestValidateStartup:

    def test_development_passes(self):
        settings = load()
        assert validate_startup(settings) is settings

    def test_production_rejects_memory_and_localhost(self):
        settings = load(ENVIRONMENT="production")

        with pytest.raises(ConfigurationError) as exc_info:
            validate_startup(settings)

        assert set(exc_info.value.invalid_fields) == {"cors_origins", "storage_backend"}

    def test_production_with_elasticsearch(self):
        settings = load(
            ENVIRONMENT="production",
            STORAGE_BACKEND="elasticsearch",
            ELASTIC_ENDPOINT="https://es.example.com",
            ELASTIC_API_KEY="key",
            CORS_ORIGINS='["https://fleet.example.com"]',
        )
        assert validate_startup(settings) is settings
