"""
Tests for VaultSettings.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from pii_vault import ConfigError, VaultSettings


class TestFromEnv:

    def test_defaults(self):
        settings = VaultSettings.from_env(environ={"PII_VAULT_URL": "mock://local"})
        assert settings.backend_address == "mock://local"
        assert settings.is_mock
        assert settings.access_token is None
        assert settings.key_namespace == "transit"
        assert settings.cache_ttl_seconds == 300
        assert settings.request_timeout == 5.0
        assert settings.retry_attempts == 3

    def test_all_variables(self):
        settings = VaultSettings.from_env(
            environ={
                "PII_VAULT_URL": "https://vault.example.com:8200/",
                "PII_VAULT_TOKEN": "s.secret-token",
                "PII_VAULT_MOUNT": "/pii-transit/",
                "PII_VAULT_CACHE_TTL": "60",
                "PII_VAULT_TIMEOUT": "2.5",
                "PII_VAULT_RETRY_ATTEMPTS": "5",
                "PII_VAULT_RETRY_WAIT": "0.5",
            }
        )
        assert settings.backend_address == "https://vault.example.com:8200"
        assert settings.access_token.get_secret_value() == "s.secret-token"
        assert settings.key_namespace == "pii-transit"
        assert settings.cache_ttl_seconds == 60
        assert settings.request_timeout == 2.5
        assert settings.retry_attempts == 5
        assert settings.retry_wait == 0.5
        assert not settings.is_mock

    def test_missing_url(self):
        with pytest.raises(ConfigError, match="PII_VAULT_URL is not set"):
            VaultSettings.from_env(environ={})

    def test_empty_values_fall_back_to_defaults(self):
        settings = VaultSettings.from_env(
            environ={"PII_VAULT_URL": "mock://", "PII_VAULT_CACHE_TTL": ""}
        )
        assert settings.cache_ttl_seconds == 300

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("PII_VAULT_URL", "mock://from-env")
        monkeypatch.setenv("PII_VAULT_CACHE_TTL", "10")
        settings = VaultSettings.from_env(dotenv=False)
        assert settings.backend_address == "mock://from-env"
        assert settings.cache_ttl_seconds == 10


class TestValidation:

    def test_remote_requires_token(self):
        with pytest.raises(ConfigError, match="access_token"):
            VaultSettings.build(backend_address="http://127.0.0.1:8200")

    def test_remote_rejects_empty_token(self):
        with pytest.raises(ConfigError):
            VaultSettings.build(backend_address="http://127.0.0.1:8200", access_token="")

    @pytest.mark.parametrize("address", ["", "   ", "ftp://vault", "vault:8200"])
    def test_bad_address(self, address):
        with pytest.raises(ConfigError):
            VaultSettings.build(backend_address=address, access_token="t")

    @pytest.mark.parametrize(
        "field,value",
        [
            ("cache_ttl_seconds", -1),
            ("cache_ttl_seconds", "five"),
            ("request_timeout", 0),
            ("retry_attempts", 0),
            ("retry_attempts", 11),
            ("retry_wait", -0.1),
            ("key_namespace", "/"),
        ],
    )
    def test_bad_values(self, field, value):
        with pytest.raises(ConfigError):
            VaultSettings.build(backend_address="mock://", **{field: value})

    def test_zero_ttl_allowed(self):
        assert VaultSettings.build(backend_address="mock://", cache_ttl_seconds=0).cache_ttl_seconds == 0

    def test_token_not_in_repr(self):
        settings = VaultSettings.build(backend_address="http://vault", access_token="s.hunter2")
        assert "hunter2" not in repr(settings)
        assert "hunter2" not in str(settings)

    def test_frozen(self):
        settings = VaultSettings.build(backend_address="mock://")
        with pytest.raises(ValidationError):
            settings.cache_ttl_seconds = 1

    def test_wait_timeout_covers_retries(self):
        settings = VaultSettings.build(
            backend_address="mock://", request_timeout=1.0, retry_attempts=2, retry_wait=0.5
        )
        assert settings.wait_timeout == pytest.approx(1.0 * 2 * 3 + 0.5 + 1.0)

    def test_config_error_chains_validation_error(self):
        with pytest.raises(ConfigError) as err:
            VaultSettings.build(backend_address="mock://", retry_attempts=0)
        assert isinstance(err.value.__cause__, ValidationError)
