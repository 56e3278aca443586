"""
Vault configuration: validated settings for the key backend and cache.

Reads settings from environment variables (a ``.env`` file is loaded first,
existing variables win):

    PII_VAULT_URL              backend address, ``mock://...`` for the mock backend
    PII_VAULT_TOKEN            access token (required for remote backends)
    PII_VAULT_MOUNT            transit mount path (default: transit)
    PII_VAULT_CACHE_TTL        key cache TTL in seconds (default: 300)
    PII_VAULT_TIMEOUT          backend request timeout in seconds (default: 5)
    PII_VAULT_RETRY_ATTEMPTS   attempts per backend call (default: 3)
    PII_VAULT_RETRY_WAIT       backoff multiplier in seconds (default: 0.2)

Security Note:
    Never log the access token. It is held as a SecretStr.
"""

from __future__ import annotations

import logging
import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator, model_validator

from .backend import is_mock_address
from .errors import ConfigError

logger = logging.getLogger("pii_vault.config")

ENV_PREFIX = "PII_VAULT_"

_ENV_FIELDS = {
    "URL": "backend_address",
    "TOKEN": "access_token",
    "MOUNT": "key_namespace",
    "CACHE_TTL": "cache_ttl_seconds",
    "TIMEOUT": "request_timeout",
    "RETRY_ATTEMPTS": "retry_attempts",
    "RETRY_WAIT": "retry_wait",
}


class VaultSettings(BaseModel):
    """Validated PII vault configuration."""

    backend_address: str
    access_token: Optional[SecretStr] = None
    key_namespace: str = Field(default="transit")
    cache_ttl_seconds: int = Field(default=300, ge=0)
    request_timeout: float = Field(default=5.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1, le=10)
    retry_wait: float = Field(default=0.2, ge=0)

    model_config = {"frozen": True}

    @field_validator("backend_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Strip whitespace and trailing slashes."""
        v = v.strip()
        if not v:
            raise ValueError("backend_address cannot be empty")
        if is_mock_address(v):
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Unsupported backend address: {v}")
        return v.rstrip("/")

    @field_validator("key_namespace")
    @classmethod
    def validate_namespace(cls, v: str) -> str:
        v = v.strip().strip("/")
        if not v:
            raise ValueError("key_namespace cannot be empty")
        return v

    @model_validator(mode="after")
    def validate_token_for_remote(self) -> VaultSettings:
        """Remote backends need an access token."""
        if not self.is_mock and (
            self.access_token is None or not self.access_token.get_secret_value()
        ):
            raise ValueError("access_token is required for a remote backend")
        return self

    @property
    def is_mock(self) -> bool:
        return is_mock_address(self.backend_address)

    @property
    def wait_timeout(self) -> float:
        """Upper bound on how long a cache waiter blocks on an in-flight fetch."""
        backoff = sum(min(self.retry_wait * 2 ** n, 10) for n in range(self.retry_attempts))
        # ensure_key issues up to three requests per attempt (export, create, export)
        return self.request_timeout * self.retry_attempts * 3 + backoff

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        dotenv: bool = True,
    ) -> VaultSettings:
        """Create VaultSettings from environment variables.

        Args:
            environ: Mapping to read instead of os.environ.
            dotenv: Load a ``.env`` file into os.environ first.

        Returns:
            Validated VaultSettings instance.

        Raises:
            ConfigError: If a variable is missing or invalid.
        """
        if dotenv and environ is None:
            load_dotenv(override=False)
        env = os.environ if environ is None else environ

        values = {}
        for suffix, field in _ENV_FIELDS.items():
            raw = env.get(ENV_PREFIX + suffix)
            if raw is not None and raw != "":
                values[field] = raw

        if "backend_address" not in values:
            raise ConfigError(f"{ENV_PREFIX}URL is not set")
        return cls.build(**values)

    @classmethod
    def build(cls, **values) -> VaultSettings:
        """Validate values, raising ConfigError instead of ValidationError."""
        try:
            settings = cls(**values)
        except ValidationError as err:
            raise ConfigError(f"Invalid vault configuration: {err}") from err
        logger.debug(
            "Vault settings: address=%s mount=%s ttl=%ss",
            settings.backend_address, settings.key_namespace, settings.cache_ttl_seconds,
        )
        return settings
