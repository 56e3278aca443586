"""
Remote key backend on top of a Vault transit secrets engine.

This module provides:
- TransitBackend: KeyBackend that keeps custody of keys in Vault transit
  and exports raw key bytes for local AES-GCM

Key layout:
- Key name is the lowercase hex of the key id
- Keys are created as ``aes256-gcm96`` and marked exportable
- Material is read from ``<mount>/export/encryption-key/<name>/latest``

Error mapping:
- 404 (InvalidPath) -> KeyNotFoundError, never retried
- Anything else (auth, 5xx, timeouts, connection errors, malformed
  responses) -> BackendError, retried with exponential backoff

Security Note:
    Never log exported key material. Only key names and status.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, TypeVar

import hvac
import hvac.exceptions
import requests
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .backend import KeyBackend
from .crypto import AES_256_KEY_SIZE
from .errors import BackendError, KeyNotFoundError

if TYPE_CHECKING:
    from .config import VaultSettings

logger = logging.getLogger("pii_vault.transit")

DEFAULT_MOUNT: str = "transit"
TRANSIT_KEY_TYPE: str = "aes256-gcm96"
EXPORT_KEY_TYPE: str = "encryption-key"

T = TypeVar("T")


class TransitBackend(KeyBackend):
    """
    Vault transit key backend.

    Vault only holds the keys; encryption happens locally. Creation is
    first-writer-wins: creating an existing transit key leaves its
    material untouched, so racing creators all export the same bytes.
    """

    def __init__(
        self,
        address: str,
        token: Optional[str],
        mount: str = DEFAULT_MOUNT,
        timeout: float = 5.0,
        retry_attempts: int = 3,
        retry_wait: float = 0.2,
        client: Optional[hvac.Client] = None,
    ) -> None:
        """
        Initialize the transit backend.

        Args:
            address: Vault base URL
            token: Vault token sent with every request
            mount: Mount path of the transit engine
            timeout: Per-request timeout in seconds
            retry_attempts: Total attempts for a failing call
            retry_wait: Exponential backoff multiplier in seconds
            client: Pre-built hvac client (tests, custom TLS)
        """
        self._address = address
        self._mount = mount.strip("/")
        self._retry_attempts = retry_attempts
        self._retry_wait = retry_wait
        self._client = client or hvac.Client(url=address, token=token, timeout=timeout)

    @classmethod
    def from_settings(cls, settings: VaultSettings) -> TransitBackend:
        """Build a backend from validated settings."""
        token = settings.access_token.get_secret_value() if settings.access_token else None
        return cls(
            address=settings.backend_address,
            token=token,
            mount=settings.key_namespace,
            timeout=settings.request_timeout,
            retry_attempts=settings.retry_attempts,
            retry_wait=settings.retry_wait,
        )

    @property
    def mount(self) -> str:
        return self._mount

    @staticmethod
    def key_name(key_id: bytes) -> str:
        """Transit key name for a key id."""
        return bytes(key_id).hex()

    # ------------------------------------------------------------------
    # KeyBackend API
    # ------------------------------------------------------------------

    def fetch_key(self, key_id: bytes) -> bytes:
        """
        Export existing material for key_id.

        Raises:
            KeyNotFoundError: If the transit key does not exist
            BackendError: After all retries failed
        """
        name = self.key_name(key_id)
        return self._retrying(self._export, name)

    def ensure_key(self, key_id: bytes) -> bytes:
        """
        Export material for key_id, creating the transit key first if needed.

        Raises:
            BackendError: After all retries failed
        """
        name = self.key_name(key_id)
        return self._retrying(self._export_or_create, name)

    def delete_key(self, key_id: bytes) -> None:
        """
        Crypto-shred key_id: allow deletion, then delete the transit key.

        Deleting a key that does not exist is a no-op.
        """
        name = self.key_name(key_id)
        try:
            self._retrying(self._delete, name)
        except KeyNotFoundError:
            logger.info("Transit key %s already absent", name)

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self._client.adapter.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _retrying(self, fn: Callable[..., T], *args: Any) -> T:
        retryer = Retrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=self._retry_wait, max=10),
            retry=retry_if_exception_type(BackendError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retryer(fn, *args)

    def _call(self, operation: str, name: str, fn: Callable[..., T], /, **kwargs: Any) -> T:
        """Invoke an hvac call, translating its failures."""
        try:
            return fn(**kwargs)
        except hvac.exceptions.InvalidPath:
            raise KeyNotFoundError(f"Transit key {name} not found") from None
        except (hvac.exceptions.Unauthorized, hvac.exceptions.Forbidden) as e:
            raise BackendError(f"Vault {operation} for {name} not authorized: {e}")
        except hvac.exceptions.VaultError as e:
            raise BackendError(f"Vault {operation} for {name} failed: {e}")
        except requests.exceptions.Timeout:
            raise BackendError(f"Vault {operation} for {name} timed out")
        except requests.exceptions.RequestException as e:
            raise BackendError(f"Vault {operation} request for {name} failed: {e}")

    def _export(self, name: str) -> bytes:
        response = self._call(
            "export",
            name,
            self._client.secrets.transit.export_key,
            name=name,
            key_type=EXPORT_KEY_TYPE,
            version="latest",
            mount_point=self._mount,
        )
        logger.debug("Exported transit key %s", name)
        return self._parse_export(name, response)

    def _export_or_create(self, name: str) -> bytes:
        try:
            return self._export(name)
        except KeyNotFoundError:
            pass

        self._call(
            "create",
            name,
            self._client.secrets.transit.create_key,
            name=name,
            exportable=True,
            key_type=TRANSIT_KEY_TYPE,
            mount_point=self._mount,
        )
        logger.info("Created transit key %s in mount %s", name, self._mount)

        try:
            return self._export(name)
        except KeyNotFoundError:
            # Deleted between create and export; let the retry policy decide
            raise BackendError(f"Transit key {name} vanished right after creation")

    def _delete(self, name: str) -> None:
        self._call(
            "configure",
            name,
            self._client.secrets.transit.update_key_configuration,
            name=name,
            deletion_allowed=True,
            mount_point=self._mount,
        )
        self._call(
            "delete",
            name,
            self._client.secrets.transit.delete_key,
            name=name,
            mount_point=self._mount,
        )
        logger.info("Deleted transit key %s from mount %s", name, self._mount)

    @staticmethod
    def _parse_export(name: str, response: Any) -> bytes:
        """Pick the newest version from an export response and decode it."""
        try:
            keys = response["data"]["keys"]
        except (KeyError, TypeError):
            raise BackendError(f"Malformed export response for {name}")
        if not isinstance(keys, Mapping) or not keys:
            raise BackendError(f"Export response for {name} contains no keys")

        try:
            latest = max(keys, key=int)
        except (TypeError, ValueError):
            raise BackendError(f"Export response for {name} has invalid key versions")

        try:
            material = base64.b64decode(keys[latest], validate=True)
        except (binascii.Error, TypeError, ValueError):
            raise BackendError(f"Export response for {name} is not valid base64")

        if len(material) != AES_256_KEY_SIZE:
            raise BackendError(
                f"Invalid key length for {name}: expected {AES_256_KEY_SIZE}, got {len(material)}"
            )
        return material
