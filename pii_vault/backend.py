"""
Key backend abstractions.

This module provides:
- KeyBackend: Abstract interface to the service of record for key material
- MockBackend: Thread-safe in-process backend for tests and local runs
- create_backend: Select a backend from VaultSettings

A key id never owns its material; the backend is the source of truth and
every cache in front of it is only a time-bounded view.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Dict, Union

from .crypto import generate_key_material
from .errors import KeyNotFoundError

if TYPE_CHECKING:
    from .config import VaultSettings

logger = logging.getLogger("pii_vault.backend")

MOCK_ADDRESS_PREFIX: str = "mock://"

BytesLike = Union[bytes, bytearray, memoryview]


class KeyBackend(ABC):
    """
    Abstract interface for key backends.

    Implementations must be safe to call from many threads at once.
    """

    @abstractmethod
    def ensure_key(self, key_id: bytes) -> bytes:
        """
        Create material for key_id if absent, then return it.

        Raises:
            BackendError: If the backend cannot be reached or misbehaves
        """
        ...

    @abstractmethod
    def fetch_key(self, key_id: bytes) -> bytes:
        """
        Return existing material for key_id.

        Raises:
            KeyNotFoundError: If the key never existed or was deleted
            BackendError: If the backend cannot be reached or misbehaves
        """
        ...

    @abstractmethod
    def delete_key(self, key_id: bytes) -> None:
        """Delete material for key_id (crypto shredding)."""
        ...

    def close(self) -> None:
        """Release network resources, if any."""


class MockBackend(KeyBackend):
    """
    In-memory key backend.

    Material is generated on first ensure_key() and lives only for the
    lifetime of the instance. Uses threading.Lock for safe concurrent access.
    """

    def __init__(self) -> None:
        self._keys: Dict[bytes, bytes] = {}
        self._lock = threading.Lock()

    def ensure_key(self, key_id: bytes) -> bytes:
        """Create-if-absent; the first writer wins."""
        key_id = bytes(key_id)
        with self._lock:
            material = self._keys.get(key_id)
            if material is None:
                material = generate_key_material()
                self._keys[key_id] = material
                logger.info("Mock backend created key %s", key_id.hex())
            return material

    def fetch_key(self, key_id: bytes) -> bytes:
        """Get existing material."""
        key_id = bytes(key_id)
        with self._lock:
            material = self._keys.get(key_id)
        if material is None:
            raise KeyNotFoundError(f"Key {key_id.hex()} not found")
        return material

    def delete_key(self, key_id: bytes) -> None:
        """Forget material; later fetches raise KeyNotFoundError."""
        key_id = bytes(key_id)
        with self._lock:
            self._keys.pop(key_id, None)
        logger.info("Mock backend deleted key %s", key_id.hex())

    def __contains__(self, key_id: BytesLike) -> bool:
        with self._lock:
            return bytes(key_id) in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)


def is_mock_address(address: str) -> bool:
    """Return True if address selects the in-memory backend."""
    return address.startswith(MOCK_ADDRESS_PREFIX)


def create_backend(settings: VaultSettings) -> KeyBackend:
    """
    Build the backend selected by settings.backend_address.

    Args:
        settings: Validated VaultSettings

    Returns:
        MockBackend for ``mock://`` addresses, TransitBackend otherwise
    """
    if is_mock_address(settings.backend_address):
        logger.info("Using in-memory mock key backend")
        return MockBackend()

    from .transit import TransitBackend

    return TransitBackend.from_settings(settings)
