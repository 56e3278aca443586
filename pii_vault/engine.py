"""
Envelope engine: the operation surface for column-level PII encryption.

This module provides:
- EnvelopeEngine: seal / open / re-seal envelopes through a KeyCache
- SHREDDED: Sentinel returned when a value's key has been crypto-shredded
- key_id_from_int / key_id_from_bigint: Helpers turning integer primary keys
  into key ids
- get_default_engine / reset_default_engine: Process-wide engine built from
  the environment

Flow:
    caller -> EnvelopeEngine -> KeyCache -> KeyBackend (on miss/expiry)
           -> AesGcmCipher -> envelope codec
"""

from __future__ import annotations

import logging
import struct
import threading
from typing import Optional, Union

from .backend import KeyBackend, create_backend
from .cache import KeyCache
from .config import VaultSettings
from .crypto import AesGcmCipher
from .envelope import Envelope, EnvelopeKind, decode, encode
from .errors import KeyNotFoundError

logger = logging.getLogger("pii_vault.engine")

REDACTED_TEXT: str = "****"

BytesLike = Union[bytes, bytearray, memoryview]
EnvelopeLike = Union[Envelope, bytes, bytearray, memoryview]


class _Shredded:
    """Marker for a value whose key no longer exists at the backend."""

    _instance: Optional[_Shredded] = None

    def __new__(cls) -> _Shredded:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SHREDDED"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self) -> str:
        return "SHREDDED"


SHREDDED = _Shredded()


def key_id_from_int(value: int) -> bytes:
    """Encode an INTEGER primary key as a 4-byte big-endian key id."""
    return struct.pack(">i", value)


def key_id_from_bigint(value: int) -> bytes:
    """Encode a BIGINT primary key as an 8-byte big-endian key id."""
    return struct.pack(">q", value)


def _check_key_id(key_id: BytesLike) -> bytes:
    if not isinstance(key_id, (bytes, bytearray, memoryview)):
        raise TypeError("key_id must be bytes")
    key_id = bytes(key_id)
    if not key_id:
        raise ValueError("key_id cannot be empty")
    return key_id


class EnvelopeEngine:
    """
    Seals and opens envelopes.

    Sealing fetches key material in create-if-absent mode; opening only
    fetches existing material, so a deleted key surfaces as SHREDDED
    instead of being silently re-created.
    """

    def __init__(self, cache: KeyCache) -> None:
        """
        Initialize the engine.

        Args:
            cache: KeyCache wrapping the key backend
        """
        self._cache = cache

    @classmethod
    def with_backend(
        cls,
        backend: KeyBackend,
        ttl_seconds: float = 300,
        wait_timeout: Optional[float] = None,
    ) -> EnvelopeEngine:
        """
        Create an engine with its own cache in front of backend.

        Args:
            backend: KeyBackend instance
            ttl_seconds: Key cache TTL
            wait_timeout: Max seconds to wait on another thread's fetch

        Returns:
            EnvelopeEngine instance
        """
        return cls(KeyCache(backend, ttl_seconds=ttl_seconds, wait_timeout=wait_timeout))

    @classmethod
    def from_settings(cls, settings: VaultSettings) -> EnvelopeEngine:
        """Create an engine and backend from validated settings."""
        backend = create_backend(settings)
        return cls.with_backend(
            backend,
            ttl_seconds=settings.cache_ttl_seconds,
            wait_timeout=settings.wait_timeout,
        )

    @property
    def cache(self) -> KeyCache:
        return self._cache

    @property
    def backend(self) -> KeyBackend:
        return self._cache.backend

    # ------------------------------------------------------------------
    # Construction / inspection
    # ------------------------------------------------------------------

    @staticmethod
    def from_plaintext(plaintext: BytesLike) -> Envelope:
        """Wrap bytes as a staging envelope; no key access."""
        return Envelope.staging(plaintext)

    @staticmethod
    def from_text(text: str) -> Envelope:
        """Wrap text (UTF-8) as a staging envelope; no key access."""
        return Envelope.staging(text.encode("utf-8"))

    @staticmethod
    def from_raw(data: BytesLike) -> Envelope:
        """Decode stored wire-format bytes."""
        return decode(data)

    @staticmethod
    def raw_bytes(envelope: EnvelopeLike) -> bytes:
        """Exact wire-format encoding."""
        return encode(_coerce(envelope))

    @staticmethod
    def debug_describe(envelope: EnvelopeLike) -> str:
        """Variant and structural fields, never the plaintext."""
        return _coerce(envelope).describe()

    # ------------------------------------------------------------------
    # Sealing
    # ------------------------------------------------------------------

    def seal_new(self, plaintext: BytesLike, key_id: BytesLike) -> Envelope:
        """
        Encrypt plaintext under key_id, creating the key if needed.

        Args:
            plaintext: Data to encrypt
            key_id: Logical key identifier (e.g. encoded primary key)

        Returns:
            Sealed envelope

        Raises:
            BackendError: If key material could not be obtained
        """
        key_id = _check_key_id(key_id)
        material = self._cache.get_or_fetch(key_id, create=True)
        payload = AesGcmCipher.seal(plaintext, material, key_id)
        logger.debug("Sealed %d bytes under key %s", len(payload.ciphertext), key_id.hex())
        return Envelope.sealed(payload)

    def seal_existing(self, envelope: EnvelopeLike, key_id: BytesLike) -> Envelope:
        """
        Open an envelope (staging or sealed) and re-seal it under key_id.

        Args:
            envelope: Envelope or its wire bytes
            key_id: Target key identifier

        Returns:
            Sealed envelope under key_id

        Raises:
            KeyNotFoundError: If the source key has been shredded
            AuthenticationFailedError: If the source does not verify
            BackendError: If key material could not be obtained
        """
        key_id = _check_key_id(key_id)
        plaintext = self._open(_coerce(envelope))
        return self.seal_new(plaintext, key_id)

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    def open_to_plaintext(self, envelope: EnvelopeLike) -> Union[bytes, _Shredded]:
        """
        Return the plaintext of an envelope.

        Staging envelopes are returned without touching the backend.

        Returns:
            Plaintext bytes, or SHREDDED if the key is gone

        Raises:
            MalformedEnvelopeError: If raw bytes do not decode
            AuthenticationFailedError: If the payload does not verify
            BackendError: If key material could not be obtained
        """
        try:
            return self._open(_coerce(envelope))
        except KeyNotFoundError:
            return SHREDDED

    def open_to_text(self, envelope: EnvelopeLike) -> str:
        """Like open_to_plaintext(), decoded as UTF-8; shredded values read ``****``."""
        plaintext = self.open_to_plaintext(envelope)
        if plaintext is SHREDDED:
            return REDACTED_TEXT
        return plaintext.decode("utf-8")

    def _open(self, envelope: Envelope) -> bytes:
        if envelope.kind is EnvelopeKind.STAGING:
            return envelope.plaintext
        payload = envelope.payload
        material = self._cache.get_or_fetch(payload.key_id, create=False)
        return AesGcmCipher.open(payload, material)

    # ------------------------------------------------------------------
    # Shredding / lifecycle
    # ------------------------------------------------------------------

    def shred(self, key_id: BytesLike) -> None:
        """
        Delete key_id at the backend and drop it from the cache.

        Every envelope sealed under key_id opens to SHREDDED afterwards.
        """
        key_id = _check_key_id(key_id)
        self.backend.delete_key(key_id)
        self._cache.invalidate(key_id)
        logger.info("Shredded key %s", key_id.hex())

    def close(self) -> None:
        self.backend.close()


def _coerce(envelope: EnvelopeLike) -> Envelope:
    if isinstance(envelope, Envelope):
        return envelope
    if isinstance(envelope, (bytes, bytearray, memoryview)):
        return decode(envelope)
    raise TypeError(f"Expected Envelope or bytes, got {type(envelope).__name__}")


# =============================================================================
# Process-wide engine
# =============================================================================

_default_engine: Optional[EnvelopeEngine] = None
_default_lock = threading.Lock()


def get_default_engine() -> EnvelopeEngine:
    """
    Return the process-wide engine, building it from the environment once.

    Raises:
        ConfigError: If the environment does not hold a valid configuration
    """
    global _default_engine
    with _default_lock:
        if _default_engine is None:
            _default_engine = EnvelopeEngine.from_settings(VaultSettings.from_env())
        return _default_engine


def reset_default_engine() -> None:
    """Close and drop the process-wide engine (configuration reload)."""
    global _default_engine
    with _default_lock:
        engine, _default_engine = _default_engine, None
    if engine is not None:
        engine.close()
