"""
Exception classes for PII vault operations.

Callers are expected to treat the classes as follows:

- MalformedEnvelopeError: bad input, never retried
- AuthenticationFailedError: tag mismatch, terminal for the operation
- KeyNotFoundError: the backend has no material (crypto-shredded key)
- BackendError: the backend could not be reached or answered garbage
"""

from __future__ import annotations


class PiiVaultError(Exception):
    """Base exception for all PII vault operations."""

    pass


class MalformedEnvelopeError(PiiVaultError, ValueError):
    """Envelope bytes failed structural validation."""

    pass


class CryptoError(PiiVaultError):
    """Cryptographic operation could not be performed."""

    pass


class AuthenticationFailedError(CryptoError):
    """AEAD tag verification failed (wrong key, tampered data or AAD)."""

    pass


class KeyNotFoundError(PiiVaultError):
    """Key backend reports no material for the key id."""

    pass


class BackendError(PiiVaultError):
    """Key backend failure (network, auth, timeout, malformed response)."""

    pass


class ConfigError(PiiVaultError):
    """Configuration error."""

    pass
