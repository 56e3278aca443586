"""
PII Vault

Column-level, per-record authenticated encryption with keys held by an
external key-management service, enabling crypto shredding.

Quick Start
-----------
```python
from pii_vault import EnvelopeEngine, MockBackend, SHREDDED, key_id_from_int

engine = EnvelopeEngine.with_backend(MockBackend())

# Seal a value under the row's key id
key_id = key_id_from_int(1)
envelope = engine.seal_new(b"alice secret", key_id)
stored = engine.raw_bytes(envelope)

# Read it back
assert engine.open_to_plaintext(stored) == b"alice secret"

# Crypto-shred the row
engine.shred(key_id)
assert engine.open_to_plaintext(stored) is SHREDDED
```

Key Features
------------
- **AES-256-GCM**: Authenticated encryption, AAD bound to the record's key id
- **Staging values**: Plaintext envelopes that can be sealed later in place
- **Key cache**: TTL-scoped, thread-safe, single-flight backend fetches
- **Vault transit backend**: Keys created exportable and fetched per key id
- **Crypto shredding**: Deleted keys read back as a sentinel, not an error
"""

__version__ = "0.1.0"

# =============================================================================
# Envelope Exports
# =============================================================================

from .envelope import (
    FORMAT_VERSION,
    IV_SIZE,
    TAG_SIZE,
    Envelope,
    EnvelopeKind,
    SealedPayload,
    decode,
    encode,
)

# =============================================================================
# Crypto Exports
# =============================================================================

from .crypto import (
    AES_256_KEY_SIZE,
    AesGcmCipher,
    aad_for,
    generate_key_material,
)

# =============================================================================
# Error Exports
# =============================================================================

from .errors import (
    AuthenticationFailedError,
    BackendError,
    ConfigError,
    CryptoError,
    KeyNotFoundError,
    MalformedEnvelopeError,
    PiiVaultError,
)

# =============================================================================
# Backend / Cache Exports
# =============================================================================

from .backend import KeyBackend, MockBackend, create_backend
from .cache import CacheStats, KeyCache
from .config import VaultSettings
from .transit import TransitBackend

# =============================================================================
# Engine Exports (Primary API)
# =============================================================================

from .engine import (
    REDACTED_TEXT,
    SHREDDED,
    EnvelopeEngine,
    get_default_engine,
    key_id_from_bigint,
    key_id_from_int,
    reset_default_engine,
)

# =============================================================================
# Public API
# =============================================================================

__all__ = [
    # Version
    "__version__",
    # Envelope
    "FORMAT_VERSION",
    "IV_SIZE",
    "TAG_SIZE",
    "Envelope",
    "EnvelopeKind",
    "SealedPayload",
    "encode",
    "decode",
    # Crypto
    "AES_256_KEY_SIZE",
    "AesGcmCipher",
    "aad_for",
    "generate_key_material",
    # Errors
    "PiiVaultError",
    "MalformedEnvelopeError",
    "CryptoError",
    "AuthenticationFailedError",
    "KeyNotFoundError",
    "BackendError",
    "ConfigError",
    # Backends / cache / config
    "KeyBackend",
    "MockBackend",
    "TransitBackend",
    "create_backend",
    "KeyCache",
    "CacheStats",
    "VaultSettings",
    # Engine (Primary API)
    "EnvelopeEngine",
    "SHREDDED",
    "REDACTED_TEXT",
    "key_id_from_int",
    "key_id_from_bigint",
    "get_default_engine",
    "reset_default_engine",
]
