"""
Envelope data model and wire codec.

This module provides:
- EnvelopeKind: Discriminator between the staging and sealed states
- SealedPayload: Encrypted value with the fields needed to open it
- Envelope: Tagged value that is either staging plaintext or a sealed payload
- encode / decode: Canonical msgpack serialization of an Envelope

Wire format (msgpack map, binary type enabled):

    Staging: {"d": 0, "p": <plaintext>}
    Sealed:  {"d": 1, "v": <version>, "k": <key_id>, "i": <iv>,
              "t": <tag>, "c": <ciphertext>}

Decoding is pure structural validation and never touches a key backend.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

import msgpack
from msgpack.exceptions import UnpackException

from .errors import MalformedEnvelopeError

FORMAT_VERSION: int = 1
SUPPORTED_VERSIONS = frozenset({FORMAT_VERSION})

IV_SIZE: int = 12
TAG_SIZE: int = 16

_FIELD_KIND = "d"
_FIELD_PLAINTEXT = "p"
_FIELD_VERSION = "v"
_FIELD_KEY_ID = "k"
_FIELD_IV = "i"
_FIELD_TAG = "t"
_FIELD_CIPHERTEXT = "c"

_STAGING_FIELDS = frozenset({_FIELD_KIND, _FIELD_PLAINTEXT})
_SEALED_FIELDS = frozenset(
    {_FIELD_KIND, _FIELD_VERSION, _FIELD_KEY_ID, _FIELD_IV, _FIELD_TAG, _FIELD_CIPHERTEXT}
)


class EnvelopeKind(Enum):
    """Envelope state, stored on the wire as a small integer."""

    STAGING = 0
    SEALED = 1

    def __str__(self) -> str:
        return "Staging" if self is EnvelopeKind.STAGING else "Sealed"


@dataclass(frozen=True)
class SealedPayload:
    """
    Encrypted value.

    The ciphertext has the same length as the plaintext; the GCM tag is
    stored separately in ``tag``.
    """

    version: int
    key_id: bytes
    iv: bytes  # 12 bytes
    tag: bytes  # 16 bytes
    ciphertext: bytes

    def __post_init__(self) -> None:
        if isinstance(self.version, bool) or not isinstance(self.version, int):
            raise MalformedEnvelopeError("version must be an integer")
        if self.version not in SUPPORTED_VERSIONS:
            raise MalformedEnvelopeError(f"Unsupported envelope version: {self.version}")
        for name in ("key_id", "iv", "tag", "ciphertext"):
            if not isinstance(getattr(self, name), bytes):
                raise MalformedEnvelopeError(f"{name} must be bytes")
        if len(self.iv) != IV_SIZE:
            raise MalformedEnvelopeError(
                f"Invalid iv length: expected {IV_SIZE}, got {len(self.iv)}"
            )
        if len(self.tag) != TAG_SIZE:
            raise MalformedEnvelopeError(
                f"Invalid tag length: expected {TAG_SIZE}, got {len(self.tag)}"
            )

    def describe(self) -> str:
        """Structural summary, without any secret content."""
        key_id = ", ".join(str(b) for b in self.key_id)
        return (
            f"version={self.version}, key_id=[{key_id}], "
            f"iv_len={len(self.iv)}, tag_len={len(self.tag)}, "
            f"ciphertext_len={len(self.ciphertext)}"
        )


@dataclass(frozen=True, repr=False)
class Envelope:
    """
    A value that is either staging plaintext or a sealed payload.

    Exactly one of ``plaintext`` / ``payload`` is set, matching ``kind``.
    Consumers dispatch on ``kind``.
    """

    kind: EnvelopeKind
    plaintext: Optional[bytes] = None
    payload: Optional[SealedPayload] = None

    def __post_init__(self) -> None:
        if self.kind is EnvelopeKind.STAGING:
            if not isinstance(self.plaintext, bytes) or self.payload is not None:
                raise MalformedEnvelopeError("Staging envelope must carry plaintext bytes only")
        elif self.kind is EnvelopeKind.SEALED:
            if not isinstance(self.payload, SealedPayload) or self.plaintext is not None:
                raise MalformedEnvelopeError("Sealed envelope must carry a payload only")
        else:
            raise MalformedEnvelopeError(f"Unknown envelope kind: {self.kind!r}")

    @classmethod
    def staging(cls, plaintext: Union[bytes, bytearray, memoryview]) -> Envelope:
        """Wrap raw bytes without any cryptographic operation."""
        return cls(kind=EnvelopeKind.STAGING, plaintext=bytes(plaintext))

    @classmethod
    def sealed(cls, payload: SealedPayload) -> Envelope:
        """Wrap an encrypted payload."""
        return cls(kind=EnvelopeKind.SEALED, payload=payload)

    @property
    def is_sealed(self) -> bool:
        return self.kind is EnvelopeKind.SEALED

    def to_bytes(self) -> bytes:
        """Serialize to the wire format."""
        return encode(self)

    @classmethod
    def from_bytes(cls, data: Union[bytes, bytearray, memoryview]) -> Envelope:
        """Parse the wire format."""
        return decode(data)

    def describe(self) -> str:
        """Render the variant and, for sealed values, the structural fields."""
        if self.kind is EnvelopeKind.STAGING:
            return f"Staging(length={len(self.plaintext)})"
        return f"Sealed({self.payload.describe()})"

    def __repr__(self) -> str:
        """Never exposes plaintext."""
        return f"Envelope.{self.describe()}"


def encode(envelope: Envelope) -> bytes:
    """
    Encode an envelope as a canonical msgpack map.

    Fields are always written in the same order, so encoding a decoded
    value reproduces the original bytes.

    Args:
        envelope: Envelope to encode

    Returns:
        Wire-format bytes
    """
    if envelope.kind is EnvelopeKind.STAGING:
        doc: Dict[str, Any] = {
            _FIELD_KIND: EnvelopeKind.STAGING.value,
            _FIELD_PLAINTEXT: envelope.plaintext,
        }
    else:
        payload = envelope.payload
        doc = {
            _FIELD_KIND: EnvelopeKind.SEALED.value,
            _FIELD_VERSION: payload.version,
            _FIELD_KEY_ID: payload.key_id,
            _FIELD_IV: payload.iv,
            _FIELD_TAG: payload.tag,
            _FIELD_CIPHERTEXT: payload.ciphertext,
        }
    return msgpack.packb(doc, use_bin_type=True)


def decode(data: Union[bytes, bytearray, memoryview]) -> Envelope:
    """
    Decode wire-format bytes into an Envelope.

    Args:
        data: Bytes produced by encode()

    Returns:
        Envelope instance

    Raises:
        MalformedEnvelopeError: On any structural problem (not msgpack, unknown
            discriminator or fields, missing fields, wrong types or lengths,
            unsupported version)
    """
    try:
        doc = msgpack.unpackb(bytes(data), raw=False, strict_map_key=True)
    except (ValueError, TypeError, UnpackException) as e:
        raise MalformedEnvelopeError(f"Envelope is not valid msgpack: {e}")

    if not isinstance(doc, dict):
        raise MalformedEnvelopeError("Envelope must be a map")

    kind_value = doc.get(_FIELD_KIND)
    if isinstance(kind_value, bool) or not isinstance(kind_value, int):
        raise MalformedEnvelopeError("Envelope discriminator is missing or not an integer")
    try:
        kind = EnvelopeKind(kind_value)
    except ValueError:
        raise MalformedEnvelopeError(f"Unknown envelope discriminator: {kind_value}")

    expected = _STAGING_FIELDS if kind is EnvelopeKind.STAGING else _SEALED_FIELDS
    present = frozenset(doc)
    if present != expected:
        missing = sorted(expected - present)
        unknown = sorted(str(f) for f in present - expected)
        raise MalformedEnvelopeError(
            f"{kind} envelope fields mismatch (missing={missing}, unknown={unknown})"
        )

    if kind is EnvelopeKind.STAGING:
        plaintext = doc[_FIELD_PLAINTEXT]
        if not isinstance(plaintext, bytes):
            raise MalformedEnvelopeError("Staging plaintext must be bytes")
        return Envelope.staging(plaintext)

    return Envelope.sealed(
        SealedPayload(
            version=doc[_FIELD_VERSION],
            key_id=doc[_FIELD_KEY_ID],
            iv=doc[_FIELD_IV],
            tag=doc[_FIELD_TAG],
            ciphertext=doc[_FIELD_CIPHERTEXT],
        )
    )
