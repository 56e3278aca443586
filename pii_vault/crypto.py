"""
Cryptographic primitives for sealing envelope payloads with AES-256-GCM.

This module provides:
- aad_for: Additional Authenticated Data binding a ciphertext to its key id
- AesGcmCipher: Seal/open operations producing and consuming SealedPayload
- generate_key_material: CSPRNG key generation
"""

from __future__ import annotations

import secrets
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .envelope import FORMAT_VERSION, IV_SIZE, TAG_SIZE, SealedPayload
from .errors import AuthenticationFailedError, CryptoError

# Cryptographic constants
AES_256_KEY_SIZE: int = 32  # 256 bits
NONCE_SIZE: int = IV_SIZE  # 96 bits (standard for AES-GCM)

AAD_SCHEME: str = "col"
AAD_TYPE: str = "piitext"

BytesLike = Union[bytes, bytearray, memoryview]


def aad_for(key_id: BytesLike) -> bytes:
    """
    Build the AAD for a key id: ``col:piitext:id:<hex(key_id)>``.

    Args:
        key_id: Logical key identifier

    Returns:
        ASCII-encoded AAD bytes
    """
    return f"{AAD_SCHEME}:{AAD_TYPE}:id:{bytes(key_id).hex()}".encode("ascii")


def _check_key(key_material: BytesLike) -> bytes:
    if not isinstance(key_material, (bytes, bytearray, memoryview)):
        raise CryptoError("Key material must be bytes")
    key = bytes(key_material)
    if len(key) != AES_256_KEY_SIZE:
        raise CryptoError(
            f"Invalid key size: expected {AES_256_KEY_SIZE}, got {len(key)}"
        )
    return key


class AesGcmCipher:
    """
    AES-256-GCM authenticated encryption of envelope payloads.

    Every seal draws a fresh nonce from the OS CSPRNG; there is no shared
    counter between concurrent callers.
    """

    @staticmethod
    def seal(
        plaintext: BytesLike,
        key_material: BytesLike,
        key_id: BytesLike,
    ) -> SealedPayload:
        """
        Encrypt plaintext, binding it to key_id through the AAD.

        Args:
            plaintext: Data to encrypt
            key_material: 32-byte key for key_id
            key_id: Logical key identifier stored in the payload

        Returns:
            SealedPayload with the current format version

        Raises:
            CryptoError: If the key size is invalid
        """
        key = _check_key(key_material)
        key_id = bytes(key_id)
        nonce = secrets.token_bytes(NONCE_SIZE)

        sealed = AESGCM(key).encrypt(nonce, bytes(plaintext), aad_for(key_id))

        # AESGCM appends the tag to the ciphertext
        return SealedPayload(
            version=FORMAT_VERSION,
            key_id=key_id,
            iv=nonce,
            tag=sealed[-TAG_SIZE:],
            ciphertext=sealed[:-TAG_SIZE],
        )

    @staticmethod
    def open(payload: SealedPayload, key_material: BytesLike) -> bytes:
        """
        Verify and decrypt a sealed payload.

        Args:
            payload: SealedPayload to open
            key_material: 32-byte key fetched for payload.key_id

        Returns:
            Decrypted plaintext bytes

        Raises:
            CryptoError: If the key size is invalid
            AuthenticationFailedError: If the tag does not verify
        """
        key = _check_key(key_material)

        try:
            return AESGCM(key).decrypt(
                payload.iv,
                payload.ciphertext + payload.tag,
                aad_for(payload.key_id),
            )
        except InvalidTag:
            # Generic error to prevent oracle attacks
            raise AuthenticationFailedError("Decryption failed") from None


def generate_key_material() -> bytes:
    """Generate a cryptographically secure random 32-byte key."""
    return secrets.token_bytes(AES_256_KEY_SIZE)

