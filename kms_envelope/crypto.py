"""
AES-256-GCM primitives used to seal envelope payloads and wrap data keys.

This module provides:
- SecureKey: Key bytes in a wipeable buffer with a redacted repr
- RandomSource: Injectable CSPRNG (nonces, generated keys)
- EncryptedData: Nonce plus ciphertext||tag
- AesGcmCipher: Stateless AES-256-GCM seal/open
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import CryptoError

AES_256_KEY_SIZE: int = 32
NONCE_SIZE: int = 12
TAG_SIZE: int = 16


class RandomSource:
    """
    OS CSPRNG behind a small interface.

    Holds no state, so one instance may be shared freely. Subclass it to
    control nonce and key generation.
    """

    def token_bytes(self, length: int) -> bytes:
        return secrets.token_bytes(length)


class SecureKey:
    """
    Symmetric key material.

    The bytes live in a bytearray that is overwritten with zeros by
    ``wipe()`` and again when the object is collected. Copies handed out by
    ``as_bytes()`` are not covered, so keep them short-lived.
    """

    __slots__ = ("_buf",)

    def __init__(self, material: Union[bytes, bytearray]) -> None:
        if not isinstance(material, (bytes, bytearray)):
            raise CryptoError(f"key material must be bytes, got {type(material).__name__}")
        self._buf = bytearray(material)

    @classmethod
    def generate(cls, random: Optional[RandomSource] = None) -> SecureKey:
        """Draw a new AES-256 key from ``random`` (default: the OS CSPRNG)."""
        return cls((random or RandomSource()).token_bytes(AES_256_KEY_SIZE))

    def as_bytes(self) -> bytes:
        return bytes(self._buf)

    def wipe(self) -> None:
        """Overwrite the key in place."""
        self._buf[:] = bytes(len(self._buf))

    def __len__(self) -> int:
        return len(self._buf)

    def __repr__(self) -> str:
        return "SecureKey([REDACTED])"

    def __del__(self) -> None:
        if hasattr(self, "_buf"):
            self.wipe()


@dataclass(frozen=True)
class EncryptedData:
    """AES-GCM output: the 12-byte nonce and the ciphertext with its 16-byte tag."""

    nonce: bytes
    ciphertext: bytes


def _check_key(key: SecureKey) -> None:
    if len(key) != AES_256_KEY_SIZE:
        raise CryptoError(f"Invalid key size: expected {AES_256_KEY_SIZE}, got {len(key)}")


class AesGcmCipher:
    """
    AES-256-GCM seal/open.

    Each ``encrypt`` call draws exactly one nonce from the random source;
    nothing else is kept between calls, so an instance can serve concurrent
    tasks.
    """

    __slots__ = ("_random",)

    def __init__(self, random: Optional[RandomSource] = None) -> None:
        self._random = random or RandomSource()

    @property
    def random(self) -> RandomSource:
        """Get the random source used for nonces."""
        return self._random

    def encrypt(
        self,
        key: SecureKey,
        plaintext: bytes,
        aad: Optional[bytes] = None,
    ) -> EncryptedData:
        """
        Seal ``plaintext`` under ``key`` with a fresh nonce.

        Args:
            key: 32-byte key
            plaintext: Data to seal, possibly empty
            aad: Data authenticated but not encrypted

        Returns:
            EncryptedData whose ciphertext is len(plaintext) + 16 bytes

        Raises:
            CryptoError: If the key or generated nonce has the wrong length,
                or the backend refuses the input
        """
        _check_key(key)
        nonce = self._random.token_bytes(NONCE_SIZE)
        if len(nonce) != NONCE_SIZE:
            raise CryptoError(f"random source returned a {len(nonce)}-byte nonce")

        try:
            sealed = AESGCM(key.as_bytes()).encrypt(nonce, bytes(plaintext), aad)
        except (ValueError, TypeError, OverflowError) as e:
            raise CryptoError(f"Encryption error: {e}") from e
        return EncryptedData(nonce=nonce, ciphertext=sealed)

    def decrypt(
        self,
        key: SecureKey,
        encrypted: EncryptedData,
        aad: Optional[bytes] = None,
    ) -> bytes:
        """
        Verify the tag and open ``encrypted``.

        Every authentication failure (wrong key, wrong AAD, modified nonce,
        ciphertext or tag) raises the same ``CryptoError("Decryption failed")``.
        """
        _check_key(key)
        if len(encrypted.nonce) != NONCE_SIZE:
            raise CryptoError(
                f"Invalid nonce size: expected {NONCE_SIZE}, got {len(encrypted.nonce)}"
            )
        if len(encrypted.ciphertext) < TAG_SIZE:
            raise CryptoError("Decryption failed")

        try:
            return AESGCM(key.as_bytes()).decrypt(encrypted.nonce, encrypted.ciphertext, aad)
        except (InvalidTag, ValueError) as e:
            raise CryptoError("Decryption failed") from e
