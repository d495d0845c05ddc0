"""
Exception classes for envelope encryption operations.

Every error carries a ``retryable`` flag so callers can decide whether to
retry; nothing in this package retries on its own.
"""

from __future__ import annotations


class EnvelopeError(Exception):
    """Base exception for all envelope encryption operations."""

    default_retryable: bool = False

    def __init__(self, message: str, retryable: bool | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.retryable = self.default_retryable if retryable is None else retryable

    def __str__(self) -> str:
        return f"{self.message} (retryable: {self.retryable})"


class KeyServiceError(EnvelopeError):
    """Key-management service call failed (generate data key, decrypt)."""

    pass


class ValidationError(EnvelopeError):
    """Malformed envelope or unexpected data key material."""

    pass


class CryptoError(EnvelopeError):
    """Cryptographic operation failed (cipher construction, seal, open)."""

    pass


class IoError(EnvelopeError):
    """Local file read, write, create or remove failed."""

    pass


class CompressionError(EnvelopeError):
    """Compression or decompression failed."""

    pass


class ObjectStorageError(EnvelopeError):
    """Object storage upload or download failed."""

    pass


class ConfigError(EnvelopeError):
    """Configuration error."""

    pass
