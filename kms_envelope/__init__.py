"""
KMS Envelope Encryption Library

Envelope encryption with AWS KMS data keys and AES-256-GCM, plus zstd
compression and S3 upload/download pipelines for files.

Quick Start
-----------
```python
import asyncio
from kms_envelope import EnvelopeManager, KmsManager, load_settings

async def main():
    settings = load_settings()
    kms = KmsManager.from_settings(settings)
    envelope = EnvelopeManager(kms, settings.require("kms_key_id"), "my-app")

    # Encrypt data (one fresh data key per call)
    sealed = await envelope.seal_aes_256(b"Sensitive data")

    # Decrypt data (the wrapped data key travels inside the envelope)
    plaintext = await envelope.unseal_aes_256(sealed)

asyncio.run(main())
```

For tests and demos, ``InMemoryKeyService`` and ``InMemoryObjectStore``
stand in for KMS and S3.

Key Features
------------
- **AES-256-GCM**: Authenticated encryption with a caller-chosen AAD tag
- **Per-Call Data Keys**: Every seal generates a fresh KMS data key
- **Self-Contained Envelopes**: Nonce and wrapped key travel with the data
- **File Pipelines**: zstd compress + seal, S3 upload/download
- **Retry Classification**: Every error carries a ``retryable`` flag
- **Memory Security**: Best-effort key zeroization on deletion
"""

__version__ = "0.1.0"

# =============================================================================
# Crypto Exports
# =============================================================================

from .crypto import (
    AES_256_KEY_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    AesGcmCipher,
    EncryptedData,
    RandomSource,
    SecureKey,
)

# =============================================================================
# Error Exports
# =============================================================================

from .errors import (
    CompressionError,
    ConfigError,
    CryptoError,
    EnvelopeError,
    IoError,
    KeyServiceError,
    ObjectStorageError,
    ValidationError,
)

# =============================================================================
# Key Service Exports
# =============================================================================

from .kms import (
    DATA_KEY_SPEC_AES_256,
    ENCRYPTION_ALGORITHM_SYMMETRIC_DEFAULT,
    DataKey,
    InMemoryKeyService,
    Key,
    KeyService,
    KmsManager,
)

# =============================================================================
# Envelope Exports (Primary API)
# =============================================================================

from .envelope import (
    EnvelopeManager,
    SealedEnvelope,
    spawn_compress_seal,
    spawn_seal_aes_256_file,
    spawn_unseal_aes_256_file,
    spawn_unseal_decompress,
)

# =============================================================================
# Compression / Object Storage Exports
# =============================================================================

from .compress import Algorithm, ZstdCompressor
from .s3 import (
    InMemoryObjectStore,
    ObjectStore,
    S3Manager,
    spawn_compress_seal_put_object,
    spawn_get_object_unseal_decompress,
)

# =============================================================================
# Configuration Exports
# =============================================================================

from .config import Settings, load_settings

# =============================================================================
# Public API
# =============================================================================

__all__ = [
    # Version
    "__version__",
    # Crypto
    "AES_256_KEY_SIZE",
    "NONCE_SIZE",
    "TAG_SIZE",
    "AesGcmCipher",
    "EncryptedData",
    "RandomSource",
    "SecureKey",
    # Errors
    "EnvelopeError",
    "KeyServiceError",
    "ValidationError",
    "CryptoError",
    "IoError",
    "CompressionError",
    "ObjectStorageError",
    "ConfigError",
    # Key services
    "DATA_KEY_SPEC_AES_256",
    "ENCRYPTION_ALGORITHM_SYMMETRIC_DEFAULT",
    "DataKey",
    "Key",
    "KeyService",
    "KmsManager",
    "InMemoryKeyService",
    # Envelope (Primary API)
    "EnvelopeManager",
    "SealedEnvelope",
    "spawn_seal_aes_256_file",
    "spawn_unseal_aes_256_file",
    "spawn_compress_seal",
    "spawn_unseal_decompress",
    # Compression / object storage
    "Algorithm",
    "ZstdCompressor",
    "ObjectStore",
    "S3Manager",
    "InMemoryObjectStore",
    "spawn_compress_seal_put_object",
    "spawn_get_object_unseal_decompress",
    # Configuration
    "Settings",
    "load_settings",
]
