"""
Key-management service clients.

This module provides:
- DataKey: Generated data encryption key (plaintext + wrapped form)
- KeyService: Abstract async interface the envelope codec consumes
- KmsManager: AWS KMS implementation (boto3)
- InMemoryKeyService: Process-local implementation for testing and demos

Architecture:
- Master key: lives in the key service, never leaves it
- DEK: generated per seal call; the plaintext form is used once and dropped,
  the wrapped form travels inside the envelope
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from uuid import uuid4

from botocore.exceptions import BotoCoreError, ClientError

from .aws import error_code, is_error_retryable, new_client
from .config import Settings
from .crypto import NONCE_SIZE, AesGcmCipher, EncryptedData, RandomSource, SecureKey
from .errors import CryptoError, KeyServiceError
from .utils import human_bytes, read_file, write_file

logger = logging.getLogger(__name__)

DATA_KEY_SPEC_AES_256 = "AES_256"
ENCRYPTION_ALGORITHM_SYMMETRIC_DEFAULT = "SYMMETRIC_DEFAULT"

# KMS service error codes that indicate a transient condition.
RETRYABLE_KMS_ERROR_CODES = frozenset(
    {
        "DependencyTimeoutException",
        "KeyUnavailableException",
        "KMSInternalException",
    }
)


@dataclass(frozen=True)
class DataKey:
    """
    Data encryption key in both forms.

    ``plaintext`` must only be held in memory for the duration of a single
    operation; ``ciphertext`` is safe to store next to the data.
    """

    plaintext: SecureKey = field(repr=False)
    ciphertext: bytes


@dataclass(frozen=True)
class Key:
    """KMS customer master key identifiers."""

    id: str
    arn: str


class KeyService(ABC):
    """
    Abstract key-management service.

    All methods are async to support both in-process and networked backends.
    """

    @abstractmethod
    async def generate_data_key(
        self, key_id: str, key_spec: str = DATA_KEY_SPEC_AES_256
    ) -> DataKey:
        """Generate a fresh data key wrapped under ``key_id``."""
        ...

    @abstractmethod
    async def decrypt(
        self,
        key_id: str,
        ciphertext: bytes,
        algorithm: str = ENCRYPTION_ALGORITHM_SYMMETRIC_DEFAULT,
    ) -> bytes:
        """Unwrap a ciphertext produced under ``key_id``."""
        ...

    @abstractmethod
    def classify_retryable(self, error: BaseException) -> bool:
        """Return True if ``error`` raised by this backend is transient."""
        ...


# =============================================================================
# AWS KMS
# =============================================================================


class KmsManager(KeyService):
    """
    AWS KMS key service.

    Blocking boto3 calls run in a worker thread so the event loop keeps
    scheduling other tasks while a request is in flight.
    """

    def __init__(self, client: Any, region: Optional[str] = None) -> None:
        """
        Initialize with an existing boto3 KMS client.

        Args:
            client: boto3 KMS client
            region: Region name, used for logging only
        """
        self._client = client
        self._region = region or getattr(
            getattr(client, "meta", None), "region_name", None
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> KmsManager:
        """Create a manager with a client built from settings."""
        settings = settings or Settings()
        return cls(new_client("kms", settings), region=settings.region)

    @property
    def client(self) -> Any:
        """Get the underlying boto3 client."""
        return self._client

    @property
    def region(self) -> Optional[str]:
        """Get the region name."""
        return self._region

    def classify_retryable(self, error: BaseException) -> bool:
        if is_error_retryable(error):
            return True
        return error_code(error) in RETRYABLE_KMS_ERROR_CODES

    def _api_error(self, op: str, error: BaseException) -> KeyServiceError:
        retryable = self.classify_retryable(error)
        logger.debug("failed %s; error %s, retryable %s", op, error, retryable)
        return KeyServiceError(f"failed {op} {error}", retryable=retryable)

    async def generate_data_key(
        self, key_id: str, key_spec: str = DATA_KEY_SPEC_AES_256
    ) -> DataKey:
        """
        Generate a data-encryption key.

        The default key spec AES_256 yields a 256-bit (32-byte) symmetric key.
        """
        logger.info(
            "generating KMS data key for '%s' with key spec %s", key_id, key_spec
        )
        try:
            resp = await asyncio.to_thread(
                self._client.generate_data_key, KeyId=key_id, KeySpec=key_spec
            )
        except (BotoCoreError, ClientError) as e:
            raise self._api_error("generate_data_key", e) from e

        plaintext = resp.get("Plaintext")
        ciphertext = resp.get("CiphertextBlob")
        if plaintext is None or ciphertext is None:
            raise KeyServiceError(
                "GenerateDataKey response missing Plaintext or CiphertextBlob",
                retryable=False,
            )
        return DataKey(plaintext=SecureKey(plaintext), ciphertext=bytes(ciphertext))

    async def encrypt(
        self,
        key_id: str,
        plaintext: bytes,
        algorithm: str = ENCRYPTION_ALGORITHM_SYMMETRIC_DEFAULT,
    ) -> bytes:
        """
        Encrypt data directly with KMS.

        KMS accepts at most 4096 bytes for SYMMETRIC_DEFAULT; use an
        EnvelopeManager for anything larger.
        """
        logger.info("encrypting data (plaintext size %s)", human_bytes(len(plaintext)))
        try:
            resp = await asyncio.to_thread(
                self._client.encrypt,
                KeyId=key_id,
                Plaintext=plaintext,
                EncryptionAlgorithm=algorithm,
            )
        except (BotoCoreError, ClientError) as e:
            raise self._api_error("encrypt", e) from e

        ciphertext = resp.get("CiphertextBlob")
        if ciphertext is None:
            raise KeyServiceError("EncryptOutput.CiphertextBlob not found", retryable=False)
        logger.info(
            "successfully encrypted data (ciphertext size %s)", human_bytes(len(ciphertext))
        )
        return bytes(ciphertext)

    async def decrypt(
        self,
        key_id: str,
        ciphertext: bytes,
        algorithm: str = ENCRYPTION_ALGORITHM_SYMMETRIC_DEFAULT,
    ) -> bytes:
        """Decrypt data (at most 6144 bytes of ciphertext) with KMS."""
        logger.info("decrypting data (ciphertext size %s)", human_bytes(len(ciphertext)))
        try:
            resp = await asyncio.to_thread(
                self._client.decrypt,
                KeyId=key_id,
                CiphertextBlob=ciphertext,
                EncryptionAlgorithm=algorithm,
            )
        except (BotoCoreError, ClientError) as e:
            raise self._api_error("decrypt", e) from e

        plaintext = resp.get("Plaintext")
        if plaintext is None:
            raise KeyServiceError("DecryptOutput.Plaintext not found", retryable=False)
        logger.info(
            "successfully decrypted data (plaintext size %s)", human_bytes(len(plaintext))
        )
        return bytes(plaintext)

    async def encrypt_file(
        self,
        key_id: str,
        src_file: str,
        dst_file: str,
        algorithm: str = ENCRYPTION_ALGORITHM_SYMMETRIC_DEFAULT,
    ) -> None:
        """Encrypt a small file directly with KMS and write the ciphertext."""
        logger.info("encrypting file %s to %s", src_file, dst_file)
        data = await read_file(src_file)
        ciphertext = await self.encrypt(key_id, data, algorithm)
        await write_file(dst_file, ciphertext)

    async def decrypt_file(
        self,
        key_id: str,
        src_file: str,
        dst_file: str,
        algorithm: str = ENCRYPTION_ALGORITHM_SYMMETRIC_DEFAULT,
    ) -> None:
        """Decrypt a file produced by encrypt_file."""
        logger.info("decrypting file %s to %s", src_file, dst_file)
        data = await read_file(src_file)
        plaintext = await self.decrypt(key_id, data, algorithm)
        await write_file(dst_file, plaintext)

    async def create_symmetric_default_key(self, name: str) -> Key:
        """Create a SYMMETRIC_DEFAULT ENCRYPT_DECRYPT key tagged with Name."""
        logger.info("creating KMS CMK '%s'", name)
        try:
            resp = await asyncio.to_thread(
                self._client.create_key,
                KeySpec="SYMMETRIC_DEFAULT",
                KeyUsage="ENCRYPT_DECRYPT",
                Tags=[{"TagKey": "Name", "TagValue": name}],
            )
        except (BotoCoreError, ClientError) as e:
            raise self._api_error("create_key", e) from e

        meta = resp.get("KeyMetadata")
        if not meta:
            raise KeyServiceError("unexpected empty key metadata", retryable=False)
        key = Key(id=meta.get("KeyId", ""), arn=meta.get("Arn", ""))
        logger.info("created KMS CMK key id '%s' and arn '%s'", key.id, key.arn)
        return key

    async def schedule_to_delete(self, key_id: str, pending_window_in_days: int = 7) -> None:
        """
        Schedule a key for deletion.

        Missing keys and keys already pending deletion are ignored.
        """
        logger.info("deleting KMS CMK %s in %d days", key_id, pending_window_in_days)
        try:
            await asyncio.to_thread(
                self._client.schedule_key_deletion,
                KeyId=key_id,
                PendingWindowInDays=pending_window_in_days,
            )
        except ClientError as e:
            code = error_code(e)
            if code == "NotFoundException":
                logger.warning("KMS CMK '%s' does not exist", key_id)
                return
            if code == "KMSInvalidStateException" and "pending deletion" in str(e):
                logger.warning("KMS CMK '%s' already scheduled for deletion", key_id)
                return
            raise self._api_error("schedule_key_deletion", e) from e
        except BotoCoreError as e:
            raise self._api_error("schedule_key_deletion", e) from e
        logger.info("scheduled to delete KMS CMK '%s'", key_id)


# =============================================================================
# In-memory key service
# =============================================================================


class InMemoryKeyService(KeyService):
    """
    Process-local key service for testing and demos.

    Master keys are held in memory; data keys are wrapped with AES-256-GCM
    under the master key, with the key id bound as AAD. Wrapped form:
    nonce(12) || ciphertext(32) || tag(16).
    """

    def __init__(self, random: Optional[RandomSource] = None) -> None:
        self._random = random or RandomSource()
        self._cipher = AesGcmCipher(self._random)
        self._master_keys: Dict[str, SecureKey] = {}
        self._lock = asyncio.Lock()

    async def create_key(self, key_id: Optional[str] = None) -> str:
        """Create a master key and return its id."""
        key_id = key_id or str(uuid4())
        async with self._lock:
            self._master_keys[key_id] = SecureKey.generate(self._random)
        return key_id

    async def delete_key(self, key_id: str) -> None:
        """Forget a master key; data keys wrapped under it become unusable."""
        async with self._lock:
            self._master_keys.pop(key_id, None)

    async def _get_master(self, key_id: str) -> SecureKey:
        async with self._lock:
            master = self._master_keys.get(key_id)
        if master is None:
            raise KeyServiceError(f"key '{key_id}' not found", retryable=False)
        return master

    def classify_retryable(self, error: BaseException) -> bool:
        return False

    async def generate_data_key(
        self, key_id: str, key_spec: str = DATA_KEY_SPEC_AES_256
    ) -> DataKey:
        if key_spec != DATA_KEY_SPEC_AES_256:
            raise KeyServiceError(f"unsupported key spec {key_spec}", retryable=False)
        master = await self._get_master(key_id)
        dek = SecureKey.generate(self._random)
        wrapped = self._cipher.encrypt(master, dek.as_bytes(), key_id.encode())
        return DataKey(plaintext=dek, ciphertext=wrapped.nonce + wrapped.ciphertext)

    async def decrypt(
        self,
        key_id: str,
        ciphertext: bytes,
        algorithm: str = ENCRYPTION_ALGORITHM_SYMMETRIC_DEFAULT,
    ) -> bytes:
        if algorithm != ENCRYPTION_ALGORITHM_SYMMETRIC_DEFAULT:
            raise KeyServiceError(f"unsupported algorithm {algorithm}", retryable=False)
        master = await self._get_master(key_id)
        wrapped = EncryptedData(nonce=ciphertext[:NONCE_SIZE], ciphertext=ciphertext[NONCE_SIZE:])
        try:
            return self._cipher.decrypt(master, wrapped, key_id.encode())
        except CryptoError as e:
            raise KeyServiceError("invalid ciphertext", retryable=False) from e
