"""
Envelope encryption with KMS data keys and AES-256-GCM.

This module provides:
- SealedEnvelope: The binary frame carrying nonce, wrapped DEK and payload
- EnvelopeManager: Seal/unseal bytes and files, compress+seal pipelines

KMS Encrypt only accepts 4 KiB, so payloads are encrypted locally with a
fresh data key (DEK) per seal call; only the DEK goes through KMS. The
wrapped DEK and the nonce travel with the ciphertext:

    [ nonce len u16 LE ][ DEK.ciphertext len u16 LE ][ nonce ][ DEK.ciphertext ][ data ciphertext || tag ]

Every envelope is self-contained, so envelopes sealed under the same master
key can be unsealed independently and in any order.
"""

from __future__ import annotations

import asyncio
import logging
import os
import struct
from dataclasses import dataclass
from typing import Optional, Union

from .compress import Algorithm, ZstdCompressor
from .crypto import AES_256_KEY_SIZE, NONCE_SIZE, TAG_SIZE, AesGcmCipher, EncryptedData, SecureKey
from .errors import KeyServiceError, ValidationError
from .kms import DATA_KEY_SPEC_AES_256, ENCRYPTION_ALGORITHM_SYMMETRIC_DEFAULT, DataKey, KeyService
from .utils import human_bytes, read_file, scoped_tmp_path, write_file

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

# nonce length, DEK.ciphertext length
_HEADER = struct.Struct("<HH")
HEADER_SIZE = _HEADER.size
MAX_WRAPPED_DEK_SIZE = 0xFFFF


@dataclass(frozen=True)
class SealedEnvelope:
    """
    Parsed envelope.

    ``payload`` is the AES-256-GCM ciphertext with the 16-byte tag appended.
    Field lengths are checked on construction, before any KMS or cipher
    call can see the frame.

    Raises:
        ValidationError: If the nonce is not 12 bytes, the wrapped DEK does
            not fit its u16 length field or the payload is shorter than a tag
    """

    nonce: bytes
    wrapped_dek: bytes
    payload: bytes

    def __post_init__(self) -> None:
        if len(self.nonce) != NONCE_SIZE:
            raise ValidationError(
                f"nonce must be {NONCE_SIZE}-byte, got {len(self.nonce)}-byte"
            )
        if len(self.wrapped_dek) > MAX_WRAPPED_DEK_SIZE:
            raise ValidationError(
                f"DEK.ciphertext too large for envelope ({len(self.wrapped_dek)} bytes)"
            )
        if len(self.payload) < TAG_SIZE:
            raise ValidationError(
                f"payload must hold at least the {TAG_SIZE}-byte tag, got {len(self.payload)} bytes"
            )

    @property
    def size(self) -> int:
        """Length of the packed envelope in bytes."""
        return HEADER_SIZE + len(self.nonce) + len(self.wrapped_dek) + len(self.payload)

    def to_bytes(self) -> bytes:
        """Pack into the wire format."""
        return b"".join(
            (
                _HEADER.pack(len(self.nonce), len(self.wrapped_dek)),
                self.nonce,
                self.wrapped_dek,
                self.payload,
            )
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> SealedEnvelope:
        """
        Parse the wire format.

        All length checks run here, before any KMS or cipher call.

        Raises:
            ValidationError: If the buffer is not a well-formed envelope
        """
        data = bytes(data)
        if len(data) < HEADER_SIZE:
            raise ValidationError(
                f"envelope too small: expected at least {HEADER_SIZE} bytes, got {len(data)}"
            )

        nonce_len, dek_len = _HEADER.unpack_from(data, 0)
        if nonce_len != NONCE_SIZE:
            raise ValidationError(f"nonce_len {nonce_len} != NONCE_LEN {NONCE_SIZE}")
        if dek_len > len(data):
            raise ValidationError(
                f"invalid DEK ciphertext len {dek_len} > cipher.len {len(data)}"
            )

        nonce_end = HEADER_SIZE + nonce_len
        dek_end = nonce_end + dek_len
        if dek_end + TAG_SIZE > len(data):
            raise ValidationError(
                f"truncated envelope: need at least {dek_end + TAG_SIZE} bytes, got {len(data)}"
            )

        return cls(
            nonce=data[HEADER_SIZE:nonce_end],
            wrapped_dek=data[nonce_end:dek_end],
            payload=data[dek_end:],
        )


class EnvelopeManager:
    """
    Envelope encryption manager.

    Binds a key service, a master key id and an AAD tag. The AAD tag is
    authenticated with every payload, so an envelope only opens under a
    manager configured with the same tag. Holds no mutable state; one
    instance can serve any number of concurrent tasks.
    """

    __slots__ = ("_kms_manager", "_kms_key_id", "_aad_tag", "_cipher", "_compressor")

    def __init__(
        self,
        kms_manager: KeyService,
        kms_key_id: str,
        aad_tag: str,
        cipher: Optional[AesGcmCipher] = None,
        compressor: Optional[ZstdCompressor] = None,
    ) -> None:
        """
        Initialize EnvelopeManager.

        Args:
            kms_manager: Key service used to generate and unwrap DEKs
            kms_key_id: Master key id, ARN or alias
            aad_tag: Additional authenticated data bound to every payload
            cipher: AES-256-GCM cipher (default: one with a fresh RandomSource)
            compressor: Compressor for the compress+seal pipelines
        """
        if not kms_key_id:
            raise ValidationError("kms_key_id must not be empty")
        self._kms_manager = kms_manager
        self._kms_key_id = kms_key_id
        self._aad_tag = aad_tag
        self._cipher = cipher or AesGcmCipher()
        self._compressor = compressor or ZstdCompressor()

    @property
    def kms_manager(self) -> KeyService:
        """Get the key service."""
        return self._kms_manager

    @property
    def kms_key_id(self) -> str:
        """Get the master key id."""
        return self._kms_key_id

    @property
    def aad_tag(self) -> str:
        """Get the AAD tag."""
        return self._aad_tag

    @property
    def compressor(self) -> ZstdCompressor:
        """Get the compressor used by the pipelines."""
        return self._compressor

    def __repr__(self) -> str:
        return f"EnvelopeManager(kms_key_id={self._kms_key_id!r}, aad_tag={self._aad_tag!r})"

    # =========================================================================
    # Bytes
    # =========================================================================

    async def seal(self, plaintext: bytes) -> SealedEnvelope:
        """
        Envelope-encrypt ``plaintext``.

        Crypto flow:
        1. Generate a fresh AES_256 DEK under kms_key_id
        2. Check DEK.plaintext is 32 bytes
        3. Encrypt with AES-256-GCM (fresh nonce, AAD = aad_tag)
        4. Drop DEK.plaintext, keep DEK.ciphertext in the envelope

        Raises:
            KeyServiceError: If the DEK could not be generated
            ValidationError: If the DEK has the wrong length
            CryptoError: If encryption fails
        """
        logger.info(
            "AES_256 envelope-encrypting data (size before encryption %s)",
            human_bytes(len(plaintext)),
        )

        dek = await self._generate_data_key()
        try:
            if len(dek.plaintext) != AES_256_KEY_SIZE:
                raise ValidationError(
                    f"DEK.plaintext for AES_256 must be {AES_256_KEY_SIZE}-byte, "
                    f"got {len(dek.plaintext)}-byte"
                )

            encrypted = self._cipher.encrypt(dek.plaintext, plaintext, self._aad())
            sealed = SealedEnvelope(
                nonce=encrypted.nonce,
                wrapped_dek=dek.ciphertext,
                payload=encrypted.ciphertext,
            )
        finally:
            dek.plaintext.wipe()

        logger.info(
            "AES_256 envelope-encrypted data (encrypted size %s)",
            human_bytes(sealed.size),
        )
        return sealed

    async def seal_aes_256(self, data: bytes) -> bytes:
        """Envelope-encrypt ``data`` and return the packed envelope."""
        sealed = await self.seal(data)
        return sealed.to_bytes()

    async def unseal(self, envelope: Union[SealedEnvelope, bytes]) -> bytes:
        """
        Envelope-decrypt a sealed envelope.

        Crypto flow:
        1. Parse and validate the frame (no network call on failure)
        2. Decrypt DEK.ciphertext with KMS (SYMMETRIC_DEFAULT, kms_key_id)
        3. Verify the tag and decrypt the payload (same nonce, AAD = aad_tag)

        Raises:
            ValidationError: If the envelope is malformed
            KeyServiceError: If KMS cannot unwrap the DEK
            CryptoError: If authentication fails (tampering, wrong key or AAD)
        """
        if not isinstance(envelope, SealedEnvelope):
            logger.info(
                "AES_256 envelope-decrypting data (size before decryption %s)",
                human_bytes(len(envelope)),
            )
            envelope = SealedEnvelope.from_bytes(envelope)

        dek_plaintext = await self._decrypt_data_key(envelope.wrapped_dek)
        try:
            decrypted = self._cipher.decrypt(
                dek_plaintext,
                EncryptedData(nonce=envelope.nonce, ciphertext=envelope.payload),
                self._aad(),
            )
        finally:
            dek_plaintext.wipe()

        logger.info(
            "AES_256 envelope-decrypted data (decrypted size %s)",
            human_bytes(len(decrypted)),
        )
        return decrypted

    async def unseal_aes_256(self, data: bytes) -> bytes:
        """Envelope-decrypt a packed envelope."""
        return await self.unseal(bytes(data))

    # =========================================================================
    # Files
    # =========================================================================

    async def seal_aes_256_file(self, src_file: PathLike, dst_file: PathLike) -> None:
        """
        Envelope-encrypt a file and save the envelope to another file.

        The whole source is read into memory.

        Raises:
            IoError: If the source cannot be read or the destination written
        """
        src_file, dst_file = os.fspath(src_file), os.fspath(dst_file)
        logger.info("envelope-encrypting file %s to %s", src_file, dst_file)
        data = await read_file(src_file)
        ciphertext = await self.seal_aes_256(data)
        await write_file(dst_file, ciphertext)

    async def unseal_aes_256_file(self, src_file: PathLike, dst_file: PathLike) -> None:
        """Envelope-decrypt a file and save the plaintext to another file."""
        src_file, dst_file = os.fspath(src_file), os.fspath(dst_file)
        logger.info("envelope-decrypting file %s to %s", src_file, dst_file)
        data = await read_file(src_file)
        plaintext = await self.unseal_aes_256(data)
        await write_file(dst_file, plaintext)

    async def compress_seal(self, src_file: PathLike, dst_file: PathLike) -> None:
        """
        Compress ``src_file`` with zstd and envelope-encrypt it to ``dst_file``.

        The intermediate compressed file is removed on every exit path.
        """
        src_file, dst_file = os.fspath(src_file), os.fspath(dst_file)
        async with scoped_tmp_path() as compressed_path:
            logger.info("compress-seal: compressing the file '%s'", src_file)
            await self._compressor.pack(src_file, compressed_path, Algorithm.ZSTD)

            logger.info("compress-seal: sealing the compressed file '%s'", compressed_path)
            await self.seal_aes_256_file(compressed_path, dst_file)

    async def unseal_decompress(self, src_file: PathLike, dst_file: PathLike) -> None:
        """Reverse of compress_seal."""
        src_file, dst_file = os.fspath(src_file), os.fspath(dst_file)
        async with scoped_tmp_path() as unsealed_path:
            logger.info("unseal-decompress: unsealing the encrypted file '%s'", src_file)
            await self.unseal_aes_256_file(src_file, unsealed_path)

            logger.info("unseal-decompress: decompressing the file '%s'", unsealed_path)
            await self._compressor.unpack(unsealed_path, dst_file, Algorithm.ZSTD)

    # =========================================================================
    # Internal
    # =========================================================================

    def _aad(self) -> bytes:
        return self._aad_tag.encode("utf-8")

    async def _generate_data_key(self) -> DataKey:
        try:
            return await self._kms_manager.generate_data_key(
                self._kms_key_id, DATA_KEY_SPEC_AES_256
            )
        except KeyServiceError:
            raise
        except Exception as e:
            raise KeyServiceError(
                f"failed generate_data_key {e}",
                retryable=self._kms_manager.classify_retryable(e),
            ) from e

    async def _decrypt_data_key(self, wrapped_dek: bytes) -> SecureKey:
        try:
            plaintext = await self._kms_manager.decrypt(
                self._kms_key_id, wrapped_dek, ENCRYPTION_ALGORITHM_SYMMETRIC_DEFAULT
            )
        except KeyServiceError:
            raise
        except Exception as e:
            raise KeyServiceError(
                f"failed decrypt {e}",
                retryable=self._kms_manager.classify_retryable(e),
            ) from e
        return SecureKey(plaintext)


# =============================================================================
# Task helpers
# =============================================================================


async def spawn_seal_aes_256_file(
    envelope: EnvelopeManager, src_file: PathLike, dst_file: PathLike
) -> None:
    """Run seal_aes_256_file as its own task and wait for it."""
    await asyncio.create_task(envelope.seal_aes_256_file(src_file, dst_file))


async def spawn_unseal_aes_256_file(
    envelope: EnvelopeManager, src_file: PathLike, dst_file: PathLike
) -> None:
    """Run unseal_aes_256_file as its own task and wait for it."""
    await asyncio.create_task(envelope.unseal_aes_256_file(src_file, dst_file))


async def spawn_compress_seal(
    envelope: EnvelopeManager, src_file: PathLike, dst_file: PathLike
) -> None:
    """Run compress_seal as its own task and wait for it."""
    await asyncio.create_task(envelope.compress_seal(src_file, dst_file))


async def spawn_unseal_decompress(
    envelope: EnvelopeManager, src_file: PathLike, dst_file: PathLike
) -> None:
    """Run unseal_decompress as its own task and wait for it."""
    await asyncio.create_task(envelope.unseal_decompress(src_file, dst_file))
