"""
Object storage for sealed payloads.

This module provides:
- ObjectStore: Abstract async put/get of local files, plus the
  compress -> seal -> upload and download -> unseal -> decompress pipelines
- S3Manager: Amazon S3 implementation (boto3)
- InMemoryObjectStore: Dict-backed implementation for testing
"""

from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from .aws import error_code, is_error_retryable, new_client
from .config import Settings
from .envelope import EnvelopeManager, PathLike
from .errors import IoError, ObjectStorageError
from .utils import human_bytes, read_file, scoped_tmp_path, write_file

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024
DELETE_BATCH_SIZE = 1000

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


class ObjectStore(ABC):
    """
    Abstract object storage.

    Implementations only provide put/get; the encryption pipelines are
    shared and work with any backend.
    """

    @abstractmethod
    async def put_object(self, file_path: PathLike, s3_bucket: str, s3_key: str) -> None:
        """Upload a local file."""
        ...

    @abstractmethod
    async def get_object(self, s3_bucket: str, s3_key: str, file_path: PathLike) -> None:
        """Download an object into a local file that must not exist yet."""
        ...

    async def compress_seal_put_object(
        self,
        envelope_manager: EnvelopeManager,
        source_file_path: PathLike,
        s3_bucket: str,
        s3_key: str,
    ) -> None:
        """
        Compress the file, envelope-encrypt it, and upload it.

        The local intermediate file is removed; the uploaded object is kept
        even if that removal fails.
        """
        source_file_path = os.fspath(source_file_path)
        async with scoped_tmp_path() as tmp_compressed_sealed_path:
            logger.info("compress-seal-put-object: compress and seal '%s'", source_file_path)
            await envelope_manager.compress_seal(source_file_path, tmp_compressed_sealed_path)

            logger.info(
                "compress-seal-put-object: upload object '%s'", tmp_compressed_sealed_path
            )
            await self.put_object(tmp_compressed_sealed_path, s3_bucket, s3_key)

    async def get_object_unseal_decompress(
        self,
        envelope_manager: EnvelopeManager,
        s3_bucket: str,
        s3_key: str,
        download_file_path: PathLike,
    ) -> None:
        """Reverse of compress_seal_put_object."""
        download_file_path = os.fspath(download_file_path)
        async with scoped_tmp_path() as tmp_downloaded_path:
            logger.info(
                "get-object-unseal-decompress: downloading object %s/%s", s3_bucket, s3_key
            )
            await self.get_object(s3_bucket, s3_key, tmp_downloaded_path)

            logger.info(
                "get-object-unseal-decompress: unseal and decompress '%s'", tmp_downloaded_path
            )
            await envelope_manager.unseal_decompress(tmp_downloaded_path, download_file_path)


def _check_upload_source(file_path: str) -> int:
    if not os.path.exists(file_path):
        raise IoError(f"file path {file_path} does not exist")
    return os.path.getsize(file_path)


def _check_download_target(file_path: str) -> None:
    if os.path.exists(file_path):
        raise IoError(f"file path {file_path} already exists")


# =============================================================================
# Amazon S3
# =============================================================================


class S3Manager(ObjectStore):
    """
    Amazon S3 object store.

    Uploads stream from the local file and downloads stream to it, in a
    worker thread, so payload size is bounded by disk rather than memory.
    """

    def __init__(self, client: Any, region: Optional[str] = None) -> None:
        """
        Initialize with an existing boto3 S3 client.

        Args:
            client: boto3 S3 client
            region: Region name, used for bucket creation and logging
        """
        self._client = client
        self._region = region or getattr(
            getattr(client, "meta", None), "region_name", None
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> S3Manager:
        """Create a manager with a client built from settings."""
        settings = settings or Settings()
        return cls(new_client("s3", settings), region=settings.region)

    @property
    def client(self) -> Any:
        """Get the underlying boto3 client."""
        return self._client

    @property
    def region(self) -> Optional[str]:
        """Get the region name."""
        return self._region

    @staticmethod
    def _api_error(op: str, error: BaseException) -> ObjectStorageError:
        return ObjectStorageError(f"failed {op} {error}", retryable=is_error_retryable(error))

    async def put_object(self, file_path: PathLike, s3_bucket: str, s3_key: str) -> None:
        file_path = os.fspath(file_path)
        size = _check_upload_source(file_path)
        logger.info(
            "starting put_object '%s' (size %s) to 's3://%s/%s'",
            file_path,
            human_bytes(size),
            s3_bucket,
            s3_key,
        )
        try:
            await asyncio.to_thread(self._put_object_sync, file_path, s3_bucket, s3_key)
        except (BotoCoreError, ClientError) as e:
            raise self._api_error("put_object", e) from e
        except OSError as e:
            raise IoError(f"failed read {file_path}: {e}") from e

    async def get_object(self, s3_bucket: str, s3_key: str, file_path: PathLike) -> None:
        file_path = os.fspath(file_path)
        _check_download_target(file_path)
        logger.info("starting get_object 's3://%s/%s' to '%s'", s3_bucket, s3_key, file_path)
        try:
            size = await asyncio.to_thread(self._get_object_sync, s3_bucket, s3_key, file_path)
        except (BotoCoreError, ClientError) as e:
            raise self._api_error("get_object", e) from e
        except OSError as e:
            raise IoError(f"failed write {file_path}: {e}") from e
        logger.info("downloaded 's3://%s/%s' (size %s)", s3_bucket, s3_key, human_bytes(size))

    async def exists(self, s3_bucket: str, s3_key: str) -> bool:
        """Return True if the object exists."""
        try:
            await asyncio.to_thread(self._client.head_object, Bucket=s3_bucket, Key=s3_key)
        except ClientError as e:
            if error_code(e) in _NOT_FOUND_CODES:
                return False
            raise self._api_error("head_object", e) from e
        except BotoCoreError as e:
            raise self._api_error("head_object", e) from e
        return True

    async def create_bucket(self, s3_bucket: str) -> None:
        """Create a private bucket; an existing bucket owned by the caller is kept."""
        logger.info("creating S3 bucket '%s' in region %s", s3_bucket, self._region)
        kwargs = {"Bucket": s3_bucket}
        if self._region and self._region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self._region}
        try:
            await asyncio.to_thread(self._client.create_bucket, **kwargs)
        except ClientError as e:
            if error_code(e) == "BucketAlreadyOwnedByYou":
                logger.warning("bucket already exists and owned by you '%s'", s3_bucket)
                return
            raise self._api_error("create_bucket", e) from e
        except BotoCoreError as e:
            raise self._api_error("create_bucket", e) from e

        try:
            await asyncio.to_thread(
                self._client.put_public_access_block,
                Bucket=s3_bucket,
                PublicAccessBlockConfiguration={
                    "BlockPublicAcls": True,
                    "IgnorePublicAcls": True,
                    "BlockPublicPolicy": True,
                    "RestrictPublicBuckets": True,
                },
            )
        except (BotoCoreError, ClientError) as e:
            raise self._api_error("put_public_access_block", e) from e
        logger.info("created S3 bucket '%s'", s3_bucket)

    async def delete_bucket(self, s3_bucket: str) -> None:
        """Delete an empty bucket; a missing bucket is ignored."""
        logger.info("deleting S3 bucket '%s'", s3_bucket)
        try:
            await asyncio.to_thread(self._client.delete_bucket, Bucket=s3_bucket)
        except ClientError as e:
            if error_code(e) == "NoSuchBucket":
                logger.warning("bucket already deleted or does not exist '%s'", s3_bucket)
                return
            raise self._api_error("delete_bucket", e) from e
        except BotoCoreError as e:
            raise self._api_error("delete_bucket", e) from e

    async def delete_objects(self, s3_bucket: str, prefix: Optional[str] = None) -> int:
        """
        Delete all objects in the bucket, optionally under a prefix.

        Returns:
            Number of objects deleted
        """
        logger.info("deleting objects in bucket '%s' (prefix %r)", s3_bucket, prefix)
        try:
            return await asyncio.to_thread(self._delete_objects_sync, s3_bucket, prefix)
        except (BotoCoreError, ClientError) as e:
            raise self._api_error("delete_objects", e) from e

    def _put_object_sync(self, file_path: str, s3_bucket: str, s3_key: str) -> None:
        with open(file_path, "rb") as body:
            self._client.put_object(Bucket=s3_bucket, Key=s3_key, Body=body, ACL="private")

    def _get_object_sync(self, s3_bucket: str, s3_key: str, file_path: str) -> int:
        # exclusive create: a file that appears after the pre-check is not clobbered
        try:
            f = open(file_path, "xb")
        except FileExistsError:
            raise IoError(f"file path {file_path} already exists") from None

        written = 0
        try:
            with f:
                output = self._client.get_object(Bucket=s3_bucket, Key=s3_key)
                for chunk in output["Body"].iter_chunks(DOWNLOAD_CHUNK_SIZE):
                    f.write(chunk)
                    written += len(chunk)
        except BaseException:
            os.remove(file_path)
            raise
        return written

    def _delete_objects_sync(self, s3_bucket: str, prefix: Optional[str]) -> int:
        paginator = self._client.get_paginator("list_objects_v2")
        kwargs = {"Bucket": s3_bucket}
        if prefix:
            kwargs["Prefix"] = prefix

        keys: List[Dict[str, str]] = []
        for page in paginator.paginate(**kwargs):
            keys.extend({"Key": obj["Key"]} for obj in page.get("Contents", []))

        for i in range(0, len(keys), DELETE_BATCH_SIZE):
            self._client.delete_objects(
                Bucket=s3_bucket,
                Delete={"Objects": keys[i : i + DELETE_BATCH_SIZE], "Quiet": True},
            )
        return len(keys)


# =============================================================================
# In-memory object store
# =============================================================================


class InMemoryObjectStore(ObjectStore):
    """
    Dict-backed object store for testing.

    Uses asyncio.Lock for safe concurrent access.
    """

    def __init__(self) -> None:
        self._objects: Dict[Tuple[str, str], bytes] = {}
        self._lock = asyncio.Lock()

    async def put_object(self, file_path: PathLike, s3_bucket: str, s3_key: str) -> None:
        file_path = os.fspath(file_path)
        _check_upload_source(file_path)
        data = await read_file(file_path)
        async with self._lock:
            self._objects[(s3_bucket, s3_key)] = data

    async def get_object(self, s3_bucket: str, s3_key: str, file_path: PathLike) -> None:
        file_path = os.fspath(file_path)
        _check_download_target(file_path)
        async with self._lock:
            data = self._objects.get((s3_bucket, s3_key))
        if data is None:
            raise ObjectStorageError(
                f"failed get_object s3://{s3_bucket}/{s3_key}: NoSuchKey", retryable=False
            )
        await write_file(file_path, data, exclusive=True)

    async def exists(self, s3_bucket: str, s3_key: str) -> bool:
        async with self._lock:
            return (s3_bucket, s3_key) in self._objects

    async def delete_objects(self, s3_bucket: str, prefix: Optional[str] = None) -> int:
        async with self._lock:
            doomed = [
                k for k in self._objects if k[0] == s3_bucket and k[1].startswith(prefix or "")
            ]
            for k in doomed:
                del self._objects[k]
        return len(doomed)


# =============================================================================
# Task helpers
# =============================================================================


async def spawn_compress_seal_put_object(
    store: ObjectStore,
    envelope_manager: EnvelopeManager,
    source_file_path: PathLike,
    s3_bucket: str,
    s3_key: str,
) -> None:
    """Run compress_seal_put_object as its own task and wait for it."""
    await asyncio.create_task(
        store.compress_seal_put_object(envelope_manager, source_file_path, s3_bucket, s3_key)
    )


async def spawn_get_object_unseal_decompress(
    store: ObjectStore,
    envelope_manager: EnvelopeManager,
    s3_bucket: str,
    s3_key: str,
    download_file_path: PathLike,
) -> None:
    """Run get_object_unseal_decompress as its own task and wait for it."""
    await asyncio.create_task(
        store.get_object_unseal_decompress(
            envelope_manager, s3_bucket, s3_key, download_file_path
        )
    )
