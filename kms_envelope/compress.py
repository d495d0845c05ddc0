"""
zstd compression of files and byte buffers.
"""

from __future__ import annotations

import asyncio
import logging
import os
from enum import Enum

import zstandard

from .errors import CompressionError
from .utils import human_bytes

logger = logging.getLogger(__name__)

DEFAULT_LEVEL = 3


class Algorithm(Enum):
    """Supported compression algorithms."""

    ZSTD = "zstd"

    def __str__(self) -> str:
        return self.value


class ZstdCompressor:
    """
    Streaming zstd pack/unpack.

    File operations stream through zstandard's copy_stream in a worker
    thread, so large files never have to fit in memory.
    """

    __slots__ = ("_level",)

    def __init__(self, level: int = DEFAULT_LEVEL) -> None:
        if not 1 <= level <= 22:
            raise CompressionError(f"zstd level must be between 1 and 22, got {level}")
        self._level = level

    @property
    def level(self) -> int:
        """Get the compression level."""
        return self._level

    async def pack(
        self, src_file: str, dst_file: str, algorithm: Algorithm = Algorithm.ZSTD
    ) -> None:
        """Compress ``src_file`` into ``dst_file``."""
        self._check(algorithm)
        await self.pack_file(src_file, dst_file)

    async def unpack(
        self, src_file: str, dst_file: str, algorithm: Algorithm = Algorithm.ZSTD
    ) -> None:
        """Decompress ``src_file`` into ``dst_file``."""
        self._check(algorithm)
        await self.unpack_file(src_file, dst_file)

    async def pack_file(self, src_file: str, dst_file: str) -> None:
        logger.info("compressing '%s' to '%s' (zstd level %d)", src_file, dst_file, self._level)
        try:
            await asyncio.to_thread(self._pack_file_sync, src_file, dst_file)
        except (OSError, zstandard.ZstdError) as e:
            raise CompressionError(f"failed compression {e}") from e
        logger.info(
            "compressed '%s' (%s -> %s)",
            src_file,
            human_bytes(os.path.getsize(src_file)),
            human_bytes(os.path.getsize(dst_file)),
        )

    async def unpack_file(self, src_file: str, dst_file: str) -> None:
        logger.info("decompressing '%s' to '%s'", src_file, dst_file)
        try:
            await asyncio.to_thread(self._unpack_file_sync, src_file, dst_file)
        except (OSError, zstandard.ZstdError) as e:
            raise CompressionError(f"failed decompression {e}") from e

    def pack_bytes(self, data: bytes) -> bytes:
        try:
            return zstandard.ZstdCompressor(level=self._level).compress(data)
        except zstandard.ZstdError as e:
            raise CompressionError(f"failed compression {e}") from e

    def unpack_bytes(self, data: bytes) -> bytes:
        try:
            # Frames written by copy_stream carry no content size.
            with zstandard.ZstdDecompressor().stream_reader(data) as reader:
                return reader.read()
        except zstandard.ZstdError as e:
            raise CompressionError(f"failed decompression {e}") from e

    def _pack_file_sync(self, src_file: str, dst_file: str) -> None:
        cctx = zstandard.ZstdCompressor(level=self._level)
        with open(src_file, "rb") as fin, open(dst_file, "wb") as fout:
            cctx.copy_stream(fin, fout)

    def _unpack_file_sync(self, src_file: str, dst_file: str) -> None:
        dctx = zstandard.ZstdDecompressor()
        with open(src_file, "rb") as fin, open(dst_file, "wb") as fout:
            dctx.copy_stream(fin, fout)

    @staticmethod
    def _check(algorithm: Algorithm) -> None:
        if algorithm is not Algorithm.ZSTD:
            raise CompressionError(f"Unsupported compression algorithm: {algorithm}")
