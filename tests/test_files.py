"""Tests for file sealing, the compress+seal pipeline and temp file handling."""

from __future__ import annotations

import os

import pytest

from kms_envelope import (
    CompressionError,
    IoError,
    ValidationError,
    spawn_compress_seal,
    spawn_seal_aes_256_file,
    spawn_unseal_aes_256_file,
    spawn_unseal_decompress,
)
from kms_envelope.utils import scoped_tmp_path

FIFTY_MIB = 50 * 1024 * 1024


async def test_large_file_roundtrip(envelope, tmp_path):
    src = tmp_path / "plain.bin"
    sealed = tmp_path / "sealed.bin"
    dst = tmp_path / "restored.bin"
    src.write_bytes(bytes([7]) * FIFTY_MIB)

    await envelope.seal_aes_256_file(src, sealed)
    await envelope.unseal_aes_256_file(sealed, dst)

    restored = dst.read_bytes()
    assert len(restored) == FIFTY_MIB
    assert restored == bytes([7]) * FIFTY_MIB


async def test_spawned_file_roundtrip(envelope, tmp_path):
    src = tmp_path / "plain.txt"
    sealed = tmp_path / "sealed.bin"
    dst = tmp_path / "restored.txt"
    src.write_bytes(b"hello from a task")

    await spawn_seal_aes_256_file(envelope, src, sealed)
    await spawn_unseal_aes_256_file(envelope, sealed, dst)

    assert dst.read_bytes() == b"hello from a task"


async def test_seal_missing_source(envelope, tmp_path):
    with pytest.raises(IoError, match="failed read"):
        await envelope.seal_aes_256_file(tmp_path / "missing", tmp_path / "out")


async def test_seal_unwritable_destination(envelope, tmp_path):
    src = tmp_path / "plain.txt"
    src.write_bytes(b"data")
    with pytest.raises(IoError, match="failed write"):
        await envelope.seal_aes_256_file(src, tmp_path / "no-such-dir" / "out")


async def test_compress_seal_roundtrip(envelope, tmp_path, tracked_tmp_paths):
    src = tmp_path / "plain.txt"
    sealed = tmp_path / "sealed.zst.enc"
    dst = tmp_path / "restored.txt"
    src.write_bytes(b"compressible line\n" * 10_000)

    await envelope.compress_seal(src, sealed)
    assert os.path.getsize(sealed) < os.path.getsize(src)

    await envelope.unseal_decompress(sealed, dst)
    assert dst.read_bytes() == src.read_bytes()

    assert len(tracked_tmp_paths) == 2
    assert not any(os.path.exists(p) for p in tracked_tmp_paths)


async def test_spawned_compress_seal_roundtrip(envelope, tmp_path):
    src = tmp_path / "plain.bin"
    sealed = tmp_path / "sealed.bin"
    dst = tmp_path / "restored.bin"
    src.write_bytes(os.urandom(4096))

    await spawn_compress_seal(envelope, src, sealed)
    await spawn_unseal_decompress(envelope, sealed, dst)

    assert dst.read_bytes() == src.read_bytes()


async def test_unseal_decompress_failure_cleans_up(envelope, tmp_path, tracked_tmp_paths):
    garbage = tmp_path / "garbage.bin"
    garbage.write_bytes(b"\x00" * 10)

    with pytest.raises(ValidationError):
        await envelope.unseal_decompress(garbage, tmp_path / "out")

    assert tracked_tmp_paths
    assert not any(os.path.exists(p) for p in tracked_tmp_paths)
    assert not (tmp_path / "out").exists()


async def test_compress_seal_missing_source_cleans_up(envelope, tmp_path, tracked_tmp_paths):
    with pytest.raises(CompressionError, match="failed compression"):
        await envelope.compress_seal(tmp_path / "missing", tmp_path / "out")
    assert not any(os.path.exists(p) for p in tracked_tmp_paths)


# =============================================================================
# scoped_tmp_path
# =============================================================================


async def test_scoped_tmp_path_removes_file(tracked_tmp_paths):
    async with scoped_tmp_path() as path:
        with open(path, "wb") as f:
            f.write(b"temp")
        assert os.path.exists(path)
    assert not os.path.exists(path)


async def test_scoped_tmp_path_keeps_original_error(tracked_tmp_paths):
    with pytest.raises(ValueError, match="boom"):
        async with scoped_tmp_path() as path:
            with open(path, "wb") as f:
                f.write(b"temp")
            raise ValueError("boom")
    assert not os.path.exists(path)


async def test_scoped_tmp_path_without_file(tracked_tmp_paths):
    async with scoped_tmp_path(suffix=".zst") as path:
        assert path.endswith(".zst")
    assert not os.path.exists(path)
