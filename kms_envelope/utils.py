"""
Small helpers shared across the package: async file I/O, temp paths, sizes,
logging setup.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import secrets
import sys
import tempfile
from typing import AsyncIterator

from .errors import IoError

logger = logging.getLogger(__name__)

_UNITS = ("B", "KiB", "MiB", "GiB", "TiB")


def human_bytes(size: float) -> str:
    """Format a byte count for log lines, e.g. ``50.0 MiB``."""
    value = float(size)
    for unit in _UNITS:
        if abs(value) < 1024.0 or unit == _UNITS[-1]:
            if unit == "B":
                return f"{int(value)} B"
            return f"{value:.1f} {unit}"
        value /= 1024.0
    return f"{value:.1f} {_UNITS[-1]}"


def random_string(n: int) -> str:
    """Return a random URL-safe identifier of exactly ``n`` characters."""
    if n <= 0:
        return ""
    return secrets.token_urlsafe(n)[:n]


def tmp_path(n: int = 10, suffix: str = "") -> str:
    """
    Return a randomly named path in the system temp directory.

    The file is not created.
    """
    return os.path.join(tempfile.gettempdir(), f"{random_string(n)}{suffix}")


@contextlib.asynccontextmanager
async def scoped_tmp_path(n: int = 10, suffix: str = "") -> AsyncIterator[str]:
    """
    Yield a random temp path and remove the file when the block exits.

    On a failing block the removal is best-effort so the original error is
    the one the caller sees; on success a removal failure raises IoError.
    """
    path = tmp_path(n, suffix)
    try:
        yield path
    except BaseException:
        try:
            _remove_if_exists(path)
        except OSError as e:
            logger.warning("failed to remove temp file %s: %s", path, e)
        raise
    await remove_file(path)


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure the root logger once for console entry points."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


async def read_file(path: str) -> bytes:
    """Read a whole file without blocking the event loop."""
    try:
        return await asyncio.to_thread(_read_bytes, path)
    except OSError as e:
        raise IoError(f"failed read {path}: {e}") from e


async def write_file(path: str, data: bytes, exclusive: bool = False) -> None:
    """
    Create (or truncate) ``path`` and write ``data`` to it.

    With ``exclusive`` an existing ``path`` is left untouched and IoError
    is raised instead.
    """
    try:
        await asyncio.to_thread(_write_bytes, path, data, "xb" if exclusive else "wb")
    except FileExistsError:
        raise IoError(f"file path {path} already exists") from None
    except OSError as e:
        raise IoError(f"failed write {path}: {e}") from e


async def remove_file(path: str) -> None:
    """Remove ``path`` if it exists."""
    try:
        await asyncio.to_thread(_remove_if_exists, path)
    except OSError as e:
        raise IoError(f"failed remove_file {path}: {e}") from e


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def _write_bytes(path: str, data: bytes, mode: str = "wb") -> None:
    with open(path, mode) as f:
        f.write(data)


def _remove_if_exists(path: str) -> None:
    if os.path.exists(path):
        os.remove(path)
