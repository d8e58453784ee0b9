"""
Async file helpers.

Provides:
- Atomic text writes (temp file + fsync + rename)
- Text reads that report I/O failures as StorageIOError
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

import aiofiles
import aiofiles.os

from .exceptions import StorageIOError


async def ensure_directory(path: Path) -> None:
    """Ensure directory exists, creating if necessary."""
    try:
        await aiofiles.os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise StorageIOError("create_directory", str(path), e) from e


async def read_text(path: Path) -> str | None:
    """Read a UTF-8 text file.

    Returns:
        File content, or None if the file doesn't exist
    """
    try:
        if not await aiofiles.os.path.exists(path):
            return None
        async with aiofiles.open(path, encoding="utf-8") as f:
            return await f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise StorageIOError("read_file", str(path), e) from e


async def write_text_atomic(path: Path, content: str) -> None:
    """Write a UTF-8 text file atomically using temp file + rename.

    A failed write leaves any previous file at ``path`` untouched.
    """
    await ensure_directory(path.parent)

    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=".json")
    try:
        os.close(fd)
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(content)
            await f.flush()
            os.fsync(f.fileno())

        await aiofiles.os.replace(temp_path, path)
    except Exception as e:
        try:
            await aiofiles.os.remove(temp_path)
        except OSError:
            pass
        raise StorageIOError("write_file", str(path), e) from e
