"""
On-disk JSON storage shared by the result caches.

Writes go to a unique temporary sibling and are then renamed over the
target with os.replace(), so readers see either the old file, the new
file, or no file. Two writers of the same key each use their own temp
file; the last rename wins.
"""

import asyncio
import json
import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import Any

import aiofiles

logger = logging.getLogger(__name__)


class CorruptEntryError(ValueError):
    """A cache file exists but does not hold a usable record."""


def _temp_sibling(path: Path) -> Path:
    return path.with_name(f".{path.name}.{os.getpid()}.{uuid.uuid4().hex[:8]}.tmp")


async def atomic_write_json(path: Path, data: Any) -> None:
    """
    Atomically write data as JSON to path, creating parent directories.

    Raises:
        OSError: If the directory cannot be created or the write fails
    """
    path = Path(path)
    await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)

    tmp_path = _temp_sibling(path)
    try:
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, indent=2))
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


async def read_json(path: Path) -> Any | None:
    """
    Read a JSON file.

    Returns:
        The parsed document, or None if the file does not exist

    Raises:
        CorruptEntryError: If the file cannot be read or decoded
    """
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            raw = await f.read()
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as e:
        raise CorruptEntryError(f"unreadable cache file {path}: {e}") from e

    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise CorruptEntryError(f"invalid JSON in {path}: {e}") from e


async def remove_tree(path: Path) -> bool:
    """Remove a directory tree if present. Returns True if something was removed."""
    path = Path(path)
    if not path.exists():
        return False
    await asyncio.to_thread(shutil.rmtree, path)
    return True


async def clear_cache(*roots: Path) -> int:
    """
    Delete entire cache trees.

    Returns:
        Number of roots that existed and were removed
    """
    removed = 0
    for root in roots:
        if await remove_tree(root):
            logger.info(f"[CACHE] Cleared {root}")
            removed += 1
    return removed
