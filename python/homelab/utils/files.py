"""
homelab/utils/files.py

File helpers for the artifacts handed between stages:

1) **atomic_write_text**: write to a temporary sibling, then rename over the
   target, so readers never see a partially written inventory/outputs file and
   a failed write leaves the previous file untouched.
2) **backup_existing**: move an existing file aside under a timestamped name
   instead of overwriting it (Talos secrets).
3) **reset_directory**: wipe and recreate a generated-output directory.
"""

from __future__ import annotations

import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Optional, Union

import aiofiles

PathLike = Union[str, Path]


async def atomic_write_text(path: PathLike, content: str, mode: int = 0o644) -> Path:
    """
    Atomically replace `path` with `content`.

    Args:
        path: Destination file. Parent directories are created.
        content: Text to write (UTF-8).
        mode: Permission bits applied before the rename.

    Returns:
        The destination path.
    """
    dest = Path(path)
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}.", suffix=".tmp")
    os.close(fd)
    try:
        async with aiofiles.open(tmp_name, "w", encoding="utf-8") as fh:
            await fh.write(content)
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, dest)
    finally:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
    return dest


async def read_text(path: PathLike) -> str:
    async with aiofiles.open(path, "r", encoding="utf-8") as fh:
        return await fh.read()


def backup_existing(path: PathLike, now: Optional[float] = None) -> Optional[Path]:
    """
    Move `path` to `<path>.bak.<epoch>` if it exists.

    An existing backup is never overwritten: a numeric suffix is appended
    until the name is free.

    Args:
        path: File to back up.
        now: Epoch seconds to use in the name (defaults to the current time).

    Returns:
        The backup path, or None if there was nothing to back up.
    """
    src = Path(path)
    if not src.exists():
        return None

    stamp = int(now if now is not None else time.time())
    candidate = src.with_name(f"{src.name}.bak.{stamp}")
    counter = 1
    while candidate.exists():
        candidate = src.with_name(f"{src.name}.bak.{stamp}.{counter}")
        counter += 1

    os.replace(src, candidate)
    return candidate


def reset_directory(path: PathLike) -> Path:
    """Delete `path` (if present) and recreate it empty."""
    target = Path(path)
    if target.exists():
        shutil.rmtree(target)
    target.mkdir(parents=True)
    return target

