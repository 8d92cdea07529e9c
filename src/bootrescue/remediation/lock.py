"""Exclusive advisory lock per target volume, held for the whole apply run."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import IO

from bootrescue.core.errors import LockContention

if os.name == "nt":
    import msvcrt

    def try_lock(f: IO) -> bool:
        """Non-blocking exclusive lock on the first byte of *f*."""
        try:
            f.seek(0)
            msvcrt.locking(f.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    def unlock(f: IO) -> None:
        f.seek(0)
        msvcrt.locking(f.fileno(), msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    def try_lock(f: IO) -> bool:
        """Non-blocking exclusive lock on *f*."""
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            return False
        return True

    def unlock(f: IO) -> None:
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)


def lock_path(lock_dir: Path, volume: str) -> Path:
    name = re.sub(r"[^A-Za-z0-9]+", "_", volume).strip("_") or "root"
    return lock_dir / f"volume-{name}.lock"


class VolumeLock:
    """A held lock; release() or use as a context manager."""

    def __init__(self, path: Path, handle: IO):
        self.path = path
        self._handle: IO | None = handle

    @property
    def held(self) -> bool:
        return self._handle is not None

    def release(self) -> None:
        if self._handle is None:
            return
        try:
            unlock(self._handle)
        except OSError:
            pass
        self._handle.close()
        self._handle = None

    def __enter__(self) -> VolumeLock:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


def acquire_volume_lock(lock_dir: Path, volume: str) -> VolumeLock:
    """Take the lock or raise LockContention immediately; never waits."""
    lock_dir.mkdir(parents=True, exist_ok=True)
    path = lock_path(lock_dir, volume)
    handle = open(path, "a+", encoding="utf-8")
    if not try_lock(handle):
        handle.close()
        raise LockContention(str(path), _holder(path))

    handle.seek(0)
    handle.truncate()
    handle.write(f"pid={os.getpid()}\n")
    handle.flush()
    return VolumeLock(path, handle)


def _holder(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError:
        return ""
