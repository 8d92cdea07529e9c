"""Detection of the environment the engine itself runs in."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Mapping

from bootrescue.core.models import HostEnvironment, RuntimeContext

# WinPE and WinRE both boot from a RAM disk mounted as X:
RAMDISK_DRIVE = "X:"


def detect_host(environ: Mapping[str, str] | None = None) -> HostEnvironment:
    """Inspect the running system; returns a runtime of None off Windows."""
    environ = os.environ if environ is None else environ
    system_drive = environ.get("SystemDrive")
    get_version = getattr(sys, "getwindowsversion", None)
    build = get_version().build if get_version is not None else None

    if get_version is None:
        runtime = None
    elif (system_drive or "").upper() == RAMDISK_DRIVE:
        recovery = Path(RAMDISK_DRIVE + "\\") / "sources" / "recovery"
        runtime = RuntimeContext.WINRE if recovery.exists() else RuntimeContext.WINPE
    else:
        runtime = RuntimeContext.FULL_OS

    return HostEnvironment(system_drive=system_drive, runtime=runtime, build=build)


def is_live_target(host: HostEnvironment, target_root: str) -> bool:
    """True when the target is the installation the host booted from."""
    if host.runtime != RuntimeContext.FULL_OS or not host.system_drive:
        return False
    return _drive(target_root) == host.system_drive.rstrip("\\").upper()


def _drive(path: str) -> str:
    drive = Path(path).drive or path[:2]
    return drive.upper()
