"""Individual evidence probes.

Every probe returns a plain value or raises ``CollectionError``; the
collector turns that into a ``Probe`` on the snapshot. Probes only read:
files are opened read-only, hives are queried through a ``RegistryReader``
and native tools are limited to their status/enumeration verbs.
"""

from __future__ import annotations

import hashlib
import re
from functools import cached_property
from pathlib import Path

from bootrescue.collector.host import is_live_target
from bootrescue.collector.parsers import (
    decode_text,
    parse_bcdedit,
    parse_fsutil_filesystem,
    parse_manage_bde_status,
    parse_srttrail,
)
from bootrescue.collector.registry import RegistryReader
from bootrescue.core.config import CollectorConfig
from bootrescue.core.errors import CollectionError
from bootrescue.core.models import (
    BcdFacts,
    BitLockerFacts,
    FileFact,
    Firmware,
    HostEnvironment,
    RuntimeContext,
    ServiceFact,
)
from bootrescue.core.runner import CommandRunner

# File roles referenced by signatures
WINLOAD_EFI = "winload.efi"
WINLOAD_EXE = "winload.exe"
KERNEL = "ntoskrnl.exe"
HAL = "hal.dll"
BOOTMGFW = "bootmgfw.efi"
BOOTMGR = "bootmgr"

BOOT_FILES = (
    (WINLOAD_EFI, ("Windows", "System32", "winload.efi"), "target"),
    (WINLOAD_EXE, ("Windows", "System32", "winload.exe"), "target"),
    (KERNEL, ("Windows", "System32", "ntoskrnl.exe"), "target"),
    (HAL, ("Windows", "System32", "hal.dll"), "target"),
    (BOOTMGFW, ("EFI", "Microsoft", "Boot", "bootmgfw.efi"), "esp"),
    (BOOTMGR, ("bootmgr",), "esp"),
)

UEFI_STORE = ("EFI", "Microsoft", "Boot", "BCD")
BIOS_STORE = ("Boot", "BCD")
SYSTEM_HIVE = ("Windows", "System32", "config", "SYSTEM")
SRTTRAIL = ("Windows", "System32", "LogFiles", "Srt", "SrtTrail.txt")
LOG_FILES = (
    ("Windows", "System32", "winevt", "Logs", "System.evtx"),
    ("Windows", "ntbtlog.txt"),
    SRTTRAIL,
)
MAX_MINIDUMPS = 10

_DRIVE = re.compile(r"^([A-Za-z]):?\\?$")


def resolve_path(root: Path, *parts: str) -> Path:
    """Join *parts* onto *root*, matching existing names case-insensitively."""
    current = root
    for part in parts:
        candidate = current / part
        if not candidate.exists() and current.is_dir():
            lowered = part.lower()
            try:
                for child in current.iterdir():
                    if child.name.lower() == lowered:
                        candidate = child
                        break
            except OSError:
                pass
        current = candidate
    return current


def esp_root(esp: str) -> Path:
    """Accept a bare drive letter ("S", "S:") or a mounted path."""
    m = _DRIVE.match(esp.strip())
    if m:
        return Path(f"{m.group(1).upper()}:\\")
    return Path(esp)


def volume_of(target_root: str) -> str:
    """The designator manage-bde and chkdsk expect for the target volume."""
    m = re.match(r"^([A-Za-z]):", target_root)
    if m:
        return f"{m.group(1).upper()}:"
    return target_root


def file_fact(role: str, path: Path, hash_limit: int | None) -> FileFact:
    """Stat (and optionally hash) one file. Missing files are facts, not errors."""
    if not path.is_file():
        return FileFact(role=role, path=str(path), exists=False)
    size = path.stat().st_size
    digest = None
    if hash_limit is not None and size <= hash_limit:
        sha = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(1024 * 1024), b""):
                sha.update(chunk)
        digest = sha.hexdigest()
    return FileFact(role=role, path=str(path), exists=True, size=size, sha256=digest)


class TargetProbes:
    """All probes for one target installation, sharing lazily computed lookups."""

    def __init__(
        self,
        target_root: str,
        esp: str,
        config: CollectorConfig,
        runner: CommandRunner,
        registry: RegistryReader,
        host: HostEnvironment,
    ):
        self.root = Path(target_root)
        self.esp = esp_root(esp) if esp.strip() else None
        self.target_root = target_root
        self.config = config
        self.runner = runner
        self.registry = registry
        self.host = host
        self.hash_limit = config.hash_limit_mb * 1024 * 1024

    def target(self, *parts: str) -> Path:
        return resolve_path(self.root, *parts)

    def on_esp(self, *parts: str) -> Path:
        # An empty designator must not fall back to the working directory
        if self.esp is None:
            raise CollectionError("esp", "no ESP designator given")
        return resolve_path(self.esp, *parts)

    def _run(self, probe: str, argv: list[str]) -> str:
        result = self.runner.run(argv, timeout=self.config.command_timeout)
        if not result.success:
            raise CollectionError(probe, result.output or f"{argv[0]} exited {result.returncode}")
        return result.stdout

    @cached_property
    def live(self) -> bool:
        return is_live_target(self.host, self.target_root)

    # -- host -----------------------------------------------------------

    def runtime(self) -> RuntimeContext:
        if self.host.runtime is None:
            raise CollectionError("runtime", "not running on Windows")
        return self.host.runtime

    def live_os(self) -> bool:
        return self.live

    def host_build(self) -> int:
        if self.host.build is None:
            raise CollectionError("host_build", "host build unknown")
        return self.host.build

    # -- target ---------------------------------------------------------

    def os_build(self) -> int:
        key = self.registry.query("SOFTWARE", r"Microsoft\Windows NT\CurrentVersion")
        raw = key.value("CurrentBuildNumber") if key else None
        if raw is None:
            raise CollectionError("os_build", "CurrentBuildNumber not found")
        try:
            return int(str(raw).strip())
        except ValueError:
            raise CollectionError("os_build", f"unexpected build number {raw!r}") from None

    def firmware(self) -> Firmware:
        if self.on_esp("EFI").is_dir():
            return Firmware.UEFI
        if self.on_esp("bootmgr").exists() or self.on_esp(*BIOS_STORE).exists():
            return Firmware.BIOS
        raise CollectionError("firmware", f"no boot files on {self.esp}")

    @cached_property
    def _control_set(self) -> str:
        key = self.registry.query("SYSTEM", "Select")
        current = key.value("Current") if key else None
        if not isinstance(current, int):
            raise CollectionError("control_set", "SYSTEM\\Select\\Current not found")
        return f"ControlSet{current:03d}"

    def control_set(self) -> str:
        return self._control_set

    def boot_files(self) -> tuple[FileFact, ...]:
        facts = []
        for role, parts, where in BOOT_FILES:
            path = self.target(*parts) if where == "target" else self.on_esp(*parts)
            facts.append(file_fact(role, path, self.hash_limit))
        return tuple(facts)

    def drivers(self) -> tuple[FileFact, ...]:
        return tuple(
            file_fact(name.lower(), self.target("Windows", "System32", "drivers", name), self.hash_limit)
            for name in self.config.critical_drivers
        )

    def system_hive(self) -> FileFact:
        return file_fact("SYSTEM", self.target(*SYSTEM_HIVE), self.hash_limit)

    @cached_property
    def _store_path(self) -> Path:
        uefi = self.on_esp(*UEFI_STORE)
        bios = self.on_esp(*BIOS_STORE)
        if uefi.exists() or not bios.exists() and self.on_esp("EFI").is_dir():
            return uefi
        return bios

    def bcd_store(self) -> FileFact:
        return file_fact("BCD", self._store_path, self.hash_limit)

    def bcd(self) -> BcdFacts:
        if self.live:
            argv = ["bcdedit", "/enum", "all", "/v"]
        else:
            if not self._store_path.is_file():
                raise CollectionError("bcd", f"store {self._store_path} not found")
            argv = ["bcdedit", "/store", str(self._store_path), "/enum", "all", "/v"]
        return parse_bcdedit(self._run("bcd", argv))

    def services(self) -> tuple[ServiceFact, ...]:
        facts = []
        for name in self.config.storage_services:
            path = f"{self._control_set}\\Services\\{name}"
            key = self.registry.query("SYSTEM", path)
            if key is None:
                facts.append(ServiceFact(name=name, present=False, registry_path=path))
                continue
            overrides: tuple[tuple[str, int], ...] = ()
            if key.has_subkey("StartOverride"):
                sub = self.registry.query("SYSTEM", path + "\\StartOverride")
                if sub is not None:
                    overrides = tuple(
                        (v.name, v.data) for v in sub.values if isinstance(v.data, int)
                    )
            start = key.value("Start")
            facts.append(ServiceFact(
                name=name,
                present=True,
                start=start if isinstance(start, int) else None,
                start_override=overrides,
                image_path=key.value("ImagePath"),
                registry_path=path,
            ))
        return tuple(facts)

    def pending_renames(self) -> tuple[str, ...]:
        key = self.registry.query("SYSTEM", f"{self._control_set}\\Control\\Session Manager")
        if key is None:
            return ()
        entries: list[str] = []
        for name in ("PendingFileRenameOperations", "PendingFileRenameOperations2"):
            value = key.value(name) or ()
            if isinstance(value, str):
                value = (value,)
            entries.extend(v for v in value if v)
        return tuple(entries)

    def servicing_markers(self) -> tuple[str, ...]:
        markers = [
            name for name in ("pending.xml", "reboot.xml")
            if self.target("Windows", "WinSxS", name).exists()
        ]
        cbs = self.registry.query(
            "SOFTWARE", r"Microsoft\Windows\CurrentVersion\Component Based Servicing"
        )
        if cbs is not None and cbs.has_subkey("RebootPending"):
            markers.append("cbs-reboot-pending")
        return tuple(markers)

    def secure_boot(self) -> bool:
        result = self.runner.run(
            ["powershell", "-NoProfile", "-NonInteractive", "-Command", "Confirm-SecureBootUEFI"],
            timeout=self.config.command_timeout,
        )
        text = result.output.strip().lower()
        if "not supported" in text:
            return False
        if not result.success:
            raise CollectionError("secure_boot", result.output or f"exit {result.returncode}")
        if text.endswith("true"):
            return True
        if text.endswith("false"):
            return False
        raise CollectionError("secure_boot", f"unexpected output {result.stdout.strip()!r}")

    def bitlocker(self) -> BitLockerFacts:
        volume = volume_of(self.target_root)
        output = self._run("bitlocker", ["manage-bde", "-status", volume])
        try:
            return parse_manage_bde_status(output, volume)
        except ValueError as e:
            raise CollectionError("bitlocker", str(e)) from e

    def fast_startup(self) -> bool:
        key = self.registry.query(
            "SYSTEM", f"{self._control_set}\\Control\\Session Manager\\Power"
        )
        value = key.value("HiberbootEnabled") if key else None
        return bool(value)

    def hiberfil(self) -> FileFact:
        return file_fact("hiberfil", self.target("hiberfil.sys"), None)

    def esp_filesystem(self) -> str:
        output = self._run("esp_filesystem", ["fsutil", "fsinfo", "volumeinfo", str(self.on_esp())])
        try:
            return parse_fsutil_filesystem(output)
        except ValueError as e:
            raise CollectionError("esp_filesystem", str(e)) from e

    def crash_dumps(self) -> tuple[FileFact, ...]:
        dumps = [file_fact("memory-dump", self.target("Windows", "MEMORY.DMP"), None)]
        minidump = self.target("Windows", "Minidump")
        if minidump.is_dir():
            # Minidump names are MMDDYY-based, so recency comes from mtime
            recent = sorted(
                (p for p in minidump.iterdir() if p.suffix.lower() == ".dmp"),
                key=lambda p: (p.stat().st_mtime, p.name.lower()),
            )[-MAX_MINIDUMPS:]
            recent.sort(key=lambda p: p.name.lower())
            dumps.extend(file_fact("minidump", p, None) for p in recent)
        return tuple(d for d in dumps if d.exists)

    def log_references(self) -> tuple[str, ...]:
        return tuple(
            str(path) for path in (self.target(*parts) for parts in LOG_FILES) if path.is_file()
        )

    def repair_root_cause(self) -> str | None:
        path = self.target(*SRTTRAIL)
        if not path.is_file():
            return None
        return parse_srttrail(decode_text(path.read_bytes()))
