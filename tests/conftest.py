"""Shared fixtures: a scripted command runner and healthy evidence."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Sequence

import pytest

from bootrescue.core.config import CollectorConfig
from bootrescue.core.models import (
    BcdEntry,
    BcdFacts,
    BitLockerFacts,
    Detection,
    FileFact,
    Firmware,
    HostEnvironment,
    Probe,
    RuntimeContext,
    ServiceFact,
    Severity,
    SystemSnapshot,
)
from bootrescue.core.runner import CommandResult
from bootrescue.remediation.catalog import PlanTarget

BUILD = 22631

BCDEDIT_HEALTHY = """\
Windows Boot Manager
--------------------
identifier              {bootmgr}
device                  partition=S:
path                    \\EFI\\Microsoft\\Boot\\bootmgfw.efi
description             Windows Boot Manager
default                 {current}
displayorder            {current}
timeout                 30

Windows Boot Loader
-------------------
identifier              {current}
device                  partition=D:
path                    \\Windows\\system32\\winload.efi
description             Windows 11
osdevice                partition=D:
systemroot              \\Windows
"""

MANAGE_BDE_OFF = """\
Volume D: [OS]
[OS Volume]

    Size:                 237.87 GB
    BitLocker Version:    None
    Conversion Status:    Fully Decrypted
    Percentage Encrypted: 0.0%
    Encryption Method:    None
    Protection Status:    Protection Off
    Lock Status:          Unlocked
"""

MANAGE_BDE_ON = """\
Volume D: [OS]
[OS Volume]

    Conversion Status:    Used Space Only Encrypted
    Percentage Encrypted: 100.0%
    Protection Status:    Protection On
    Lock Status:          Unlocked
"""

FSUTIL_FAT32 = """\
Volume Name : SYSTEM
Volume Serial Number : 0x1234abcd
File System Name : FAT32
"""


class FakeRunner:
    """Answers commands by argv prefix and records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self._rules: list[tuple[tuple[str, ...], Callable[[tuple[str, ...]], CommandResult]]] = []

    def on(self, prefix: Sequence[str], returncode: int = 0, stdout: str = "", stderr: str = "") -> FakeRunner:
        def respond(argv: tuple[str, ...]) -> CommandResult:
            return CommandResult(argv, returncode, stdout, stderr)

        self._rules.insert(0, (tuple(prefix), respond))
        return self

    def on_call(self, prefix: Sequence[str], respond: Callable[[tuple[str, ...]], CommandResult]) -> FakeRunner:
        self._rules.insert(0, (tuple(prefix), respond))
        return self

    def run(self, argv: Sequence[str], timeout: int | None = None) -> CommandResult:
        args = tuple(argv)
        self.calls.append(args)
        for prefix, respond in self._rules:
            if args[: len(prefix)] == prefix:
                return respond(args)
        return CommandResult(args, 0)

    def commands(self, name: str) -> list[tuple[str, ...]]:
        return [c for c in self.calls if c and c[0] == name]


def healthy_snapshot(target_root: str = "D:\\", esp: str = "S:", **overrides) -> SystemSnapshot:
    """A UEFI installation on which no signature fires."""
    mib = 1024 * 1024

    def present(role: str, path: str, size: int = mib) -> FileFact:
        return FileFact(role=role, path=path, exists=True, size=size, sha256="0" * 64)

    boot_files = (
        present("winload.efi", "D:\\Windows\\System32\\winload.efi"),
        present("winload.exe", "D:\\Windows\\System32\\winload.exe"),
        present("ntoskrnl.exe", "D:\\Windows\\System32\\ntoskrnl.exe", 11 * mib),
        present("hal.dll", "D:\\Windows\\System32\\hal.dll"),
        present("bootmgfw.efi", "S:\\EFI\\Microsoft\\Boot\\bootmgfw.efi"),
        FileFact(role="bootmgr", path="S:\\bootmgr", exists=False),
    )
    drivers = tuple(
        present(name, f"D:\\Windows\\System32\\drivers\\{name}", 200 * 1024)
        for name in ("disk.sys", "storahci.sys", "stornvme.sys", "ntfs.sys")
    )
    bcd = BcdFacts(entries=(
        BcdEntry(
            identifier="{bootmgr}", entry_type="Windows Boot Manager",
            device="partition=S:", default="{current}", display_order=("{current}",),
        ),
        BcdEntry(
            identifier="{current}", entry_type="Windows Boot Loader", description="Windows 11",
            device="partition=D:", osdevice="partition=D:", path="\\Windows\\system32\\winload.efi",
        ),
    ))
    services = tuple(
        ServiceFact(
            name=name, present=True, start=0,
            registry_path=f"ControlSet001\\Services\\{name}",
        )
        for name in ("storahci", "stornvme", "disk", "volmgr")
    )
    values = {
        "runtime": Probe.ok(RuntimeContext.WINRE),
        "live_os": Probe.ok(False),
        "host_build": Probe.ok(BUILD),
        "os_build": Probe.ok(BUILD),
        "firmware": Probe.ok(Firmware.UEFI),
        "control_set": Probe.ok("ControlSet001"),
        "boot_files": Probe.ok(boot_files),
        "drivers": Probe.ok(drivers),
        "system_hive": Probe.ok(present("SYSTEM", "D:\\Windows\\System32\\config\\SYSTEM", 16 * mib)),
        "bcd_store": Probe.ok(present("BCD", "S:\\EFI\\Microsoft\\Boot\\BCD", 32 * 1024)),
        "bcd": Probe.ok(bcd),
        "services": Probe.ok(services),
        "pending_renames": Probe.ok(()),
        "servicing_markers": Probe.ok(()),
        "secure_boot": Probe.ok(True),
        "bitlocker": Probe.ok(BitLockerFacts(volume="D:", encrypted=False, protection_on=False)),
        "fast_startup": Probe.ok(False),
        "hiberfil": Probe.ok(FileFact(role="hiberfil", path="D:\\hiberfil.sys", exists=False)),
        "esp_filesystem": Probe.ok("FAT32"),
        "crash_dumps": Probe.ok(()),
        "log_references": Probe.ok(()),
        "repair_root_cause": Probe.ok(None),
    }
    for name, value in overrides.items():
        values[name] = value if isinstance(value, Probe) else Probe.ok(value)
    return SystemSnapshot(
        target_root=target_root,
        esp=esp,
        collected_at=datetime(2024, 5, 1, 12, 0, 0),
        **values,
    )


def with_file(group: tuple[FileFact, ...], role: str, **changes) -> tuple[FileFact, ...]:
    """Return *group* with the fact for *role* changed."""
    return tuple(replace(f, **changes) if f.role == role else f for f in group)


@pytest.fixture()
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture()
def snapshot_factory() -> Callable[..., SystemSnapshot]:
    return healthy_snapshot


@pytest.fixture()
def file_changer() -> Callable[..., tuple[FileFact, ...]]:
    return with_file


@pytest.fixture()
def offline_host() -> HostEnvironment:
    return HostEnvironment(system_drive="X:", runtime=RuntimeContext.WINRE, build=BUILD)


@pytest.fixture()
def state_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep the action log, locks and backups inside the test's tmp_path."""
    path = tmp_path / "state"
    monkeypatch.setenv("BOOTRESCUE_STATE_DIR", str(path))
    return path


def _write(path: Path, size: int = 0, data: bytes | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data if data is not None else b"\0" * size)
    return path


SYSTEM_EXPORT = """\
Windows Registry Editor Version 5.00

[HKEY_LOCAL_MACHINE\\BR_SYSTEM\\Select]
"Current"=dword:00000001
"Default"=dword:00000001

[HKEY_LOCAL_MACHINE\\BR_SYSTEM\\ControlSet001\\Services\\storahci]
"Start"=dword:00000000
"ImagePath"=hex(2):53,00,79,00,73,00,74,00,65,00,6d,00,33,00,32,00,5c,00,64,00,\\
  72,00,69,00,76,00,65,00,72,00,73,00,5c,00,73,00,74,00,6f,00,72,00,61,00,68,\\
  00,63,00,69,00,2e,00,73,00,79,00,73,00,00,00

[HKEY_LOCAL_MACHINE\\BR_SYSTEM\\ControlSet001\\Services\\stornvme]
"Start"=dword:00000000

[HKEY_LOCAL_MACHINE\\BR_SYSTEM\\ControlSet001\\Services\\disk]
"Start"=dword:00000000

[HKEY_LOCAL_MACHINE\\BR_SYSTEM\\ControlSet001\\Control\\Session Manager]
"BootExecute"=hex(7):61,00,75,00,74,00,6f,00,63,00,68,00,65,00,63,00,6b,00,20,\\
  00,61,00,75,00,74,00,6f,00,63,00,68,00,6b,00,20,00,2a,00,00,00,00,00

[HKEY_LOCAL_MACHINE\\BR_SYSTEM\\ControlSet001\\Control\\Session Manager\\Power]
"HiberbootEnabled"=dword:00000000
"""

SOFTWARE_EXPORT = """\
Windows Registry Editor Version 5.00

[HKEY_LOCAL_MACHINE\\BR_SOFTWARE\\Microsoft\\Windows NT\\CurrentVersion]
"CurrentBuildNumber"="22631"
"ProductName"="Windows 10 Pro"

[HKEY_LOCAL_MACHINE\\BR_SOFTWARE\\Microsoft\\Windows\\CurrentVersion\\Component Based Servicing]
"""


@pytest.fixture()
def target_tree(tmp_path: Path) -> dict[str, Path]:
    """A healthy offline UEFI installation laid out on disk, plus .reg exports."""
    root = tmp_path / "target"
    esp = tmp_path / "esp"
    system32 = root / "Windows" / "System32"
    for name in ("winload.efi", "winload.exe", "hal.dll"):
        _write(system32 / name, 128 * 1024)
    _write(system32 / "ntoskrnl.exe", 256 * 1024)
    for name in CollectorConfig().critical_drivers:
        _write(system32 / "drivers" / name, 4096)
    _write(system32 / "config" / "SYSTEM", 8192)
    _write(esp / "EFI" / "Microsoft" / "Boot" / "bootmgfw.efi", 64 * 1024)
    _write(esp / "EFI" / "Microsoft" / "Boot" / "BCD", 32 * 1024)

    exports = tmp_path / "exports"
    exports.mkdir()
    system_reg = exports / "system.reg"
    system_reg.write_bytes(b"\xff\xfe" + SYSTEM_EXPORT.replace("\n", "\r\n").encode("utf-16-le"))
    software_reg = exports / "software.reg"
    software_reg.write_text(SOFTWARE_EXPORT, encoding="utf-8")

    return {
        "root": root,
        "esp": esp,
        "system_reg": system_reg,
        "software_reg": software_reg,
    }


@pytest.fixture()
def tool_runner(runner: FakeRunner) -> FakeRunner:
    """Native tools answering as they would on a healthy offline target."""
    runner.on(["bcdedit", "/store"], stdout=BCDEDIT_HEALTHY)
    runner.on(["manage-bde", "-status"], stdout=MANAGE_BDE_OFF)
    runner.on(["fsutil", "fsinfo", "volumeinfo"], stdout=FSUTIL_FAT32)
    runner.on(["powershell"], stdout="True\n")
    return runner


@pytest.fixture()
def tool_output() -> dict[str, str]:
    return {
        "bcdedit": BCDEDIT_HEALTHY,
        "bde_off": MANAGE_BDE_OFF,
        "bde_on": MANAGE_BDE_ON,
        "fsutil": FSUTIL_FAT32,
    }


def make_detection(signature_id: str, **evidence: str) -> Detection:
    return Detection(
        id=signature_id,
        title=f"{signature_id} title",
        severity=Severity.CRITICAL,
        confidence=50,
        description="",
        evidence=tuple(sorted(evidence.items())),
        remediation=f"Fix {signature_id} by hand.",
    )


@pytest.fixture()
def detection_factory() -> Callable[..., Detection]:
    return make_detection


@pytest.fixture()
def plan_target(tmp_path: Path) -> PlanTarget:
    """An offline UEFI target whose BCD store and SYSTEM hive exist on disk."""
    store = _write(tmp_path / "esp" / "EFI" / "Microsoft" / "Boot" / "BCD", data=b"bcd-store")
    hive = _write(tmp_path / "target" / "Windows" / "System32" / "config" / "SYSTEM", data=b"regf")
    return PlanTarget(
        target_root="D:\\",
        esp="S:",
        windows_dir="D:\\Windows",
        firmware=Firmware.UEFI,
        live=False,
        volume="D:",
        control_set="ControlSet001",
        bcd_store=str(store),
        bcd_present=True,
        system_hive=str(hive),
        hive_present=True,
        hiberfil=str(tmp_path / "target" / "hiberfil.sys"),
    )
