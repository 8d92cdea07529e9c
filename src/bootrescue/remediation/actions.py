"""Typed remediation actions.

Each variant is a frozen value owning its argument validation, risk tier,
command line, preconditions and result classification. Commands are built
as argument vectors from validated fields, never from free-form strings.

Plans show backup destinations under the ``<backup>`` placeholder so that
two previews of the same target render identical command text; the
executor substitutes the real session directory when it runs them.
"""

from __future__ import annotations

import re
import shutil
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, fields
from pathlib import Path, PureWindowsPath
from typing import ClassVar, Sequence

from bootrescue.collector.registry import mount_name, mounted_hive
from bootrescue.core.errors import ActionValidationError
from bootrescue.core.models import ExecutionStatus, Firmware, Precondition, RiskTier
from bootrescue.core.runner import EXIT_OS_ERROR, CommandResult, CommandRunner, format_command

BACKUP_PLACEHOLDER = "<backup>"

PHASE_BACKUP = 0
PHASE_PREREQUISITE = 1
PHASE_REPAIR = 2
PHASE_FOLLOWUP = 3

_SERVICE_NAME = re.compile(r"^[A-Za-z0-9_.\-]+$")
_CONTROL_SET = re.compile(r"^ControlSet\d{3}$")
_BCD_ID = re.compile(r"^\{[A-Za-z0-9\-]+\}$")
_DRIVE = re.compile(r"^[A-Za-z]:\\?$")


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ActionValidationError(message)


def _require_path(value: str, name: str) -> None:
    _require(bool(value and value.strip()), f"{name} must not be empty")
    _require('"' not in value and "\n" not in value, f"{name} contains invalid characters")


def _missing_value(result: CommandResult) -> bool:
    return not result.success and "unable to find" in result.output.lower()


def _run_steps(
    runner: CommandRunner,
    steps: Sequence[Sequence[str]],
    timeout: int | None,
    missing_ok: bool = False,
) -> CommandResult:
    """Run commands in order, stopping at the first real failure."""
    outputs: list[str] = []
    duration = 0.0
    last: CommandResult | None = None
    for argv in steps:
        result = runner.run(argv, timeout=timeout)
        duration += result.duration_seconds
        if result.output:
            outputs.append(result.output)
        if not result.success and not (missing_ok and _missing_value(result)):
            return CommandResult(result.argv, result.returncode, "\n".join(outputs), "", duration)
        last = result
    argv = last.argv if last is not None else ()
    return CommandResult(argv, 0, "\n".join(outputs), "", duration)


def _key_value(value: object) -> str:
    if isinstance(value, Firmware):
        return value.value
    return str(value)


def _file_op(argv: tuple[str, ...], op) -> CommandResult:
    start = time.monotonic()
    try:
        message = op()
    except OSError as e:
        return CommandResult(argv, EXIT_OS_ERROR, stderr=str(e), duration_seconds=time.monotonic() - start)
    return CommandResult(argv, 0, stdout=message, duration_seconds=time.monotonic() - start)


@dataclass(frozen=True, kw_only=True)
class RemediationAction:
    """Base for every action variant."""

    kind: ClassVar[str] = ""
    risk: ClassVar[RiskTier] = RiskTier.LOW
    destructive: ClassVar[bool] = False
    # Writes the target volume or its measured boot path (needs BitLocker suspended)
    offline_write: ClassVar[bool] = False
    backups: ClassVar[tuple[Precondition, ...]] = ()
    satisfies: ClassVar[Precondition | None] = None
    phase: ClassVar[int] = PHASE_REPAIR
    after: ClassVar[tuple[str, ...]] = ()
    long_running: ClassVar[bool] = False
    fatal_on_failure: ClassVar[bool] = False

    justification: str = ""
    detection_ids: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        pass

    @property
    def key(self) -> str:
        """Stable identity used for deduplication: kind plus target fields."""
        parts = [
            f"{f.name}={_key_value(getattr(self, f.name))}"
            for f in fields(self)
            if f.name not in ("justification", "detection_ids")
        ]
        return f"{self.kind}[{', '.join(parts)}]"

    @property
    def summary(self) -> str:
        return self.kind

    @property
    def noop(self) -> bool:
        return False

    def steps(self, backup_dir: str = BACKUP_PLACEHOLDER) -> list[list[str]]:
        return []

    def command_text(self, backup_dir: str = BACKUP_PLACEHOLDER) -> str:
        return " && ".join(format_command(argv) for argv in self.steps(backup_dir))

    def run(self, runner: CommandRunner, backup_dir: str, timeout: int | None = None) -> CommandResult:
        return _run_steps(runner, self.steps(backup_dir), timeout)

    def classify(self, result: CommandResult) -> ExecutionStatus:
        if result.success:
            return ExecutionStatus.SUCCESS
        return ExecutionStatus.FATAL if self.fatal_on_failure else ExecutionStatus.WARNING


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------

@dataclass(frozen=True, kw_only=True)
class BackupBcd(RemediationAction):
    kind: ClassVar[str] = "backup-bcd"
    risk: ClassVar[RiskTier] = RiskTier.READ_ONLY
    satisfies: ClassVar[Precondition | None] = Precondition.BCD_BACKUP
    phase: ClassVar[int] = PHASE_BACKUP
    fatal_on_failure: ClassVar[bool] = True

    store: str
    present: bool = True
    live: bool = False

    def validate(self) -> None:
        _require_path(self.store, "store")

    @property
    def summary(self) -> str:
        if not self.present:
            return "Back up BCD store (nothing to back up)"
        return "Back up BCD store"

    @property
    def noop(self) -> bool:
        return not self.present

    def artifact(self, backup_dir: str) -> str:
        return str(Path(backup_dir) / "BCD") if backup_dir != BACKUP_PLACEHOLDER else f"{backup_dir}\\BCD"

    def steps(self, backup_dir: str = BACKUP_PLACEHOLDER) -> list[list[str]]:
        if self.noop:
            return []
        if self.live:
            return [["bcdedit", "/export", self.artifact(backup_dir)]]
        return [["copy", self.store, self.artifact(backup_dir)]]

    def run(self, runner: CommandRunner, backup_dir: str, timeout: int | None = None) -> CommandResult:
        if self.live:
            return super().run(runner, backup_dir, timeout)
        target = self.artifact(backup_dir)

        def copy() -> str:
            shutil.copyfile(self.store, target)
            return f"copied {Path(target).stat().st_size} bytes to {target}"

        return _file_op(("copy", self.store, target), copy)


@dataclass(frozen=True, kw_only=True)
class BackupRegistryHive(RemediationAction):
    kind: ClassVar[str] = "backup-registry-hive"
    risk: ClassVar[RiskTier] = RiskTier.READ_ONLY
    satisfies: ClassVar[Precondition | None] = Precondition.SYSTEM_HIVE_BACKUP
    phase: ClassVar[int] = PHASE_BACKUP
    fatal_on_failure: ClassVar[bool] = True

    hive_file: str
    hive: str = "SYSTEM"
    present: bool = True
    live: bool = False

    def validate(self) -> None:
        _require_path(self.hive_file, "hive_file")
        _require(self.hive.upper() in ("SYSTEM", "SOFTWARE"), f"unsupported hive {self.hive!r}")

    @property
    def summary(self) -> str:
        return f"Back up {self.hive} hive"

    @property
    def noop(self) -> bool:
        return not self.present

    def artifact(self, backup_dir: str) -> str:
        if backup_dir == BACKUP_PLACEHOLDER:
            return f"{backup_dir}\\{self.hive.upper()}"
        return str(Path(backup_dir) / self.hive.upper())

    def steps(self, backup_dir: str = BACKUP_PLACEHOLDER) -> list[list[str]]:
        if self.noop:
            return []
        if self.live:
            return [["reg", "save", f"HKLM\\{self.hive.upper()}", self.artifact(backup_dir), "/y"]]
        return [["copy", self.hive_file, self.artifact(backup_dir)]]

    def run(self, runner: CommandRunner, backup_dir: str, timeout: int | None = None) -> CommandResult:
        if self.live:
            return super().run(runner, backup_dir, timeout)
        target = self.artifact(backup_dir)

        def copy() -> str:
            shutil.copyfile(self.hive_file, target)
            return f"copied {Path(target).stat().st_size} bytes to {target}"

        return _file_op(("copy", self.hive_file, target), copy)


# ---------------------------------------------------------------------------
# Prerequisites
# ---------------------------------------------------------------------------

@dataclass(frozen=True, kw_only=True)
class SuspendEncryption(RemediationAction):
    """Suspend BitLocker protectors for one reboot.

    A failure is a warning: the gate re-check then blocks every write that
    depended on the suspension.
    """

    kind: ClassVar[str] = "suspend-encryption"
    risk: ClassVar[RiskTier] = RiskTier.LOW
    satisfies: ClassVar[Precondition | None] = Precondition.SUSPEND_BITLOCKER
    phase: ClassVar[int] = PHASE_PREREQUISITE

    volume: str

    def validate(self) -> None:
        _require_path(self.volume, "volume")

    @property
    def summary(self) -> str:
        return f"Suspend BitLocker on {self.volume}"

    def steps(self, backup_dir: str = BACKUP_PLACEHOLDER) -> list[list[str]]:
        return [["manage-bde", "-protectors", "-disable", self.volume, "-RebootCount", "1"]]


# ---------------------------------------------------------------------------
# Boot configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True, kw_only=True)
class RebuildBcd(RemediationAction):
    kind: ClassVar[str] = "rebuild-bcd"
    risk: ClassVar[RiskTier] = RiskTier.HIGH
    destructive: ClassVar[bool] = True
    offline_write: ClassVar[bool] = True
    backups: ClassVar[tuple[Precondition, ...]] = (Precondition.BCD_BACKUP,)
    after: ClassVar[tuple[str, ...]] = ("restore-system-files",)
    fatal_on_failure: ClassVar[bool] = True

    windows_dir: str
    esp: str
    firmware: Firmware

    def validate(self) -> None:
        _require_path(self.windows_dir, "windows_dir")
        _require_path(self.esp, "esp")
        _require(isinstance(self.firmware, Firmware), "firmware must be a Firmware value")

    @property
    def summary(self) -> str:
        return f"Rebuild BCD and boot files on {self.esp} ({self.firmware.value.upper()})"

    def steps(self, backup_dir: str = BACKUP_PLACEHOLDER) -> list[list[str]]:
        esp = self.esp.rstrip("\\")
        if _DRIVE.match(self.esp) or len(esp) == 1:
            esp = esp[0].upper() + ":"
        fw = "UEFI" if self.firmware == Firmware.UEFI else "BIOS"
        return [["bcdboot", self.windows_dir, "/s", esp, "/f", fw]]


@dataclass(frozen=True, kw_only=True)
class ClearBootSequence(RemediationAction):
    kind: ClassVar[str] = "clear-boot-sequence"
    risk: ClassVar[RiskTier] = RiskTier.LOW
    destructive: ClassVar[bool] = True
    backups: ClassVar[tuple[Precondition, ...]] = (Precondition.BCD_BACKUP,)
    fatal_on_failure: ClassVar[bool] = True

    store: str
    live: bool = False

    def validate(self) -> None:
        _require_path(self.store, "store")

    @property
    def summary(self) -> str:
        return "Clear one-time boot sequence"

    def steps(self, backup_dir: str = BACKUP_PLACEHOLDER) -> list[list[str]]:
        store = [] if self.live else ["/store", self.store]
        return [["bcdedit", *store, "/deletevalue", "{bootmgr}", "bootsequence"]]


@dataclass(frozen=True, kw_only=True)
class ClearSafeBoot(RemediationAction):
    kind: ClassVar[str] = "clear-safe-boot"
    risk: ClassVar[RiskTier] = RiskTier.LOW
    destructive: ClassVar[bool] = True
    backups: ClassVar[tuple[Precondition, ...]] = (Precondition.BCD_BACKUP,)
    fatal_on_failure: ClassVar[bool] = True

    store: str
    identifier: str
    live: bool = False

    def validate(self) -> None:
        _require_path(self.store, "store")
        _require(bool(_BCD_ID.match(self.identifier)), f"invalid BCD identifier {self.identifier!r}")

    @property
    def summary(self) -> str:
        return f"Clear safe-boot flag on {self.identifier}"

    def steps(self, backup_dir: str = BACKUP_PLACEHOLDER) -> list[list[str]]:
        store = [] if self.live else ["/store", self.store]
        return [["bcdedit", *store, "/deletevalue", self.identifier, "safeboot"]]


# ---------------------------------------------------------------------------
# System files and servicing
# ---------------------------------------------------------------------------

@dataclass(frozen=True, kw_only=True)
class RestoreSystemFiles(RemediationAction):
    kind: ClassVar[str] = "restore-system-files"
    risk: ClassVar[RiskTier] = RiskTier.HIGH
    offline_write: ClassVar[bool] = True
    after: ClassVar[tuple[str, ...]] = ("revert-pending-actions",)
    long_running: ClassVar[bool] = True

    target_root: str
    windows_dir: str
    live: bool = False

    def validate(self) -> None:
        _require_path(self.target_root, "target_root")
        _require_path(self.windows_dir, "windows_dir")

    @property
    def summary(self) -> str:
        return "Scan and restore protected system files"

    def steps(self, backup_dir: str = BACKUP_PLACEHOLDER) -> list[list[str]]:
        if self.live:
            return [["sfc", "/scannow"]]
        return [[
            "sfc", "/scannow",
            f"/offbootdir={self.target_root}",
            f"/offwindir={self.windows_dir}",
        ]]


@dataclass(frozen=True, kw_only=True)
class RevertPendingActions(RemediationAction):
    """Roll back an interrupted servicing transaction. Offline images only."""

    kind: ClassVar[str] = "revert-pending-actions"
    risk: ClassVar[RiskTier] = RiskTier.HIGH
    offline_write: ClassVar[bool] = True
    long_running: ClassVar[bool] = True

    image_root: str

    def validate(self) -> None:
        _require_path(self.image_root, "image_root")

    @property
    def summary(self) -> str:
        return "Revert pending component store actions"

    def steps(self, backup_dir: str = BACKUP_PLACEHOLDER) -> list[list[str]]:
        return [["dism", f"/image:{self.image_root}", "/cleanup-image", "/revertpendingactions"]]


@dataclass(frozen=True, kw_only=True)
class CheckDisk(RemediationAction):
    kind: ClassVar[str] = "check-disk"
    risk: ClassVar[RiskTier] = RiskTier.READ_ONLY
    phase: ClassVar[int] = PHASE_FOLLOWUP
    long_running: ClassVar[bool] = True

    volume: str

    def validate(self) -> None:
        _require_path(self.volume, "volume")

    @property
    def summary(self) -> str:
        return f"Scan {self.volume} for file system errors"

    def steps(self, backup_dir: str = BACKUP_PLACEHOLDER) -> list[list[str]]:
        return [["chkdsk", self.volume, "/scan"]]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

@dataclass(frozen=True, kw_only=True)
class _RegistryEdit(RemediationAction, ABC):
    """Edits the target SYSTEM hive; offline hives are loaded for the edit."""

    hive_file: str | None
    control_set: str

    def validate(self) -> None:
        if self.hive_file is not None:
            _require_path(self.hive_file, "hive_file")
        _require(bool(_CONTROL_SET.match(self.control_set)), f"invalid control set {self.control_set!r}")

    @property
    def root(self) -> str:
        return "HKLM\\SYSTEM" if self.hive_file is None else mount_name("SYSTEM")

    missing_ok: ClassVar[bool] = False

    @abstractmethod
    def edits(self) -> list[list[str]]:
        """The ``reg`` commands to run against :attr:`root`."""

    def steps(self, backup_dir: str = BACKUP_PLACEHOLDER) -> list[list[str]]:
        if self.hive_file is None:
            return self.edits()
        return [
            ["reg", "load", self.root, self.hive_file],
            *self.edits(),
            ["reg", "unload", self.root],
        ]

    def run(self, runner: CommandRunner, backup_dir: str, timeout: int | None = None) -> CommandResult:
        with mounted_hive(runner, self.hive_file) as mounted:
            if isinstance(mounted, CommandResult):
                return mounted
            return _run_steps(runner, self.edits(), timeout, missing_ok=self.missing_ok)


@dataclass(frozen=True, kw_only=True)
class RemoveRegistryOverride(_RegistryEdit):
    kind: ClassVar[str] = "remove-registry-override"
    risk: ClassVar[RiskTier] = RiskTier.LOW
    missing_ok: ClassVar[bool] = True

    service: str

    def validate(self) -> None:
        super().validate()
        _require(bool(_SERVICE_NAME.match(self.service)), f"invalid service name {self.service!r}")

    @property
    def summary(self) -> str:
        return f"Remove StartOverride from {self.service}"

    @property
    def registry_path(self) -> str:
        return f"{self.root}\\{self.control_set}\\Services\\{self.service}\\StartOverride"

    def edits(self) -> list[list[str]]:
        return [["reg", "delete", self.registry_path, "/f"]]


@dataclass(frozen=True, kw_only=True)
class SetServiceStart(_RegistryEdit):
    kind: ClassVar[str] = "set-service-start"
    risk: ClassVar[RiskTier] = RiskTier.LOW

    service: str
    start: int = 0

    def validate(self) -> None:
        super().validate()
        _require(bool(_SERVICE_NAME.match(self.service)), f"invalid service name {self.service!r}")
        _require(self.start in (0, 1, 2, 3), f"start type must be 0-3, got {self.start!r}")

    @property
    def summary(self) -> str:
        return f"Set {self.service} Start={self.start}"

    def edits(self) -> list[list[str]]:
        key = f"{self.root}\\{self.control_set}\\Services\\{self.service}"
        return [["reg", "add", key, "/v", "Start", "/t", "REG_DWORD", "/d", str(self.start), "/f"]]


@dataclass(frozen=True, kw_only=True)
class ClearPendingRenames(_RegistryEdit):
    kind: ClassVar[str] = "clear-pending-renames"
    risk: ClassVar[RiskTier] = RiskTier.LOW
    destructive: ClassVar[bool] = True
    backups: ClassVar[tuple[Precondition, ...]] = (Precondition.SYSTEM_HIVE_BACKUP,)
    missing_ok: ClassVar[bool] = True

    @property
    def summary(self) -> str:
        return "Clear pending file rename operations"

    def edits(self) -> list[list[str]]:
        key = f"{self.root}\\{self.control_set}\\Control\\Session Manager"
        return [
            ["reg", "delete", key, "/v", name, "/f"]
            for name in ("PendingFileRenameOperations", "PendingFileRenameOperations2")
        ]


@dataclass(frozen=True, kw_only=True)
class DisableFastStartup(_RegistryEdit):
    kind: ClassVar[str] = "disable-fast-startup"
    risk: ClassVar[RiskTier] = RiskTier.LOW

    @property
    def summary(self) -> str:
        return "Disable fast startup"

    def edits(self) -> list[list[str]]:
        key = f"{self.root}\\{self.control_set}\\Control\\Session Manager\\Power"
        return [["reg", "add", key, "/v", "HiberbootEnabled", "/t", "REG_DWORD", "/d", "0", "/f"]]


# ---------------------------------------------------------------------------
# Power
# ---------------------------------------------------------------------------

@dataclass(frozen=True, kw_only=True)
class RemoveHibernationFile(RemediationAction):
    """Discard the saved session so the next boot is a cold boot."""

    kind: ClassVar[str] = "remove-hibernation-file"
    risk: ClassVar[RiskTier] = RiskTier.HIGH
    offline_write: ClassVar[bool] = True

    path: str
    live: bool = False

    def validate(self) -> None:
        _require_path(self.path, "path")
        _require(PureWindowsPath(self.path).name.lower() == "hiberfil.sys", "path must name hiberfil.sys")

    @property
    def summary(self) -> str:
        return "Remove hibernation file"

    def steps(self, backup_dir: str = BACKUP_PLACEHOLDER) -> list[list[str]]:
        if self.live:
            return [["powercfg", "/h", "off"]]
        return [["del", "/a", self.path]]

    def run(self, runner: CommandRunner, backup_dir: str, timeout: int | None = None) -> CommandResult:
        if self.live:
            return super().run(runner, backup_dir, timeout)

        def delete() -> str:
            Path(self.path).unlink(missing_ok=True)
            return f"removed {self.path}"

        return _file_op(("del", "/a", self.path), delete)


# ---------------------------------------------------------------------------
# Placeholder
# ---------------------------------------------------------------------------

@dataclass(frozen=True, kw_only=True)
class ManualIntervention(RemediationAction):
    """Never executed; tells the operator what only a human can do."""

    kind: ClassVar[str] = "manual-intervention"
    risk: ClassVar[RiskTier] = RiskTier.READ_ONLY
    phase: ClassVar[int] = PHASE_FOLLOWUP

    detection_id: str
    instructions: str

    def validate(self) -> None:
        _require(bool(self.detection_id), "detection_id must not be empty")

    @property
    def summary(self) -> str:
        return f"Manual intervention for {self.detection_id}"


ALL_ACTIONS: tuple[type[RemediationAction], ...] = (
    BackupBcd,
    BackupRegistryHive,
    SuspendEncryption,
    RebuildBcd,
    ClearBootSequence,
    ClearSafeBoot,
    RestoreSystemFiles,
    RevertPendingActions,
    CheckDisk,
    RemoveRegistryOverride,
    SetServiceStart,
    ClearPendingRenames,
    DisableFastStartup,
    RemoveHibernationFile,
    ManualIntervention,
)
