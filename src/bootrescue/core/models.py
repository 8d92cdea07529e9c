"""Shared data models used across bootrescue modules."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class Severity(enum.Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "informational"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 2,
    Severity.WARNING: 1,
    Severity.INFO: 0,
}


class RiskTier(enum.Enum):
    READ_ONLY = "read-only"
    LOW = "low"
    HIGH = "high"


class GateState(enum.Enum):
    CLEAR = "clear"
    REQUIRES_PRECONDITION = "requires-precondition"
    BLOCKED = "blocked"


class Intent(enum.Enum):
    PREVIEW = "preview"
    APPLY = "apply"


class RuntimeContext(enum.Enum):
    FULL_OS = "full-os"
    WINRE = "winre"
    WINPE = "winpe"


class Firmware(enum.Enum):
    UEFI = "uefi"
    BIOS = "bios"


class Precondition(enum.Enum):
    BCD_BACKUP = "bcd-backup"
    SYSTEM_HIVE_BACKUP = "system-hive-backup"
    SUSPEND_BITLOCKER = "suspend-bitlocker"
    BUILD_OVERRIDE = "build-override"


class ExecutionStatus(enum.Enum):
    SUCCESS = "success"
    WARNING = "warning"
    FATAL = "fatal"
    WOULD_EXECUTE = "would-execute"
    NOOP = "no-op"
    SAFETY_BLOCKED = "safety-blocked"
    MANUAL = "manual"
    SKIPPED_CANCELLED = "skipped-cancelled"
    SKIPPED_HALTED = "skipped-halted"


class ExecutionOutcome(enum.Enum):
    COMPLETED = "completed"
    HALTED = "halted"
    CANCELLED = "cancelled"
    LOCK_CONTENTION = "lock-contention"


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Probe(Generic[T]):
    """One snapshot attribute: either a collected value or the reason it is missing."""

    value: T | None = None
    reason: str | None = None

    @classmethod
    def ok(cls, value: T) -> Probe[T]:
        return cls(value=value)

    @classmethod
    def unavailable(cls, reason: str) -> Probe[T]:
        return cls(reason=reason or "unavailable")

    @property
    def available(self) -> bool:
        return self.reason is None

    def get(self, default: Any = None) -> Any:
        return self.value if self.available else default


@dataclass(frozen=True)
class FileFact:
    """Presence, size and hash of a single boot-relevant file."""

    role: str
    path: str
    exists: bool
    size: int | None = None
    sha256: str | None = None

    @property
    def empty(self) -> bool:
        return self.exists and self.size == 0


@dataclass(frozen=True)
class BcdEntry:
    identifier: str
    entry_type: str
    description: str = ""
    device: str | None = None
    osdevice: str | None = None
    path: str | None = None
    safeboot: str | None = None
    default: str | None = None
    display_order: tuple[str, ...] = ()
    boot_sequence: tuple[str, ...] = ()

    @property
    def is_boot_manager(self) -> bool:
        return self.identifier.lower() == "{bootmgr}" or (
            self.entry_type.lower() == "windows boot manager"
        )

    @property
    def is_os_loader(self) -> bool:
        """A boot loader entry that starts an installed OS (not WinRE)."""
        if (self.osdevice or "").lower().startswith("ramdisk"):
            return False
        if self.entry_type.lower() == "windows boot loader":
            return True
        return (self.path or "").lower().endswith(("winload.efi", "winload.exe"))


@dataclass(frozen=True)
class BcdFacts:
    entries: tuple[BcdEntry, ...] = ()

    @property
    def boot_manager(self) -> BcdEntry | None:
        for entry in self.entries:
            if entry.identifier.lower() == "{bootmgr}":
                return entry
        return next((e for e in self.entries if e.is_boot_manager), None)

    @property
    def os_loaders(self) -> tuple[BcdEntry, ...]:
        return tuple(e for e in self.entries if e.is_os_loader)

    def entry(self, identifier: str) -> BcdEntry | None:
        wanted = identifier.lower()
        for e in self.entries:
            if e.identifier.lower() == wanted:
                return e
        return None


@dataclass(frozen=True)
class ServiceFact:
    name: str
    present: bool
    start: int | None = None
    start_override: tuple[tuple[str, int], ...] = ()
    image_path: str | None = None
    registry_path: str = ""

    @property
    def override_disables(self) -> bool:
        return any(value == 4 for _, value in self.start_override)


@dataclass(frozen=True)
class BitLockerFacts:
    volume: str
    encrypted: bool
    protection_on: bool
    locked: bool = False
    conversion_status: str = ""
    percent_encrypted: float | None = None

    @property
    def active(self) -> bool:
        return self.encrypted and self.protection_on


@dataclass(frozen=True)
class HostEnvironment:
    """Facts about the machine the engine runs on (not the target)."""

    system_drive: str | None
    runtime: RuntimeContext | None
    build: int | None


SNAPSHOT_FIELDS = (
    "runtime",
    "live_os",
    "host_build",
    "os_build",
    "firmware",
    "control_set",
    "boot_files",
    "drivers",
    "system_hive",
    "bcd_store",
    "bcd",
    "services",
    "pending_renames",
    "servicing_markers",
    "secure_boot",
    "bitlocker",
    "fast_startup",
    "hiberfil",
    "esp_filesystem",
    "crash_dumps",
    "log_references",
    "repair_root_cause",
)

HOST_FIELDS = ("runtime", "live_os", "host_build")


def _unset() -> Probe:
    return Probe.unavailable("not collected")


@dataclass(frozen=True)
class SystemSnapshot:
    """Point-in-time, read-only facts about one target installation."""

    target_root: str
    esp: str
    collected_at: datetime = field(default_factory=datetime.now)
    runtime: Probe[RuntimeContext] = field(default_factory=_unset)
    live_os: Probe[bool] = field(default_factory=_unset)
    host_build: Probe[int] = field(default_factory=_unset)
    os_build: Probe[int] = field(default_factory=_unset)
    firmware: Probe[Firmware] = field(default_factory=_unset)
    control_set: Probe[str] = field(default_factory=_unset)
    boot_files: Probe[tuple[FileFact, ...]] = field(default_factory=_unset)
    drivers: Probe[tuple[FileFact, ...]] = field(default_factory=_unset)
    system_hive: Probe[FileFact] = field(default_factory=_unset)
    bcd_store: Probe[FileFact] = field(default_factory=_unset)
    bcd: Probe[BcdFacts] = field(default_factory=_unset)
    services: Probe[tuple[ServiceFact, ...]] = field(default_factory=_unset)
    pending_renames: Probe[tuple[str, ...]] = field(default_factory=_unset)
    servicing_markers: Probe[tuple[str, ...]] = field(default_factory=_unset)
    secure_boot: Probe[bool] = field(default_factory=_unset)
    bitlocker: Probe[BitLockerFacts] = field(default_factory=_unset)
    fast_startup: Probe[bool] = field(default_factory=_unset)
    hiberfil: Probe[FileFact] = field(default_factory=_unset)
    esp_filesystem: Probe[str] = field(default_factory=_unset)
    crash_dumps: Probe[tuple[FileFact, ...]] = field(default_factory=_unset)
    log_references: Probe[tuple[str, ...]] = field(default_factory=_unset)
    repair_root_cause: Probe[str | None] = field(default_factory=_unset)

    def probe(self, name: str) -> Probe:
        if name not in SNAPSHOT_FIELDS:
            raise KeyError(name)
        return getattr(self, name)

    def probes(self) -> list[tuple[str, Probe]]:
        return [(f.name, getattr(self, f.name)) for f in fields(self) if f.name in SNAPSHOT_FIELDS]

    @property
    def unavailable(self) -> dict[str, str]:
        return {name: p.reason or "" for name, p in self.probes() if not p.available}

    @property
    def complete(self) -> bool:
        return not self.unavailable

    def file(self, role: str) -> FileFact | None:
        """Look up a boot file or driver by role across the file probes."""
        for group in (self.boot_files, self.drivers):
            for fact in group.get(()) or ():
                if fact.role == role:
                    return fact
        return None


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class Detection:
    """Output of one signature; compared and hashed by identifier."""

    id: str
    title: str
    severity: Severity
    confidence: int
    description: str
    evidence: tuple[tuple[str, str], ...] = ()
    remediation: str = ""

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Detection):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def evidence_map(self) -> dict[str, str]:
        return dict(self.evidence)

    def sort_key(self) -> tuple[int, int, str]:
        return (-self.severity.rank, -self.confidence, self.id)


@dataclass(frozen=True)
class MatchSkip:
    signature_id: str
    fields: tuple[str, ...]
    reason: str


@dataclass(frozen=True)
class MatchResult:
    detections: tuple[Detection, ...] = ()
    skipped: tuple[MatchSkip, ...] = ()

    @property
    def critical_count(self) -> int:
        return sum(1 for d in self.detections if d.severity == Severity.CRITICAL)


# ---------------------------------------------------------------------------
# Safety
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SafetyState:
    """Execution-context facts; unknown values count as the unsafe choice."""

    live_os: bool | None
    bitlocker_active: bool | None
    recovery_build: int | None
    target_build: int | None

    @property
    def live(self) -> bool:
        return self.live_os is not False

    @property
    def encryption_active(self) -> bool:
        return self.bitlocker_active is not False

    @property
    def build_mismatch(self) -> bool:
        if self.recovery_build is None or self.target_build is None:
            return True
        return self.recovery_build < self.target_build


@dataclass(frozen=True)
class GateDecision:
    state: GateState
    reasons: tuple[str, ...] = ()
    pending: tuple[Precondition, ...] = ()

    @property
    def clear(self) -> bool:
        return self.state == GateState.CLEAR


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ActionLogEntry:
    timestamp: datetime
    mode: Intent
    tag: str
    action: str
    status: str
    command: str = ""
    exit_code: int | None = None
    output: str = ""

    @property
    def dry_run(self) -> bool:
        return self.mode == Intent.PREVIEW


@dataclass(frozen=True)
class ExecutionResult:
    action: str
    kind: str
    status: ExecutionStatus
    command: str = ""
    exit_code: int | None = None
    output: str = ""
    gate: GateState | None = None
    reason: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None


@dataclass(frozen=True)
class ExecutionReport:
    outcome: ExecutionOutcome
    apply: bool
    results: tuple[ExecutionResult, ...] = ()
    errors: tuple[Exception, ...] = ()
    log_path: str = ""

    @property
    def fatal(self) -> bool:
        return any(r.status == ExecutionStatus.FATAL for r in self.results)

    @property
    def blocked(self) -> bool:
        return any(r.status == ExecutionStatus.SAFETY_BLOCKED for r in self.results)
