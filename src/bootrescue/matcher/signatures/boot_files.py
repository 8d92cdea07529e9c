"""Boot file signatures (BOOT-001 through BOOT-006)."""

from __future__ import annotations

from bootrescue.collector.probes import BOOTMGFW, BOOTMGR, HAL, KERNEL, WINLOAD_EFI, WINLOAD_EXE
from bootrescue.core.models import Detection, FileFact, Firmware, Severity, SystemSnapshot
from bootrescue.matcher.signatures.base import Signature


def _loader_role(snapshot: SystemSnapshot) -> str:
    return WINLOAD_EFI if snapshot.firmware.value == Firmware.UEFI else WINLOAD_EXE


def _fact(snapshot: SystemSnapshot, role: str) -> FileFact | None:
    return next((f for f in snapshot.boot_files.value if f.role == role), None)


class BOOT001LoaderMissing(Signature):
    """The OS loader the firmware type needs is absent from System32."""

    signature_id = "BOOT-001"
    title = "OS loader missing"
    severity = Severity.CRITICAL
    confidence = 90
    requires = ("firmware", "boot_files")
    remediation = "Restore system files from the component store."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        role = _loader_role(snapshot)
        fact = _fact(snapshot, role)
        if fact is None or fact.exists:
            return None
        return self._detect(
            f"{role} is missing; the boot manager has nothing to hand control to.",
            {"path": fact.path, "firmware": snapshot.firmware.value.value},
        )


class BOOT002LoaderTruncated(Signature):
    """The OS loader exists but is too small to be a real image."""

    signature_id = "BOOT-002"
    title = "OS loader truncated"
    severity = Severity.CRITICAL
    confidence = 80
    requires = ("firmware", "boot_files")
    remediation = "Restore system files from the component store."

    def __init__(self, min_size: int = 64 * 1024):
        self.min_size = min_size

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        role = _loader_role(snapshot)
        fact = _fact(snapshot, role)
        if fact is None or not fact.exists or fact.size is None or fact.size >= self.min_size:
            return None
        return self._detect(
            f"{role} is {fact.size} bytes, below the {self.min_size}-byte minimum for a loader image.",
            {"path": fact.path, "size": fact.size, "sha256": fact.sha256},
            confidence=90 if fact.size == 0 else None,
        )


class _CoreImageSignature(Signature):
    role = ""
    severity = Severity.CRITICAL
    requires = ("boot_files",)
    remediation = "Restore system files from the component store."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        fact = _fact(snapshot, self.role)
        if fact is None or (fact.exists and not fact.empty):
            return None
        state = "missing" if not fact.exists else "zero-length"
        return self._detect(
            f"{self.role} is {state}.",
            {"path": fact.path, "state": state},
        )


class BOOT003KernelMissing(_CoreImageSignature):
    signature_id = "BOOT-003"
    title = "Kernel image missing or empty"
    confidence = 95
    role = KERNEL


class BOOT004HalMissing(_CoreImageSignature):
    signature_id = "BOOT-004"
    title = "HAL missing or empty"
    confidence = 90
    role = HAL


class BOOT005UefiBootManagerMissing(Signature):
    signature_id = "BOOT-005"
    title = "UEFI boot manager missing"
    severity = Severity.CRITICAL
    confidence = 85
    requires = ("firmware", "boot_files")
    remediation = "Rebuild the boot files and BCD on the EFI system partition."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        if snapshot.firmware.value != Firmware.UEFI:
            return None
        fact = _fact(snapshot, BOOTMGFW)
        if fact is None or fact.exists:
            return None
        return self._detect(
            "bootmgfw.efi is missing from the EFI system partition.",
            {"path": fact.path},
        )


class BOOT006BiosBootManagerMissing(Signature):
    signature_id = "BOOT-006"
    title = "BIOS boot manager missing"
    severity = Severity.CRITICAL
    confidence = 85
    requires = ("firmware", "boot_files")
    remediation = "Rebuild the boot files and BCD on the system partition."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        if snapshot.firmware.value != Firmware.BIOS:
            return None
        fact = _fact(snapshot, BOOTMGR)
        if fact is None or fact.exists:
            return None
        return self._detect(
            "bootmgr is missing from the system partition.",
            {"path": fact.path},
        )
