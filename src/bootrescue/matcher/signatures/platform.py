"""Firmware, encryption and power signatures (SEC, ENC, PWR, ESP)."""

from __future__ import annotations

from bootrescue.collector.probes import WINLOAD_EFI, WINLOAD_EXE
from bootrescue.core.models import Detection, Firmware, Severity, SystemSnapshot
from bootrescue.matcher.signatures.base import Signature

CORRUPT_HIBERFIL_BYTES = 1024 * 1024
FAT_FILESYSTEMS = ("FAT32", "FAT", "FAT16", "FAT12")


class SEC001LegacyLoaderUnderSecureBoot(Signature):
    signature_id = "SEC-001"
    title = "Secure Boot with legacy winload.exe loader"
    severity = Severity.CRITICAL
    confidence = 85
    requires = ("secure_boot", "bcd")
    remediation = "Rebuild the BCD for UEFI so loaders point at winload.efi."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        if not snapshot.secure_boot.value:
            return None
        legacy = [
            e for e in snapshot.bcd.value.os_loaders
            if (e.path or "").lower().endswith("winload.exe")
        ]
        if not legacy:
            return None
        return self._detect(
            "Secure Boot firmware will refuse the BIOS loader winload.exe.",
            {"entries": [e.identifier for e in legacy], "path": legacy[0].path},
        )


class SEC002BiosStoreUnderSecureBoot(Signature):
    signature_id = "SEC-002"
    title = "Secure Boot on a BIOS-style installation"
    severity = Severity.CRITICAL
    confidence = 75
    requires = ("secure_boot", "firmware", "boot_files")
    remediation = "Restore system files so winload.efi is present."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        if not snapshot.secure_boot.value or snapshot.firmware.value != Firmware.UEFI:
            return None
        files = {f.role: f for f in snapshot.boot_files.value}
        efi, exe = files.get(WINLOAD_EFI), files.get(WINLOAD_EXE)
        if efi is None or exe is None or efi.exists or not exe.exists:
            return None
        return self._detect(
            "Only winload.exe exists; UEFI Secure Boot needs winload.efi.",
            {"winload.efi": efi.path, "winload.exe": exe.path},
        )


class ENC001VolumeLocked(Signature):
    signature_id = "ENC-001"
    title = "BitLocker volume locked"
    severity = Severity.CRITICAL
    confidence = 95
    requires = ("bitlocker",)
    remediation = "Unlock the volume with the recovery key (manage-bde -unlock) and scan again."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        facts = snapshot.bitlocker.value
        if not facts.locked:
            return None
        return self._detect(
            f"{facts.volume} is locked; its contents cannot be inspected or repaired.",
            {"volume": facts.volume, "conversion": facts.conversion_status},
        )


class PWR001CorruptHibernationFile(Signature):
    signature_id = "PWR-001"
    title = "Fast startup with corrupt hibernation file"
    severity = Severity.WARNING
    confidence = 75
    requires = ("fast_startup", "hiberfil")
    remediation = "Remove hiberfil.sys and disable fast startup."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        hiberfil = snapshot.hiberfil.value
        if not snapshot.fast_startup.value or not hiberfil.exists:
            return None
        if hiberfil.size is None or hiberfil.size >= CORRUPT_HIBERFIL_BYTES:
            return None
        return self._detect(
            f"hiberfil.sys is only {hiberfil.size} bytes; resume from it will fail.",
            {"path": hiberfil.path, "size": hiberfil.size},
        )


class PWR002HibernatedSession(Signature):
    signature_id = "PWR-002"
    title = "Hibernated session over pending repair"
    severity = Severity.INFO
    confidence = 35
    requires = ("fast_startup", "hiberfil")
    remediation = "Disable fast startup so the next boot is a cold boot."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        hiberfil = snapshot.hiberfil.value
        if not snapshot.fast_startup.value or not hiberfil.exists:
            return None
        if hiberfil.size is None or hiberfil.size < CORRUPT_HIBERFIL_BYTES:
            return None
        return self._detect(
            "Fast startup will resume the saved kernel session and discard offline repairs.",
            {"path": hiberfil.path, "size": hiberfil.size},
        )


class ESP001NotFat(Signature):
    signature_id = "ESP-001"
    title = "EFI system partition not FAT32"
    severity = Severity.CRITICAL
    confidence = 85
    requires = ("firmware", "esp_filesystem")
    remediation = "Recreate the EFI system partition as FAT32; this needs manual partitioning."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        if snapshot.firmware.value != Firmware.UEFI:
            return None
        fs = snapshot.esp_filesystem.value
        if fs.upper() in FAT_FILESYSTEMS:
            return None
        return self._detect(
            f"UEFI firmware cannot read a {fs} system partition.",
            {"filesystem": fs, "esp": snapshot.esp},
        )
