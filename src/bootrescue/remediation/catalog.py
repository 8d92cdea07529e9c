"""Static, versioned mapping from detection identifiers to remediation actions."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from bootrescue.collector.probes import BIOS_STORE, SYSTEM_HIVE, UEFI_STORE, esp_root, resolve_path, volume_of
from bootrescue.core.models import Detection, Firmware, SystemSnapshot
from bootrescue.remediation.actions import (
    CheckDisk,
    ClearBootSequence,
    ClearPendingRenames,
    ClearSafeBoot,
    DisableFastStartup,
    ManualIntervention,
    RebuildBcd,
    RemediationAction,
    RemoveHibernationFile,
    RemoveRegistryOverride,
    RestoreSystemFiles,
    RevertPendingActions,
    SetServiceStart,
)

# Bumped whenever a mapping changes
TABLE_VERSION = "2024.3"


@dataclass(frozen=True)
class PlanTarget:
    """The subset of the snapshot action factories need, with fallbacks resolved."""

    target_root: str
    esp: str
    windows_dir: str
    firmware: Firmware | None
    live: bool
    volume: str
    control_set: str | None
    bcd_store: str
    bcd_present: bool
    system_hive: str
    hive_present: bool
    hiberfil: str

    @property
    def hive_file(self) -> str | None:
        """None means edit the running system's registry directly."""
        return None if self.live else self.system_hive

    @classmethod
    def from_snapshot(cls, snapshot: SystemSnapshot) -> PlanTarget:
        root = Path(snapshot.target_root)
        firmware = snapshot.firmware.get()

        store = snapshot.bcd_store.get()
        if store is None:
            parts = BIOS_STORE if firmware == Firmware.BIOS else UEFI_STORE
            store_path, store_present = str(resolve_path(esp_root(snapshot.esp), *parts)), False
        else:
            store_path, store_present = store.path, store.exists

        hive = snapshot.system_hive.get()
        if hive is None:
            hive_path, hive_present = str(resolve_path(root, *SYSTEM_HIVE)), False
        else:
            hive_path, hive_present = hive.path, hive.exists and not hive.empty

        hiberfil = snapshot.hiberfil.get()
        return cls(
            target_root=snapshot.target_root,
            esp=snapshot.esp,
            windows_dir=str(resolve_path(root, "Windows")),
            firmware=firmware,
            live=snapshot.live_os.get() is True,
            volume=volume_of(snapshot.target_root),
            control_set=snapshot.control_set.get(),
            bcd_store=store_path,
            bcd_present=store_present,
            system_hive=hive_path,
            hive_present=hive_present,
            hiberfil=hiberfil.path if hiberfil is not None else str(resolve_path(root, "hiberfil.sys")),
        )


ActionFactory = Callable[[Detection, PlanTarget], list[RemediationAction]]


def _common(detection: Detection) -> dict:
    return {"justification": f"{detection.id}: {detection.title}", "detection_ids": (detection.id,)}


def manual(detection: Detection, instructions: str = "") -> ManualIntervention:
    return ManualIntervention(
        detection_id=detection.id,
        instructions=instructions or detection.remediation or "Investigate manually.",
        **_common(detection),
    )


def _listed(detection: Detection, key: str) -> list[str]:
    raw = detection.evidence_map.get(key, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def rebuild_bcd(detection: Detection, target: PlanTarget) -> list[RemediationAction]:
    if target.firmware is None:
        return [manual(detection, "Firmware type is unknown; run bcdboot with the matching /f option.")]
    return [RebuildBcd(
        windows_dir=target.windows_dir, esp=target.esp, firmware=target.firmware,
        **_common(detection),
    )]


def restore_system_files(detection: Detection, target: PlanTarget) -> list[RemediationAction]:
    return [RestoreSystemFiles(
        target_root=target.target_root, windows_dir=target.windows_dir, live=target.live,
        **_common(detection),
    )]


def remove_start_overrides(detection: Detection, target: PlanTarget) -> list[RemediationAction]:
    services = _listed(detection, "services")
    if target.control_set is None or not services:
        return [manual(detection, "Delete the StartOverride subkey of the affected storage services.")]
    return [
        RemoveRegistryOverride(
            hive_file=target.hive_file, control_set=target.control_set, service=name,
            **_common(detection),
        )
        for name in services
    ]


def enable_services(detection: Detection, target: PlanTarget) -> list[RemediationAction]:
    services = _listed(detection, "services")
    if target.control_set is None or not services:
        return [manual(detection, "Set Start=0 on the disabled storage services.")]
    return [
        SetServiceStart(
            hive_file=target.hive_file, control_set=target.control_set, service=name, start=0,
            **_common(detection),
        )
        for name in services
    ]


def clear_boot_sequence(detection: Detection, target: PlanTarget) -> list[RemediationAction]:
    return [ClearBootSequence(store=target.bcd_store, live=target.live, **_common(detection))]


def clear_safe_boot(detection: Detection, target: PlanTarget) -> list[RemediationAction]:
    identifier = detection.evidence_map.get("identifier", "")
    if not identifier:
        return [manual(detection, "Delete the safeboot value from the affected loader entry.")]
    return [ClearSafeBoot(
        store=target.bcd_store, identifier=identifier, live=target.live, **_common(detection)
    )]


def revert_pending_actions(detection: Detection, target: PlanTarget) -> list[RemediationAction]:
    if target.live:
        return [manual(
            detection,
            "Pending servicing can only be reverted offline; boot into WinRE and scan again.",
        )]
    return [RevertPendingActions(image_root=target.target_root, **_common(detection))]


def clear_pending_renames(detection: Detection, target: PlanTarget) -> list[RemediationAction]:
    if target.control_set is None:
        return [manual(detection, "Clear PendingFileRenameOperations in Session Manager.")]
    return [ClearPendingRenames(
        hive_file=target.hive_file, control_set=target.control_set, **_common(detection)
    )]


def disable_fast_startup(detection: Detection, target: PlanTarget) -> list[RemediationAction]:
    if target.control_set is None:
        return [manual(detection, "Set HiberbootEnabled=0 under Session Manager\\Power.")]
    return [DisableFastStartup(
        hive_file=target.hive_file, control_set=target.control_set, **_common(detection)
    )]


def remove_hibernation_file(detection: Detection, target: PlanTarget) -> list[RemediationAction]:
    return [
        RemoveHibernationFile(path=target.hiberfil, live=target.live, **_common(detection)),
        *disable_fast_startup(detection, target),
    ]


def check_disk(detection: Detection, target: PlanTarget) -> list[RemediationAction]:
    return [CheckDisk(volume=target.volume, **_common(detection))]


def manual_only(detection: Detection, target: PlanTarget) -> list[RemediationAction]:
    return [manual(detection)]


REMEDIATION_TABLE: dict[str, list[ActionFactory]] = {
    "BOOT-001": [restore_system_files],
    "BOOT-002": [restore_system_files],
    "BOOT-003": [restore_system_files],
    "BOOT-004": [restore_system_files],
    "BOOT-005": [rebuild_bcd],
    "BOOT-006": [rebuild_bcd],
    "BCD-001": [rebuild_bcd],
    "BCD-002": [rebuild_bcd],
    "BCD-003": [rebuild_bcd],
    "BCD-004": [rebuild_bcd],
    "BCD-005": [rebuild_bcd],
    "BCD-006": [clear_boot_sequence],
    "BCD-007": [clear_safe_boot],
    "DRV-001": [remove_start_overrides],
    "DRV-002": [enable_services],
    "DRV-003": [restore_system_files],
    "DRV-004": [restore_system_files],
    "SVC-001": [revert_pending_actions],
    "SVC-002": [clear_pending_renames],
    "SVC-003": [revert_pending_actions],
    "SEC-001": [rebuild_bcd],
    "SEC-002": [restore_system_files],
    "ENC-001": [manual_only],
    "PWR-001": [remove_hibernation_file],
    "PWR-002": [disable_fast_startup],
    "ESP-001": [manual_only],
    "REG-001": [manual_only],
    "LOG-001": [manual_only],
    "LOG-002": [check_disk],
}
