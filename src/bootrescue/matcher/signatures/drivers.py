"""Storage driver signatures (DRV-001 through DRV-004)."""

from __future__ import annotations

from bootrescue.core.models import Detection, Severity, SystemSnapshot
from bootrescue.matcher.signatures.base import Signature

# Services whose disabled state leaves the boot volume unreachable
CORE_STORAGE_SERVICES = ("disk", "volmgr", "partmgr", "mountmgr", "storahci", "stornvme")


class DRV001StartOverrideTrap(Signature):
    """A StartOverride subkey disables a storage driver despite Start=0.

    Typical after switching the controller between RAID/AHCI/NVMe modes.
    """

    signature_id = "DRV-001"
    title = "Storage driver disabled by StartOverride"
    severity = Severity.CRITICAL
    confidence = 90
    requires = ("services",)
    remediation = "Delete the StartOverride subkey of each affected service."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        trapped = [s for s in snapshot.services.value if s.present and s.override_disables]
        if not trapped:
            return None
        return self._detect(
            "StartOverride disables: " + ", ".join(s.name for s in trapped) + ".",
            {
                "services": [s.name for s in trapped],
                "keys": [f"{s.registry_path}\\StartOverride" for s in trapped],
                "overrides": [f"{s.name}\\{n}={v}" for s in trapped for n, v in s.start_override],
            },
        )


class DRV002StorageServiceDisabled(Signature):
    signature_id = "DRV-002"
    title = "Boot-critical storage service disabled"
    severity = Severity.CRITICAL
    confidence = 75
    requires = ("services",)
    remediation = "Set the service Start value back to 0 (boot start)."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        disabled = [
            s for s in snapshot.services.value
            if s.present and s.start == 4 and s.name.lower() in CORE_STORAGE_SERVICES
        ]
        if not disabled:
            return None
        return self._detect(
            "Start=4 (disabled) on: " + ", ".join(s.name for s in disabled) + ".",
            {"services": [s.name for s in disabled]},
        )


class DRV003ZeroLengthDriver(Signature):
    signature_id = "DRV-003"
    title = "Zero-length critical driver"
    severity = Severity.CRITICAL
    confidence = 90
    requires = ("drivers",)
    remediation = "Restore system files from the component store."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        empty = [d for d in snapshot.drivers.value if d.empty]
        if not empty:
            return None
        return self._detect(
            "Zero-byte driver images: " + ", ".join(d.role for d in empty) + ".",
            {"drivers": [d.role for d in empty], "paths": [d.path for d in empty]},
        )


class DRV004DriverMissing(Signature):
    signature_id = "DRV-004"
    title = "Critical driver missing"
    severity = Severity.CRITICAL
    confidence = 70
    requires = ("drivers",)
    remediation = "Restore system files from the component store."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        missing = [d for d in snapshot.drivers.value if not d.exists]
        if not missing:
            return None
        return self._detect(
            "Missing driver images: " + ", ".join(d.role for d in missing) + ".",
            {"drivers": [d.role for d in missing]},
        )
