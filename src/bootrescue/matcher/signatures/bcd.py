"""Boot Configuration Data signatures (BCD-001 through BCD-007)."""

from __future__ import annotations

from bootrescue.collector.probes import volume_of
from bootrescue.core.models import BcdEntry, BcdFacts, Detection, Severity, SystemSnapshot
from bootrescue.matcher.signatures.base import Signature

REBUILD_HINT = "Back up the store and rebuild it with bcdboot from the target Windows directory."


def _default_loader(bcd: BcdFacts) -> BcdEntry | None:
    manager = bcd.boot_manager
    if manager is None or not manager.default:
        return None
    entry = bcd.entry(manager.default)
    return entry if entry is not None and entry.is_os_loader else None


class BCD001StoreMissing(Signature):
    signature_id = "BCD-001"
    title = "BCD store missing"
    severity = Severity.CRITICAL
    confidence = 95
    requires = ("bcd_store",)
    remediation = REBUILD_HINT

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        store = snapshot.bcd_store.value
        if store.exists:
            return None
        return self._detect(
            "The boot manager has no configuration store to read.",
            {"path": store.path},
        )


class BCD002StoreEmpty(Signature):
    signature_id = "BCD-002"
    title = "BCD store empty"
    severity = Severity.CRITICAL
    confidence = 90
    requires = ("bcd_store",)
    remediation = REBUILD_HINT

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        store = snapshot.bcd_store.value
        if not store.empty:
            return None
        return self._detect("The BCD store file is zero bytes.", {"path": store.path, "size": 0})


class BCD003NoOsLoader(Signature):
    signature_id = "BCD-003"
    title = "No OS loader entry"
    severity = Severity.CRITICAL
    confidence = 85
    requires = ("bcd",)
    remediation = REBUILD_HINT

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        bcd = snapshot.bcd.value
        if bcd.os_loaders:
            return None
        return self._detect(
            "The store contains no Windows Boot Loader entry for an installed OS.",
            {"entries": len(bcd.entries)},
        )


class BCD004DeviceBinding(Signature):
    """Loader device/osdevice unresolvable, or bound to another volume."""

    signature_id = "BCD-004"
    title = "Loader device binding broken"
    severity = Severity.CRITICAL
    confidence = 80
    requires = ("bcd",)
    remediation = REBUILD_HINT

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        bcd = snapshot.bcd.value
        default = _default_loader(bcd)
        loaders = (default,) if default is not None else bcd.os_loaders

        for entry in loaders:
            for attr in ("device", "osdevice"):
                value = getattr(entry, attr)
                if not value or value.lower() == "unknown":
                    return self._detect(
                        f"{entry.identifier} has {attr} {value or 'unset'}.",
                        {"identifier": entry.identifier, "device": entry.device,
                         "osdevice": entry.osdevice},
                    )

        target = volume_of(snapshot.target_root)
        if default is None or not target.endswith(":"):
            return None
        bound = (default.osdevice or "").lower()
        if bound.startswith("partition=") and bound[len("partition="):].upper() != target:
            return self._detect(
                f"The default loader boots {default.osdevice}, not the target volume {target}.",
                {"identifier": default.identifier, "osdevice": default.osdevice, "target": target},
                severity=Severity.WARNING,
                confidence=60,
            )
        return None


class BCD005DefaultDangling(Signature):
    signature_id = "BCD-005"
    title = "Default boot entry dangling"
    severity = Severity.WARNING
    confidence = 70
    requires = ("bcd",)
    remediation = REBUILD_HINT

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        bcd = snapshot.bcd.value
        manager = bcd.boot_manager
        if manager is None:
            return None
        if manager.default and bcd.entry(manager.default) is None:
            return self._detect(
                f"The boot manager default {manager.default} does not exist in the store.",
                {"default": manager.default},
            )
        if not manager.default and len(bcd.os_loaders) > 1:
            return self._detect(
                "No default entry is set and several loaders are present.",
                {"loaders": [e.identifier for e in bcd.os_loaders]},
                confidence=50,
            )
        return None


class BCD006BootSequencePending(Signature):
    signature_id = "BCD-006"
    title = "One-time boot sequence pending"
    severity = Severity.WARNING
    confidence = 55
    requires = ("bcd",)
    remediation = "Delete the bootsequence value from the boot manager."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        manager = snapshot.bcd.value.boot_manager
        if manager is None or not manager.boot_sequence:
            return None
        return self._detect(
            "A one-time boot sequence overrides the default entry on next boot.",
            {"bootsequence": manager.boot_sequence},
        )


class BCD007SafeBootStuck(Signature):
    signature_id = "BCD-007"
    title = "Safe boot flag stuck"
    severity = Severity.WARNING
    confidence = 65
    requires = ("bcd",)
    remediation = "Delete the safeboot value from the loader entry."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        for entry in snapshot.bcd.value.os_loaders:
            if entry.safeboot:
                return self._detect(
                    f"{entry.identifier} is set to always start in safe mode ({entry.safeboot}).",
                    {"identifier": entry.identifier, "safeboot": entry.safeboot},
                )
        return None
