"""Each signature fires on its failure pattern and stays quiet on a healthy snapshot."""

from __future__ import annotations

import pytest

from bootrescue.core.config import BootRescueConfig
from bootrescue.core.models import (
    BcdEntry,
    BcdFacts,
    BitLockerFacts,
    FileFact,
    Firmware,
    ServiceFact,
    Severity,
)
from bootrescue.matcher.engine import SignatureMatcher, build_signatures


def ids(snapshot) -> list[str]:
    return [d.id for d in SignatureMatcher().match(snapshot).detections]


def detection(snapshot, signature_id):
    for d in SignatureMatcher().match(snapshot).detections:
        if d.id == signature_id:
            return d
    raise AssertionError(f"{signature_id} did not fire")


def loader(identifier="{current}", **kwargs) -> BcdEntry:
    values = dict(
        entry_type="Windows Boot Loader", device="partition=D:", osdevice="partition=D:",
        path="\\Windows\\system32\\winload.efi",
    )
    values.update(kwargs)
    return BcdEntry(identifier=identifier, **values)


def manager(**kwargs) -> BcdEntry:
    values = dict(entry_type="Windows Boot Manager", default="{current}", display_order=("{current}",))
    values.update(kwargs)
    return BcdEntry(identifier="{bootmgr}", **values)


def test_healthy_snapshot_is_quiet(snapshot_factory):
    assert ids(snapshot_factory()) == []


class TestBootFiles:
    def test_uefi_loader_missing(self, snapshot_factory, file_changer):
        base = snapshot_factory()
        snap = snapshot_factory(boot_files=file_changer(base.boot_files.value, "winload.efi", exists=False))
        assert "BOOT-001" in ids(snap)

    def test_bios_uses_winload_exe(self, snapshot_factory, file_changer):
        base = snapshot_factory()
        files = file_changer(base.boot_files.value, "winload.efi", exists=False)
        files = file_changer(files, "bootmgr", exists=True, size=400 * 1024)
        snap = snapshot_factory(firmware=Firmware.BIOS, boot_files=files)
        assert "BOOT-001" not in ids(snap)

    def test_truncated_loader(self, snapshot_factory, file_changer):
        base = snapshot_factory()
        snap = snapshot_factory(boot_files=file_changer(base.boot_files.value, "winload.efi", size=512))
        found = detection(snap, "BOOT-002")
        assert found.confidence == 80
        assert found.evidence_map["size"] == "512"

    def test_zero_byte_loader_raises_confidence(self, snapshot_factory, file_changer):
        base = snapshot_factory()
        snap = snapshot_factory(boot_files=file_changer(base.boot_files.value, "winload.efi", size=0))
        assert detection(snap, "BOOT-002").confidence == 90

    def test_minimum_loader_size_is_configurable(self, snapshot_factory, file_changer):
        base = snapshot_factory()
        snap = snapshot_factory(boot_files=file_changer(base.boot_files.value, "winload.efi", size=512))
        config = BootRescueConfig()
        config.collector.min_loader_size = 256
        assert "BOOT-002" not in [d.id for d in SignatureMatcher(config).match(snap).detections]

    @pytest.mark.parametrize("role, signature_id", [("ntoskrnl.exe", "BOOT-003"), ("hal.dll", "BOOT-004")])
    def test_core_images(self, snapshot_factory, file_changer, role, signature_id):
        base = snapshot_factory()
        missing = snapshot_factory(boot_files=file_changer(base.boot_files.value, role, exists=False))
        empty = snapshot_factory(boot_files=file_changer(base.boot_files.value, role, size=0))
        assert detection(missing, signature_id).evidence_map["state"] == "missing"
        assert detection(empty, signature_id).evidence_map["state"] == "zero-length"

    def test_uefi_boot_manager_missing(self, snapshot_factory, file_changer):
        base = snapshot_factory()
        snap = snapshot_factory(boot_files=file_changer(base.boot_files.value, "bootmgfw.efi", exists=False))
        assert "BOOT-005" in ids(snap)

    def test_bios_boot_manager_missing(self, snapshot_factory):
        snap = snapshot_factory(firmware=Firmware.BIOS)
        assert "BOOT-006" in ids(snap)
        assert "BOOT-005" not in ids(snap)


class TestBcd:
    def test_store_missing(self, snapshot_factory):
        snap = snapshot_factory(bcd_store=FileFact(role="BCD", path="S:\\EFI\\Microsoft\\Boot\\BCD", exists=False))
        assert ids(snap) == ["BCD-001"]

    def test_store_empty(self, snapshot_factory):
        snap = snapshot_factory(bcd_store=FileFact(role="BCD", path="S:\\BCD", exists=True, size=0))
        assert "BCD-002" in ids(snap)

    def test_no_os_loader(self, snapshot_factory):
        snap = snapshot_factory(bcd=BcdFacts(entries=(manager(default=None, display_order=()),)))
        assert "BCD-003" in ids(snap)

    def test_unknown_device(self, snapshot_factory):
        snap = snapshot_factory(bcd=BcdFacts(entries=(manager(), loader(device="unknown"))))
        found = detection(snap, "BCD-004")
        assert found.severity == Severity.CRITICAL
        assert found.evidence_map["device"] == "unknown"

    def test_bound_to_another_volume(self, snapshot_factory):
        snap = snapshot_factory(bcd=BcdFacts(entries=(
            manager(), loader(device="partition=C:", osdevice="partition=C:"),
        )))
        found = detection(snap, "BCD-004")
        assert found.severity == Severity.WARNING
        assert found.evidence_map["target"] == "D:"

    def test_default_dangling(self, snapshot_factory):
        snap = snapshot_factory(bcd=BcdFacts(entries=(manager(default="{deadbeef}"), loader())))
        assert detection(snap, "BCD-005").evidence_map["default"] == "{deadbeef}"

    def test_no_default_with_several_loaders(self, snapshot_factory):
        snap = snapshot_factory(bcd=BcdFacts(entries=(
            manager(default=None), loader(), loader("{other}"),
        )))
        assert detection(snap, "BCD-005").confidence == 50

    def test_boot_sequence_pending(self, snapshot_factory):
        snap = snapshot_factory(bcd=BcdFacts(entries=(manager(boot_sequence=("{current}",)), loader())))
        assert "BCD-006" in ids(snap)

    def test_safeboot_stuck(self, snapshot_factory):
        snap = snapshot_factory(bcd=BcdFacts(entries=(manager(), loader(safeboot="Minimal"))))
        assert detection(snap, "BCD-007").evidence_map["safeboot"] == "Minimal"

    def test_recovery_loader_is_not_an_os_loader(self, snapshot_factory):
        snap = snapshot_factory(bcd=BcdFacts(entries=(
            manager(default=None, display_order=()),
            loader("{winre}", osdevice="ramdisk=[R:]\\Recovery\\WinRE.wim"),
        )))
        assert "BCD-003" in ids(snap)


class TestDrivers:
    def _services(self, **changes):
        return tuple(
            ServiceFact(
                name=name, present=True, start=changes.get(name, {}).get("start", 0),
                start_override=changes.get(name, {}).get("start_override", ()),
                registry_path=f"ControlSet001\\Services\\{name}",
            )
            for name in ("storahci", "stornvme", "disk", "volmgr")
        )

    def test_start_override_trap(self, snapshot_factory):
        services = self._services(storahci={"start_override": (("0", 4),)})
        found = detection(snapshot_factory(services=services), "DRV-001")
        assert found.evidence_map["services"] == "storahci"
        assert found.evidence_map["keys"] == "ControlSet001\\Services\\storahci\\StartOverride"

    def test_override_that_enables_is_quiet(self, snapshot_factory):
        services = self._services(storahci={"start_override": (("0", 0),)})
        assert ids(snapshot_factory(services=services)) == []

    def test_storage_service_disabled(self, snapshot_factory):
        services = self._services(stornvme={"start": 4})
        assert detection(snapshot_factory(services=services), "DRV-002").evidence_map["services"] == "stornvme"

    def test_zero_length_driver(self, snapshot_factory, file_changer):
        base = snapshot_factory()
        snap = snapshot_factory(drivers=file_changer(base.drivers.value, "storahci.sys", size=0))
        assert "DRV-003" in ids(snap)
        assert "DRV-004" not in ids(snap)

    def test_driver_missing(self, snapshot_factory, file_changer):
        base = snapshot_factory()
        snap = snapshot_factory(drivers=file_changer(base.drivers.value, "ntfs.sys", exists=False))
        assert detection(snap, "DRV-004").evidence_map["drivers"] == "ntfs.sys"


class TestServicing:
    def test_pending_xml(self, snapshot_factory):
        assert "SVC-001" in ids(snapshot_factory(servicing_markers=("pending.xml",)))

    def test_pending_renames(self, snapshot_factory):
        snap = snapshot_factory(pending_renames=("\\??\\C:\\a.tmp", "", "\\??\\C:\\b.tmp", ""))
        assert detection(snap, "SVC-002").evidence_map["count"] == "4"

    def test_cbs_reboot_pending(self, snapshot_factory):
        snap = snapshot_factory(servicing_markers=("cbs-reboot-pending",))
        found = detection(snap, "SVC-003")
        assert found.severity == Severity.INFO
        assert "SVC-001" not in ids(snap)


class TestPlatform:
    def test_legacy_loader_under_secure_boot(self, snapshot_factory):
        snap = snapshot_factory(bcd=BcdFacts(entries=(
            manager(), loader(path="\\Windows\\system32\\winload.exe"),
        )))
        assert "SEC-001" in ids(snap)
        assert "SEC-001" not in ids(snapshot_factory(bcd=snap.bcd, secure_boot=False))

    def test_only_bios_loader_on_disk(self, snapshot_factory, file_changer):
        base = snapshot_factory()
        snap = snapshot_factory(boot_files=file_changer(base.boot_files.value, "winload.efi", exists=False))
        assert "SEC-002" in ids(snap)

    def test_volume_locked(self, snapshot_factory):
        snap = snapshot_factory(bitlocker=BitLockerFacts(volume="D:", encrypted=True, protection_on=True, locked=True))
        assert ids(snap)[0] == "ENC-001"

    def test_corrupt_hibernation_file(self, snapshot_factory):
        snap = snapshot_factory(
            fast_startup=True,
            hiberfil=FileFact(role="hiberfil", path="D:\\hiberfil.sys", exists=True, size=4096),
        )
        assert "PWR-001" in ids(snap)
        assert "PWR-002" not in ids(snap)

    def test_hibernated_session(self, snapshot_factory):
        snap = snapshot_factory(
            fast_startup=True,
            hiberfil=FileFact(role="hiberfil", path="D:\\hiberfil.sys", exists=True, size=800 * 1024 * 1024),
        )
        assert ids(snap) == ["PWR-002"]

    def test_esp_not_fat(self, snapshot_factory):
        assert detection(snapshot_factory(esp_filesystem="NTFS"), "ESP-001").evidence_map["filesystem"] == "NTFS"
        assert "ESP-001" not in ids(snapshot_factory(firmware=Firmware.BIOS, esp_filesystem="NTFS"))


class TestSystem:
    def test_system_hive_missing(self, snapshot_factory):
        snap = snapshot_factory(system_hive=FileFact(role="SYSTEM", path="D:\\SYSTEM", exists=False))
        assert "REG-001" in ids(snap)

    def test_crash_dump(self, snapshot_factory):
        dumps = (
            FileFact(role="minidump", path="D:\\Windows\\Minidump\\a.dmp", exists=True, size=10),
            FileFact(role="minidump", path="D:\\Windows\\Minidump\\b.dmp", exists=True, size=10),
        )
        found = detection(snapshot_factory(crash_dumps=dumps), "LOG-001")
        assert found.evidence_map == {"count": "2", "latest": "D:\\Windows\\Minidump\\b.dmp"}

    def test_repair_root_cause(self, snapshot_factory):
        snap = snapshot_factory(repair_root_cause="Boot critical file d:\\windows\\system32\\drivers\\x.sys is corrupt.")
        assert "LOG-002" in ids(snap)


def test_catalog_ids_are_unique():
    signatures = build_signatures(BootRescueConfig())
    assert len(signatures) == 29
    assert len({s.signature_id for s in signatures}) == 29
    for sig in signatures:
        assert sig.title and sig.remediation and sig.requires
