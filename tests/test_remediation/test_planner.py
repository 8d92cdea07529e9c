"""Tests for the remediation planner."""

from __future__ import annotations

from dataclasses import replace

import pytest

from bootrescue.core.models import (
    FileFact,
    Firmware,
    GateState,
    Precondition,
    Probe,
    SafetyState,
)
from bootrescue.matcher.engine import SignatureMatcher
from bootrescue.matcher.signatures import ALL_SIGNATURES
from bootrescue.remediation.actions import ManualIntervention
from bootrescue.remediation.catalog import REMEDIATION_TABLE, PlanTarget
from bootrescue.remediation.planner import RemediationPlanner, precedes
from bootrescue.safety.gate import SafetyGate

SAFE = SafetyState(live_os=False, bitlocker_active=False, recovery_build=22631, target_build=22631)


def kinds(plan) -> list[str]:
    return [a.kind for a in plan.actions]


class TestMapping:
    def test_missing_store_from_snapshot(self, snapshot_factory):
        snap = snapshot_factory(bcd_store=FileFact(role="BCD", path="S:\\EFI\\Microsoft\\Boot\\BCD", exists=False))
        detections = SignatureMatcher().match(snap).detections

        plan = RemediationPlanner().plan(detections, SAFE, PlanTarget.from_snapshot(snap))

        assert kinds(plan) == ["backup-bcd", "rebuild-bcd"]
        backup, rebuild = plan.actions
        assert backup.noop
        assert rebuild.firmware == Firmware.UEFI
        assert [item.gate.state for item in plan.items] == [GateState.CLEAR, GateState.CLEAR]

    def test_start_override_maps_to_registry_edit(self, plan_target, detection_factory):
        detection = detection_factory("DRV-001", services="storahci, stornvme")

        plan = RemediationPlanner().plan([detection], SAFE, plan_target)

        assert kinds(plan) == ["remove-registry-override", "remove-registry-override"]
        assert [a.service for a in plan.actions] == ["storahci", "stornvme"]
        assert all(item.gate.clear for item in plan.items)

    def test_every_catalog_signature_is_mapped(self):
        assert {cls.signature_id for cls in ALL_SIGNATURES} == set(REMEDIATION_TABLE)

    def test_no_detection_is_silently_dropped(self, plan_target, detection_factory):
        detections = [
            detection_factory(cls.signature_id, services="storahci", identifier="{current}")
            for cls in ALL_SIGNATURES
        ]

        plan = RemediationPlanner().plan(detections, SAFE, plan_target)

        covered = {i for action in plan.actions for i in action.detection_ids}
        assert covered == {d.id for d in detections}
        assert plan.incomplete == ()

    def test_unmapped_detection_becomes_manual_and_incomplete(self, plan_target, detection_factory):
        plan = RemediationPlanner().plan([detection_factory("NEW-001")], SAFE, plan_target)

        (action,) = plan.actions
        assert isinstance(action, ManualIntervention)
        assert "NEW-001" in action.instructions
        assert plan.incomplete == ("NEW-001",)

    def test_manual_only_signatures(self, plan_target, detection_factory):
        plan = RemediationPlanner().plan([detection_factory("ESP-001")], SAFE, plan_target)
        assert kinds(plan) == ["manual-intervention"]
        assert plan.actions[0].instructions == "Fix ESP-001 by hand."
        assert plan.incomplete == ()

    def test_unknown_firmware_falls_back_to_manual(self, plan_target, detection_factory):
        target = replace(plan_target, firmware=None)
        plan = RemediationPlanner().plan([detection_factory("BCD-003")], SAFE, target)
        assert kinds(plan) == ["manual-intervention"]

    def test_live_target_cannot_revert_servicing(self, plan_target, detection_factory):
        target = replace(plan_target, live=True)
        plan = RemediationPlanner().plan([detection_factory("SVC-001")], SAFE, target)
        assert kinds(plan) == ["manual-intervention"]


class TestOrdering:
    def test_backups_precede_destructive_actions(self, plan_target, detection_factory):
        detections = [detection_factory("SVC-002"), detection_factory("BCD-006")]

        plan = RemediationPlanner().plan(detections, SAFE, plan_target)

        assert kinds(plan) == [
            "backup-bcd", "backup-registry-hive", "clear-pending-renames", "clear-boot-sequence",
        ]
        seen: set[Precondition] = set()
        for action in plan.actions:
            assert set(action.backups) <= seen
            if action.satisfies is not None:
                seen.add(action.satisfies)

    def test_servicing_then_files_then_boot_configuration(self, plan_target, detection_factory):
        detections = [
            detection_factory("BCD-001"),
            detection_factory("BOOT-003"),
            detection_factory("SVC-001"),
            detection_factory("LOG-002"),
        ]

        plan = RemediationPlanner().plan(detections, SAFE, plan_target)

        assert kinds(plan) == [
            "backup-bcd", "revert-pending-actions", "restore-system-files", "rebuild-bcd", "check-disk",
        ]

    def test_suspend_inserted_before_offline_writes(self, plan_target, detection_factory):
        state = replace(SAFE, bitlocker_active=True)

        plan = RemediationPlanner().plan([detection_factory("BCD-001")], state, plan_target)

        assert kinds(plan) == ["backup-bcd", "suspend-encryption", "rebuild-bcd"]
        assert plan.actions[1].volume == "D:"
        assert plan.actions[1].detection_ids == ("BCD-001",)
        assert all(item.gate.clear for item in plan.items)

    def test_unknown_encryption_state_also_suspends(self, plan_target, detection_factory):
        state = replace(SAFE, bitlocker_active=None)
        plan = RemediationPlanner().plan([detection_factory("BOOT-001")], state, plan_target)
        assert kinds(plan) == ["suspend-encryption", "restore-system-files"]

    def test_registry_only_plan_needs_no_suspend(self, plan_target, detection_factory):
        state = replace(SAFE, bitlocker_active=True)
        plan = RemediationPlanner().plan([detection_factory("DRV-002", services="stornvme")], state, plan_target)
        assert kinds(plan) == ["set-service-start"]

    @pytest.mark.parametrize("live", [False, True])
    @pytest.mark.parametrize("encrypted", [False, True])
    @pytest.mark.parametrize("signature_id", sorted(REMEDIATION_TABLE))
    def test_every_destructive_action_follows_its_backup(
        self, plan_target, detection_factory, signature_id, encrypted, live
    ):
        detection = detection_factory(signature_id, services="storahci", identifier="{current}")
        state = replace(SAFE, bitlocker_active=encrypted)

        plan = RemediationPlanner().plan([detection], state, replace(plan_target, live=live))

        for index, action in enumerate(plan.actions):
            if not action.destructive:
                continue
            assert action.backups, action.kind
            earlier = {a.satisfies for a in plan.actions[:index] if a.satisfies is not None}
            assert set(action.backups) <= earlier, (signature_id, action.kind)

    def test_precedes(self, plan_target, detection_factory):
        plan = RemediationPlanner().plan([detection_factory("BCD-001")], SAFE, plan_target)
        backup, rebuild = plan.actions
        assert precedes(backup, rebuild)
        assert not precedes(rebuild, backup)


class TestDedupe:
    def test_shared_action_merges_detection_ids(self, plan_target, detection_factory):
        detections = [detection_factory("BOOT-003"), detection_factory("BOOT-001"), detection_factory("DRV-004")]

        plan = RemediationPlanner().plan(detections, SAFE, plan_target)

        (restore,) = plan.actions
        assert restore.kind == "restore-system-files"
        assert restore.detection_ids == ("BOOT-003", "BOOT-001", "DRV-004")

    def test_single_backup_for_several_bcd_writers(self, plan_target, detection_factory):
        detections = [detection_factory("BCD-006"), detection_factory("BCD-007", identifier="{current}")]

        plan = RemediationPlanner().plan(detections, SAFE, plan_target)

        assert kinds(plan).count("backup-bcd") == 1
        assert plan.actions[0].detection_ids == ("BCD-006", "BCD-007")

    def test_planning_is_deterministic(self, plan_target, detection_factory):
        detections = [detection_factory(cls.signature_id, services="disk") for cls in ALL_SIGNATURES]
        first = RemediationPlanner().plan(detections, SAFE, plan_target)
        second = RemediationPlanner().plan(detections, SAFE, plan_target)
        assert [a.key for a in first.actions] == [a.key for a in second.actions]


class TestProjectedGate:
    def test_live_high_risk_projected_blocked(self, plan_target, detection_factory):
        state = replace(SAFE, live_os=True)
        target = replace(plan_target, live=True)

        plan = RemediationPlanner().plan([detection_factory("BCD-001")], state, target)

        backup, rebuild = plan.items
        assert backup.gate.clear
        assert rebuild.gate.state == GateState.BLOCKED

    def test_acknowledged_gate_clears(self, plan_target, detection_factory):
        state = replace(SAFE, live_os=True)
        planner = RemediationPlanner(gate=SafetyGate(acknowledge_live_os=True))
        plan = planner.plan([detection_factory("BCD-001")], state, replace(plan_target, live=True))
        assert all(item.gate.clear for item in plan.items)

    def test_build_mismatch_is_projected(self, plan_target, detection_factory):
        state = replace(SAFE, recovery_build=19041)
        plan = RemediationPlanner().plan([detection_factory("PWR-002")], state, plan_target)
        (item,) = plan.items
        assert item.gate.pending == (Precondition.BUILD_OVERRIDE,)


def test_plan_target_fallbacks(snapshot_factory):
    snap = snapshot_factory(
        bcd_store=Probe.unavailable("x"),
        system_hive=Probe.unavailable("y"),
        control_set=Probe.unavailable("z"),
        firmware=Firmware.BIOS,
    )
    target = PlanTarget.from_snapshot(snap)

    assert target.bcd_present is False
    assert target.bcd_store.endswith("BCD")
    assert target.hive_present is False
    assert target.control_set is None
    assert target.hive_file == target.system_hive
    assert target.volume == "D:"
