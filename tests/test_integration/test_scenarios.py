"""End-to-end runs of the engine against an on-disk offline target."""

from __future__ import annotations

import json

import pytest

from bootrescue.collector.probes import volume_of
from bootrescue.collector.registry import RegistryReader
from bootrescue.core.context import EngineContext
from bootrescue.core.models import ExecutionOutcome, ExecutionStatus
from bootrescue.core.runner import CommandResult
from bootrescue.engine import EXIT_FAILED, EXIT_NO_SNAPSHOT, EXIT_OK, DiagnosisEngine
from bootrescue.remediation.lock import acquire_volume_lock
from bootrescue.remediation.log import ActionLog
from bootrescue.report.parity import canonical_bytes

START_OVERRIDE_EXPORT = """\
Windows Registry Editor Version 5.00

[HKEY_LOCAL_MACHINE\\BR_SYSTEM\\ControlSet001\\Services\\storahci\\StartOverride]
"0"=dword:00000004
"""


@pytest.fixture()
def engine(tool_runner, offline_host, state_dir):
    return DiagnosisEngine(runner=tool_runner, host=offline_host, state_dir=state_dir)


@pytest.fixture()
def context_for(target_tree):
    def build(apply=False, extra_exports=(), **kwargs):
        exports = (str(target_tree["system_reg"]), str(target_tree["software_reg"]), *map(str, extra_exports))
        return EngineContext(
            target_root=str(target_tree["root"]),
            esp=str(target_tree["esp"]),
            apply=apply,
            registry_exports=exports,
            **kwargs,
        )

    return build


def _remove_store(tree):
    (tree["esp"] / "EFI" / "Microsoft" / "Boot" / "BCD").unlink()


def _tree_bytes(root):
    return {p: p.read_bytes() for p in sorted(root.rglob("*")) if p.is_file()}


def test_healthy_target(engine, context_for):
    run = engine.run(context_for())

    assert run.exit_code == EXIT_OK
    assert run.document["detections"] == []
    assert run.document["plan"] == []
    assert run.document["errors"] == []
    assert run.document["snapshot"]["complete"] is True


class TestMissingBcdStore:
    def test_preview(self, engine, context_for, target_tree, tool_runner):
        _remove_store(target_tree)

        run = engine.run(context_for())

        assert [d["id"] for d in run.document["detections"]] == ["BCD-001"]
        assert [s["kind"] for s in run.document["plan"]] == ["backup-bcd", "rebuild-bcd"]
        assert run.execution.outcome == ExecutionOutcome.COMPLETED
        assert tool_runner.commands("bcdboot") == []
        assert run.exit_code == EXIT_OK

    def test_apply(self, engine, context_for, target_tree, tool_runner):
        _remove_store(target_tree)

        run = engine.run(context_for(apply=True))

        statuses = [r["status"] for r in run.document["execution"]]
        assert statuses == ["no-op", "success"]
        assert run.document["executionSummary"]["outcome"] == "completed"
        (call,) = tool_runner.commands("bcdboot")
        assert call[-2:] == ("/f", "UEFI")
        assert run.exit_code == EXIT_OK
        assert "Applied 2 of 2 step(s)." in run.document["narrative"]


class TestStartOverride:
    def test_detected_and_removed(self, engine, context_for, tmp_path, tool_runner):
        extra = tmp_path / "override.reg"
        extra.write_text(START_OVERRIDE_EXPORT)

        run = engine.run(context_for(apply=True, extra_exports=(extra,)))

        (detection,) = run.document["detections"]
        assert detection["id"] == "DRV-001"
        assert detection["evidence"]["keys"] == "ControlSet001\\Services\\storahci\\StartOverride"
        (step,) = run.document["plan"]
        assert step["kind"] == "remove-registry-override"
        assert step["gate"]["state"] == "clear"

        reg = [c for c in tool_runner.commands("reg") if c[1] != "query"]
        assert [c[1] for c in reg] == ["load", "delete", "unload"]
        assert reg[1][2] == "HKLM\\BR_SYSTEM\\ControlSet001\\Services\\storahci\\StartOverride"
        assert run.exit_code == EXIT_OK


class TestBitLocker:
    def _suspend_aware(self, runner, tool_output):
        def status(argv):
            suspended = any(c[1] == "-protectors" for c in runner.commands("manage-bde"))
            return CommandResult(argv, 0, tool_output["bde_off"] if suspended else tool_output["bde_on"])

        runner.on_call(["manage-bde", "-status"], status)

    def test_suspend_precedes_rebuild(self, engine, context_for, target_tree, tool_runner, tool_output):
        _remove_store(target_tree)
        self._suspend_aware(tool_runner, tool_output)

        run = engine.run(context_for(apply=True))

        assert [s["kind"] for s in run.document["plan"]] == ["backup-bcd", "suspend-encryption", "rebuild-bcd"]
        writes = [c[0] for c in tool_runner.calls if c[0] in ("bcdboot",) or c[1:2] == ("-protectors",)]
        assert writes == ["manage-bde", "bcdboot"]
        assert run.exit_code == EXIT_OK

    def test_failed_suspend_blocks_rebuild(self, engine, context_for, target_tree, tool_runner, tool_output):
        _remove_store(target_tree)
        tool_runner.on(["manage-bde", "-status"], stdout=tool_output["bde_on"])
        tool_runner.on(["manage-bde", "-protectors"], returncode=1, stderr="ERROR: access denied")

        run = engine.run(context_for(apply=True))

        statuses = [r.status for r in run.execution.results]
        assert statuses == [ExecutionStatus.NOOP, ExecutionStatus.WARNING, ExecutionStatus.SAFETY_BLOCKED]
        assert tool_runner.commands("bcdboot") == []
        assert {"ActionFailed", "SafetyBlocked"} <= {e["type"] for e in run.document["errors"]}
        assert run.exit_code == EXIT_FAILED


class TestLockContention:
    def test_second_apply_is_refused(self, engine, context_for, target_tree, tool_runner, state_dir):
        _remove_store(target_tree)
        volume = volume_of(str(target_tree["root"]))

        with acquire_volume_lock(state_dir / "locks", volume):
            run = engine.run(context_for(apply=True))

        assert run.execution.outcome == ExecutionOutcome.LOCK_CONTENTION
        assert run.exit_code == EXIT_FAILED
        assert tool_runner.commands("bcdboot") == []
        assert [e.tag for e in ActionLog(state_dir / "action.log").read_entries(0)] == ["REFUSED"]
        assert run.document["errors"][-1]["type"] == "LockContention"


class TestPreviewGuarantees:
    def test_preview_never_modifies_target(self, engine, context_for, target_tree):
        _remove_store(target_tree)
        before = _tree_bytes(target_tree["root"].parent)

        engine.run(context_for())

        after = _tree_bytes(target_tree["root"].parent)
        assert {p: b for p, b in after.items() if "state" not in p.parts} == {
            p: b for p, b in before.items() if "state" not in p.parts
        }

    def test_parity_between_runs(self, engine, context_for, target_tree):
        _remove_store(target_tree)
        result = engine.parity(context_for(apply=True), runs=3)
        assert result.equal, result.diff

    def test_document_is_valid_json(self, engine, context_for):
        document = json.loads(canonical_bytes(engine.run(context_for()).document))
        assert document["exitCode"] == 0


class TestFailures:
    def test_missing_target(self, engine, tmp_path):
        context = EngineContext(target_root=str(tmp_path / "absent"), esp=str(tmp_path / "esp"))

        run = engine.run(context)

        assert run.exit_code == EXIT_NO_SNAPSHOT
        assert run.document["snapshot"] is None
        assert run.document["errors"][0]["type"] == "SnapshotUnavailable"

    def test_unexpected_error_is_captured(self, tool_runner, offline_host, state_dir, context_for):
        class ExplodingRegistry(RegistryReader):
            def query(self, hive, key):
                raise RuntimeError("registry exploded")

        engine = DiagnosisEngine(
            runner=tool_runner, host=offline_host, registry=ExplodingRegistry(), state_dir=state_dir
        )

        run = engine.run(context_for())

        assert run.exit_code == EXIT_FAILED
        (error,) = run.document["errors"]
        assert error["type"] == "InternalError"
        assert error["stage"] == "collect"
        assert "registry exploded" in error["message"]

    def test_progress_covers_every_phase(self, engine, context_for):
        events = []
        engine.run(context_for(progress=events.append))
        started = [e.phase for e in events if e.status == "started"]
        assert started == ["collect", "match", "gate", "plan", "execute", "report"]
