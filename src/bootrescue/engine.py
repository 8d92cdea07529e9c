"""Diagnosis engine: runs the six stages in order for one invocation."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from bootrescue.collector.engine import EvidenceCollector
from bootrescue.collector.registry import RegistryReader
from bootrescue.core.context import EngineContext
from bootrescue.core.errors import BootRescueError, InternalError, SnapshotUnavailable
from bootrescue.core.models import ExecutionOutcome, ExecutionReport, HostEnvironment, MatchResult, SystemSnapshot
from bootrescue.core.runner import CommandRunner
from bootrescue.matcher.engine import SignatureMatcher
from bootrescue.remediation.catalog import PlanTarget
from bootrescue.remediation.executor import ActionExecutor
from bootrescue.remediation.planner import Plan, RemediationPlanner
from bootrescue.report.document import build_document
from bootrescue.report.parity import ParityResult, run_parity
from bootrescue.safety.gate import SafetyGate
from bootrescue.safety.state import SafetyMonitor, derive_safety_state

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NO_SNAPSHOT = 3


@dataclass(frozen=True)
class EngineRun:
    document: dict[str, Any]
    exit_code: int
    snapshot: SystemSnapshot | None = None
    match: MatchResult | None = None
    plan: Plan | None = None
    execution: ExecutionReport | None = None


def exit_code_for(execution: ExecutionReport | None) -> int:
    if execution is None:
        return EXIT_OK
    if execution.outcome != ExecutionOutcome.COMPLETED or execution.fatal or execution.blocked:
        return EXIT_FAILED
    return EXIT_OK


class DiagnosisEngine:
    """Collector -> matcher -> gate -> planner -> executor -> reporter.

    Nothing raised by a stage escapes ``run``: every failure ends up in the
    document's ``errors`` array and the exit code.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        host: HostEnvironment | None = None,
        registry: RegistryReader | None = None,
        state_dir: Path | None = None,
    ):
        self.runner = runner
        self.host = host
        self.registry = registry
        self.state_dir = state_dir

    def run(self, context: EngineContext) -> EngineRun:
        stages: dict[str, Any] = {}
        try:
            return self._run(context, stages)
        except SnapshotUnavailable as e:
            context.logger.error("No usable snapshot: %s", e)
            return self._finish(context, EXIT_NO_SNAPSHOT, stages, [e])
        except Exception as e:
            stage = stages.get("stage", "engine")
            context.logger.exception("Unexpected failure during %s", stage)
            return self._finish(context, EXIT_FAILED, stages, [InternalError(stage, e)])

    def parity(self, context: EngineContext, runs: int = 2) -> ParityResult:
        """Run a preview *runs* times as independent invocations would."""
        preview = dataclasses.replace(context, apply=False, logger=None)
        return run_parity(lambda: self.run(preview).document, runs=runs)

    def _run(self, context: EngineContext, stages: dict[str, Any]) -> EngineRun:
        config = context.config
        collector = EvidenceCollector(config, runner=self.runner, registry=self.registry, host=self.host)

        stages["stage"] = "collect"
        snapshot = collector.collect(context)
        stages["snapshot"] = snapshot

        stages["stage"] = "match"
        context.report_progress("match", "started")
        match = SignatureMatcher(config).match(snapshot)
        stages["match"] = match
        context.logger.info(
            "%d detection(s), %d signature(s) skipped", len(match.detections), len(match.skipped)
        )
        context.report_progress("match", "completed", 100)

        stages["stage"] = "gate"
        context.report_progress("gate", "started")
        state = derive_safety_state(snapshot)
        gate = SafetyGate(context.acknowledge_live_os, context.override_build_check)
        context.report_progress("gate", "completed", 100)

        stages["stage"] = "plan"
        context.report_progress("plan", "started")
        plan = RemediationPlanner(gate=gate).plan(
            match.detections, state, PlanTarget.from_snapshot(snapshot)
        )
        stages["plan"] = plan
        context.report_progress("plan", "completed", 100)

        stages["stage"] = "execute"
        monitor = None
        if context.apply:
            monitor = SafetyMonitor(state, lambda: collector.bitlocker_state(context))
        executor = ActionExecutor(
            context, runner=self.runner, gate=gate, monitor=monitor, state_dir=self.state_dir
        )
        execution = executor.execute(plan, state)
        stages["execution"] = execution

        stages["stage"] = "report"
        return self._finish(context, exit_code_for(execution), stages, [])

    def _finish(
        self,
        context: EngineContext,
        exit_code: int,
        stages: dict[str, Any],
        errors: list[BootRescueError],
    ) -> EngineRun:
        context.report_progress("report", "started")
        document = build_document(
            context,
            exit_code=exit_code,
            snapshot=stages.get("snapshot"),
            match=stages.get("match"),
            plan=stages.get("plan"),
            execution=stages.get("execution"),
            errors=errors,
        )
        context.report_progress("report", "completed", 100)
        return EngineRun(
            document=document,
            exit_code=exit_code,
            snapshot=stages.get("snapshot"),
            match=stages.get("match"),
            plan=stages.get("plan"),
            execution=stages.get("execution"),
        )
