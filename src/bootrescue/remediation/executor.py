"""Action executor: runs (or previews) a plan one action at a time."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from bootrescue.collector.probes import volume_of
from bootrescue.core.config import get_state_dir
from bootrescue.core.context import EngineContext
from bootrescue.core.errors import ActionFailed, BootRescueError, LockContention, SafetyBlocked
from bootrescue.core.models import (
    ExecutionOutcome,
    ExecutionReport,
    ExecutionResult,
    ExecutionStatus,
    GateState,
    Intent,
    Precondition,
    SafetyState,
)
from bootrescue.core.runner import CommandRunner
from bootrescue.remediation.actions import (
    BACKUP_PLACEHOLDER,
    BackupBcd,
    BackupRegistryHive,
    ManualIntervention,
    RemediationAction,
)
from bootrescue.remediation.backup import BackupStore
from bootrescue.remediation.lock import acquire_volume_lock
from bootrescue.remediation.log import ActionLog
from bootrescue.remediation.planner import Plan, PlanItem
from bootrescue.safety.gate import SafetyGate
from bootrescue.safety.state import SafetyMonitor


class ActionExecutor:
    """Executes a plan in order.

    Preview writes ``WOULD-EXECUTE`` entries and runs nothing. Apply takes
    the volume lock, re-checks the gate with fresh state before each
    action, stops after a fatal failure and honours cancellation between
    actions. Every action ends up in the log either way.
    """

    def __init__(
        self,
        context: EngineContext,
        runner: CommandRunner | None = None,
        gate: SafetyGate | None = None,
        log: ActionLog | None = None,
        monitor: SafetyMonitor | None = None,
        state_dir: Path | None = None,
    ):
        self.context = context
        config = context.config
        self.runner = runner or CommandRunner(timeout=config.executor.command_timeout)
        self.gate = gate or SafetyGate(context.acknowledge_live_os, context.override_build_check)
        self.state_dir = state_dir or get_state_dir(config)
        if log is None:
            log_file = Path(config.general.log_file)
            log = ActionLog(log_file if log_file.is_absolute() else self.state_dir / log_file)
        self.log = log
        self.monitor = monitor
        self.backups = BackupStore(self.state_dir)

    def execute(self, plan: Plan, baseline: SafetyState) -> ExecutionReport:
        ctx = self.context
        mode = ctx.intent
        ctx.report_progress("execute", "started")

        lock = None
        if ctx.apply:
            try:
                lock = acquire_volume_lock(self.state_dir / "locks", volume_of(ctx.target_root))
            except LockContention as e:
                self.log.record(mode=mode, tag="REFUSED", action="-", status="lock-contention", output=str(e))
                ctx.logger.error("%s", e)
                ctx.report_progress("execute", "completed", 100, "lock-contention")
                return ExecutionReport(
                    outcome=ExecutionOutcome.LOCK_CONTENTION,
                    apply=True,
                    errors=(e,),
                    log_path=str(self.log.path),
                )

        try:
            for item in plan.items:
                self.log.record(
                    mode=mode,
                    tag="PROPOSED",
                    action=item.action.key,
                    status=item.gate.state.value,
                    command=item.action.command_text(),
                )
            report = self._run(plan, self.monitor or SafetyMonitor(baseline))
        finally:
            if lock is not None:
                lock.release()

        ctx.report_progress("execute", "completed", 100, report.outcome.value)
        return report

    def _run(self, plan: Plan, monitor: SafetyMonitor) -> ExecutionReport:
        ctx = self.context
        results: list[ExecutionResult] = []
        errors: list[BootRescueError] = []
        completed: set[Precondition] = set()
        halted = cancelled = False
        total = len(plan.items)

        for index, item in enumerate(plan.items, start=1):
            action = item.action
            if halted:
                results.append(self._skip(action, ExecutionStatus.SKIPPED_HALTED, "earlier action failed fatally"))
            elif cancelled or ctx.cancel.cancelled:
                cancelled = True
                results.append(self._skip(action, ExecutionStatus.SKIPPED_CANCELLED, "cancelled by caller"))
            elif isinstance(action, ManualIntervention):
                results.append(self._manual(action))
            elif not ctx.apply:
                results.append(self._preview(item))
            else:
                result, error = self._apply(action, monitor.current(), completed)
                results.append(result)
                if error is not None:
                    errors.append(error)
                if result.status == ExecutionStatus.FATAL:
                    halted = True
            ctx.report_progress("execute", "progress", index * 100 // total, action.key)

        if halted:
            outcome = ExecutionOutcome.HALTED
        elif cancelled:
            outcome = ExecutionOutcome.CANCELLED
        else:
            outcome = ExecutionOutcome.COMPLETED
        return ExecutionReport(
            outcome=outcome,
            apply=ctx.apply,
            results=tuple(results),
            errors=tuple(errors),
            log_path=str(self.log.path),
        )

    def _skip(self, action: RemediationAction, status: ExecutionStatus, reason: str) -> ExecutionResult:
        command = action.command_text()
        self.log.record(
            mode=self.context.intent, tag="SKIPPED", action=action.key, status=status.value,
            command=command, output=reason,
        )
        return ExecutionResult(action=action.key, kind=action.kind, status=status, command=command, reason=reason)

    def _manual(self, action: ManualIntervention) -> ExecutionResult:
        self.log.record(
            mode=self.context.intent, tag="MANUAL", action=action.key,
            status=ExecutionStatus.MANUAL.value, output=action.instructions,
        )
        return ExecutionResult(
            action=action.key, kind=action.kind, status=ExecutionStatus.MANUAL,
            reason=action.instructions,
        )

    def _preview(self, item: PlanItem) -> ExecutionResult:
        action = item.action
        decision = self.gate.evaluate(Intent.PREVIEW, action, SafetyState(None, None, None, None))
        command = action.command_text()
        reason = "nothing to do" if action.noop else ""
        self.log.record(
            mode=Intent.PREVIEW, tag="WOULD-EXECUTE", action=action.key,
            status=ExecutionStatus.WOULD_EXECUTE.value, command=command, output=reason,
        )
        return ExecutionResult(
            action=action.key, kind=action.kind, status=ExecutionStatus.WOULD_EXECUTE,
            command=command, gate=decision.state, reason=reason,
        )

    def _apply(
        self,
        action: RemediationAction,
        state: SafetyState,
        completed: set[Precondition],
    ) -> tuple[ExecutionResult, BootRescueError | None]:
        ctx = self.context
        decision = self.gate.evaluate(Intent.APPLY, action, state, completed)
        if not decision.clear:
            error = SafetyBlocked(action.key, decision.state.value, decision.reasons)
            self.log.record(
                mode=Intent.APPLY, tag="SAFETY-BLOCKED", action=action.key,
                status=ExecutionStatus.SAFETY_BLOCKED.value, command=action.command_text(),
                output="; ".join(decision.reasons),
            )
            ctx.logger.warning("%s", error)
            return ExecutionResult(
                action=action.key, kind=action.kind, status=ExecutionStatus.SAFETY_BLOCKED,
                command=action.command_text(), gate=decision.state,
                reason="; ".join(decision.reasons),
            ), error

        if action.noop:
            if action.satisfies is not None:
                completed.add(action.satisfies)
            self.log.record(
                mode=Intent.APPLY, tag="RESULT", action=action.key,
                status=ExecutionStatus.NOOP.value, output="nothing to do",
            )
            return ExecutionResult(
                action=action.key, kind=action.kind, status=ExecutionStatus.NOOP,
                gate=GateState.CLEAR, reason="nothing to do",
            ), None

        is_backup = isinstance(action, (BackupBcd, BackupRegistryHive))
        backup_dir = str(self.backups.session()) if is_backup else BACKUP_PLACEHOLDER
        command = action.command_text(backup_dir)
        timeout = (
            ctx.config.executor.long_command_timeout
            if action.long_running
            else ctx.config.executor.command_timeout
        )

        self.log.record(mode=Intent.APPLY, tag="EXECUTE", action=action.key, status="running", command=command)
        ctx.logger.info("Executing %s", action.key)
        started = datetime.now()
        result = action.run(self.runner, backup_dir, timeout)
        finished = datetime.now()
        status = action.classify(result)
        self.log.record(
            mode=Intent.APPLY, tag="RESULT", action=action.key, status=status.value,
            command=command, exit_code=result.returncode, output=result.output,
        )

        error: BootRescueError | None = None
        if status == ExecutionStatus.SUCCESS:
            if action.satisfies is not None:
                completed.add(action.satisfies)
            if is_backup:
                source = action.store if isinstance(action, BackupBcd) else action.hive_file
                self.backups.record(action.key, source, action.artifact(backup_dir), action.detection_ids)
        elif status in (ExecutionStatus.WARNING, ExecutionStatus.FATAL):
            fatal = status == ExecutionStatus.FATAL
            error = ActionFailed(action.key, result.returncode, fatal, result.output)
            if fatal:
                ctx.logger.error("%s; halting remaining plan", error)
            else:
                ctx.logger.warning("%s", error)

        return ExecutionResult(
            action=action.key,
            kind=action.kind,
            status=status,
            command=command,
            exit_code=result.returncode,
            output=result.output,
            gate=decision.state,
            started_at=started,
            finished_at=finished,
        ), error
