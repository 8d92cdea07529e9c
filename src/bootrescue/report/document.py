"""Canonical report document.

Every front end renders this one structure; none of them computes
findings of its own. Keys are emitted in a fixed order and enumerations
use their fixed string vocabulary, so two runs over the same evidence
serialise identically apart from timestamp keys.
"""

from __future__ import annotations

import dataclasses
import enum
from datetime import datetime
from typing import Any, Iterable

from bootrescue._version import __version__
from bootrescue.core.context import EngineContext
from bootrescue.core.errors import BootRescueError, CollectionError, MatchSkipped, PlanIncomplete
from bootrescue.core.models import (
    SNAPSHOT_FIELDS,
    ExecutionReport,
    GateDecision,
    MatchResult,
    SystemSnapshot,
)
from bootrescue.matcher.signatures import CATALOG_VERSION
from bootrescue.remediation.actions import ManualIntervention, RemediationAction
from bootrescue.remediation.catalog import TABLE_VERSION
from bootrescue.remediation.planner import Plan
from bootrescue.report.narrative import build_narrative

SCHEMA = "bootrescue.report/1"

TOP_LEVEL_KEYS = (
    "schema",
    "generatedAt",
    "engine",
    "invocation",
    "snapshot",
    "detections",
    "skipped",
    "plan",
    "planIncomplete",
    "execution",
    "executionSummary",
    "errors",
    "narrative",
    "exitCode",
)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def to_json_value(value: Any) -> Any:
    """Convert snapshot values into JSON-compatible structures."""
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat(timespec="seconds")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            _camel(f.name): to_json_value(getattr(value, f.name))
            for f in dataclasses.fields(value)
        }
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    if isinstance(value, dict):
        return {str(k): to_json_value(v) for k, v in value.items()}
    return value


def snapshot_section(snapshot: SystemSnapshot) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for name in SNAPSHOT_FIELDS:
        probe = snapshot.probe(name)
        if probe.available:
            fields[_camel(name)] = {"status": "available", "value": to_json_value(probe.value)}
        else:
            fields[_camel(name)] = {"status": "unavailable", "reason": probe.reason}
    return {
        "targetRoot": snapshot.target_root,
        "esp": snapshot.esp,
        "collectedAt": snapshot.collected_at.isoformat(timespec="seconds"),
        "complete": snapshot.complete,
        "unavailable": sorted(_camel(n) for n in snapshot.unavailable),
        "fields": fields,
    }


def detections_section(match: MatchResult) -> list[dict[str, Any]]:
    return [
        {
            "id": d.id,
            "title": d.title,
            "severity": d.severity.value,
            "confidence": d.confidence,
            "description": d.description,
            "evidence": dict(d.evidence),
            "remediation": d.remediation,
        }
        for d in match.detections
    ]


def _gate(decision: GateDecision) -> dict[str, Any]:
    return {
        "state": decision.state.value,
        "reasons": list(decision.reasons),
        "pending": [p.value for p in decision.pending],
    }


def _action(action: RemediationAction) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "action": action.key,
        "kind": action.kind,
        "summary": action.summary,
        "risk": action.risk.value,
        "destructive": action.destructive,
        "detections": list(action.detection_ids),
        "command": action.command_text(),
        "preconditions": [p.value for p in action.backups],
        "justification": action.justification,
    }
    if isinstance(action, ManualIntervention):
        entry["instructions"] = action.instructions
    return entry


def plan_section(plan: Plan) -> list[dict[str, Any]]:
    items = []
    for step, item in enumerate(plan.items, start=1):
        entry = {"step": step, **_action(item.action), "gate": _gate(item.gate)}
        items.append(entry)
    return items


def _timestamp(value: datetime | None) -> str | None:
    return value.isoformat(timespec="seconds") if value is not None else None


def execution_section(report: ExecutionReport) -> list[dict[str, Any]]:
    """One entry per planned action, in plan order."""
    return [
        {
            "action": r.action,
            "status": r.status.value,
            "exitCode": r.exit_code,
            "output": r.output,
            "kind": r.kind,
            "command": r.command,
            "gate": r.gate.value if r.gate is not None else None,
            "reason": r.reason,
            "startedAt": _timestamp(r.started_at),
            "finishedAt": _timestamp(r.finished_at),
        }
        for r in report.results
    ]


def execution_summary(report: ExecutionReport) -> dict[str, Any]:
    return {
        "outcome": report.outcome.value,
        "mode": "apply" if report.apply else "preview",
        "logPath": report.log_path,
    }


def collect_errors(
    snapshot: SystemSnapshot | None,
    match: MatchResult | None,
    plan: Plan | None,
    execution: ExecutionReport | None,
    extra: Iterable[BootRescueError] = (),
) -> list[dict[str, Any]]:
    """Every error state of the run, in pipeline order."""
    errors: list[BootRescueError] = list(extra)
    if snapshot is not None:
        errors.extend(
            CollectionError(name, snapshot.probe(name).reason or "")
            for name in SNAPSHOT_FIELDS
            if not snapshot.probe(name).available
        )
    if match is not None:
        errors.extend(MatchSkipped(s.signature_id, s.fields, s.reason) for s in match.skipped)
    if plan is not None and plan.incomplete:
        errors.append(PlanIncomplete(plan.incomplete))
    if execution is not None:
        errors.extend(e for e in execution.errors if isinstance(e, BootRescueError))
    return [e.to_record() for e in errors]


def build_document(
    context: EngineContext,
    *,
    exit_code: int,
    snapshot: SystemSnapshot | None = None,
    match: MatchResult | None = None,
    plan: Plan | None = None,
    execution: ExecutionReport | None = None,
    errors: Iterable[BootRescueError] = (),
    generated_at: datetime | None = None,
) -> dict[str, Any]:
    """Assemble the document from whatever stages completed."""
    document: dict[str, Any] = {
        "schema": SCHEMA,
        "generatedAt": (generated_at or datetime.now()).isoformat(timespec="seconds"),
        "engine": {
            "version": __version__,
            "catalog": CATALOG_VERSION,
            "remediationTable": TABLE_VERSION,
        },
        "invocation": {
            "targetRoot": context.target_root,
            "esp": context.esp,
            "mode": context.intent.value,
            "verbose": context.verbose,
            "acknowledgeLiveOs": context.acknowledge_live_os,
            "overrideBuildCheck": context.override_build_check,
            "registryExports": list(context.registry_exports),
        },
        "snapshot": snapshot_section(snapshot) if snapshot is not None else None,
        "detections": detections_section(match) if match is not None else [],
        "skipped": [
            {"signature": s.signature_id, "fields": list(s.fields), "reason": s.reason}
            for s in (match.skipped if match is not None else ())
        ],
        "plan": plan_section(plan) if plan is not None else [],
        "planIncomplete": list(plan.incomplete) if plan is not None else [],
        "execution": execution_section(execution) if execution is not None else [],
        "executionSummary": execution_summary(execution) if execution is not None else None,
        "errors": collect_errors(snapshot, match, plan, execution, errors),
        "narrative": build_narrative(context.target_root, snapshot, match, plan, execution),
        "exitCode": exit_code,
    }
    return document
