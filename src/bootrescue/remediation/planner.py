"""Remediation planner: turns detections into an ordered, idempotent plan."""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, replace
from typing import Iterable

from bootrescue.core.models import Detection, GateDecision, Intent, Precondition, SafetyState
from bootrescue.remediation.actions import (
    BackupBcd,
    BackupRegistryHive,
    ManualIntervention,
    RemediationAction,
    SuspendEncryption,
)
from bootrescue.remediation.catalog import REMEDIATION_TABLE, ActionFactory, PlanTarget
from bootrescue.safety.gate import SafetyGate

logger = logging.getLogger("bootrescue.planner")


@dataclass(frozen=True)
class PlanItem:
    action: RemediationAction
    gate: GateDecision


@dataclass(frozen=True)
class Plan:
    items: tuple[PlanItem, ...] = ()
    incomplete: tuple[str, ...] = ()

    @property
    def actions(self) -> tuple[RemediationAction, ...]:
        return tuple(item.action for item in self.items)

    @property
    def empty(self) -> bool:
        return not self.items


def precedes(first: RemediationAction, second: RemediationAction) -> bool:
    """True when *first* must run before *second* if both are planned."""
    if first.satisfies is not None and first.satisfies in second.backups:
        return True
    if isinstance(first, SuspendEncryption) and second.offline_write:
        return True
    return first.kind in second.after


class RemediationPlanner:
    """Maps detections through the remediation table, then orders and dedupes.

    The table decides *what* to do; this class owns backups, prerequisites,
    ordering, deduplication and the manual placeholders for unmapped
    detections.
    """

    def __init__(
        self,
        table: dict[str, list[ActionFactory]] | None = None,
        gate: SafetyGate | None = None,
    ):
        self.table = REMEDIATION_TABLE if table is None else table
        self.gate = gate or SafetyGate()

    def plan(
        self,
        detections: Iterable[Detection],
        state: SafetyState,
        target: PlanTarget,
    ) -> Plan:
        proposed: list[RemediationAction] = []
        incomplete: list[str] = []

        for detection in detections:
            factories = self.table.get(detection.id)
            if not factories:
                logger.warning("No remediation mapped for %s", detection.id)
                incomplete.append(detection.id)
                proposed.append(ManualIntervention(
                    detection_id=detection.id,
                    instructions=(
                        f"No automatic remediation is defined for {detection.id}. "
                        f"{detection.remediation}"
                    ).strip(),
                    justification=f"{detection.id}: {detection.title}",
                    detection_ids=(detection.id,),
                ))
                continue
            for factory in factories:
                proposed.extend(factory(detection, target))

        actions = _dedupe(proposed)
        prerequisites = self._prerequisites(actions, state, target)
        backups = self._backups(actions, target)
        ordered = _order(backups + prerequisites + actions)
        return Plan(items=self._project(ordered, state), incomplete=tuple(incomplete))

    def _prerequisites(
        self,
        actions: list[RemediationAction],
        state: SafetyState,
        target: PlanTarget,
    ) -> list[RemediationAction]:
        writers = [a for a in actions if a.offline_write]
        if not writers or not state.encryption_active:
            return []
        return [SuspendEncryption(
            volume=target.volume,
            justification="BitLocker protection must be suspended before writing the target",
            detection_ids=_merge_ids(writers),
        )]

    def _backups(
        self, actions: list[RemediationAction], target: PlanTarget
    ) -> list[RemediationAction]:
        backups: list[RemediationAction] = []
        for precondition in (Precondition.BCD_BACKUP, Precondition.SYSTEM_HIVE_BACKUP):
            dependents = [a for a in actions if precondition in a.backups]
            if not dependents:
                continue
            ids = _merge_ids(dependents)
            if precondition == Precondition.BCD_BACKUP:
                backups.append(BackupBcd(
                    store=target.bcd_store,
                    present=target.bcd_present,
                    live=target.live,
                    justification="Required before modifying the BCD store",
                    detection_ids=ids,
                ))
            else:
                backups.append(BackupRegistryHive(
                    hive_file=target.system_hive,
                    present=target.hive_present,
                    live=target.live,
                    justification="Required before modifying the SYSTEM hive",
                    detection_ids=ids,
                ))
        return backups

    def _project(
        self, actions: list[RemediationAction], state: SafetyState
    ) -> tuple[PlanItem, ...]:
        """Gate decisions as apply mode would see them, assuming earlier steps succeed."""
        completed: set[Precondition] = set()
        items = []
        for action in actions:
            decision = self.gate.evaluate(Intent.APPLY, action, state, completed)
            items.append(PlanItem(action=action, gate=decision))
            if action.satisfies is not None:
                completed.add(action.satisfies)
            if isinstance(action, SuspendEncryption):
                state = replace(state, bitlocker_active=False)
        return tuple(items)


def _merge_ids(actions: Iterable[RemediationAction]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for action in actions:
        for detection_id in action.detection_ids:
            seen.setdefault(detection_id, None)
    return tuple(seen)


def _dedupe(actions: list[RemediationAction]) -> list[RemediationAction]:
    unique: dict[str, RemediationAction] = {}
    for action in actions:
        existing = unique.get(action.key)
        if existing is None:
            unique[action.key] = action
        else:
            unique[action.key] = replace(
                existing, detection_ids=_merge_ids((existing, action))
            )
    return list(unique.values())


def _order(actions: list[RemediationAction]) -> list[RemediationAction]:
    """Kahn's algorithm; ties broken by phase, then insertion order."""
    count = len(actions)
    successors: list[list[int]] = [[] for _ in range(count)]
    indegree = [0] * count
    for i, first in enumerate(actions):
        for j, second in enumerate(actions):
            if i != j and precedes(first, second):
                successors[i].append(j)
                indegree[j] += 1

    ready = [(actions[i].phase, i) for i in range(count) if indegree[i] == 0]
    heapq.heapify(ready)
    ordered: list[RemediationAction] = []
    while ready:
        _, i = heapq.heappop(ready)
        ordered.append(actions[i])
        for j in successors[i]:
            indegree[j] -= 1
            if indegree[j] == 0:
                heapq.heappush(ready, (actions[j].phase, j))

    if len(ordered) != count:
        raise ValueError("remediation actions have a circular ordering constraint")
    return ordered
