"""Safety gate: decides whether an action may run in the current context.

Rules, in order:

1. Preview intent is always clear; nothing runs.
2. Read-only actions are always clear.
3. A high-risk action against the live OS is blocked unless the operator
   gave the explicit live-OS acknowledgement.
4. Otherwise any outstanding precondition (suspend BitLocker before an
   offline filesystem write, build override when the recovery environment
   is older than the target, completed backups before destructive writes)
   makes the action wait on that precondition.

Unknown context facts are treated as the unsafe value, so a monotonic
change towards "safer" can never tighten a decision.
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol

from bootrescue.core.models import (
    GateDecision,
    GateState,
    Intent,
    Precondition,
    RiskTier,
    SafetyState,
)

logger = logging.getLogger("bootrescue.safety")


class GatedAction(Protocol):
    @property
    def key(self) -> str: ...

    risk: RiskTier
    offline_write: bool
    backups: tuple[Precondition, ...]


class SafetyGate:
    """Pure decision function over (intent, action, state)."""

    def __init__(self, acknowledge_live_os: bool = False, override_build_check: bool = False):
        self.acknowledge_live_os = acknowledge_live_os
        self.override_build_check = override_build_check

    def evaluate(
        self,
        intent: Intent,
        action: GatedAction,
        state: SafetyState,
        completed: Iterable[Precondition] = (),
    ) -> GateDecision:
        if intent == Intent.PREVIEW:
            return GateDecision(GateState.CLEAR, ("preview: nothing is executed",))
        if action.risk == RiskTier.READ_ONLY:
            return GateDecision(GateState.CLEAR)

        if action.risk == RiskTier.HIGH and state.live and not self.acknowledge_live_os:
            reason = (
                "target is the running OS" if state.live_os else "live-OS state unknown"
            )
            return GateDecision(
                GateState.BLOCKED,
                (f"{reason}; high-risk actions need the live-OS acknowledgement",),
            )

        done = set(completed)
        pending: list[Precondition] = []
        reasons: list[str] = []

        # A completed suspend only stands in for an unknown probe, never a known "on"
        if action.offline_write and (
            state.bitlocker_active
            or (state.bitlocker_active is None and Precondition.SUSPEND_BITLOCKER not in done)
        ):
            pending.append(Precondition.SUSPEND_BITLOCKER)
            reasons.append(
                "BitLocker protection is on" if state.bitlocker_active else "BitLocker state unknown"
            )
        if state.build_mismatch and not self.override_build_check:
            pending.append(Precondition.BUILD_OVERRIDE)
            reasons.append(_build_reason(state))
        for backup in action.backups:
            if backup not in done:
                pending.append(backup)
                reasons.append(f"{backup.value} has not completed")

        if pending:
            return GateDecision(GateState.REQUIRES_PRECONDITION, tuple(reasons), tuple(pending))
        return GateDecision(GateState.CLEAR)


def _build_reason(state: SafetyState) -> str:
    if state.recovery_build is None or state.target_build is None:
        return "recovery or target build unknown"
    return (
        f"recovery environment build {state.recovery_build} is older than "
        f"target build {state.target_build}"
    )
