"""Derivation of SafetyState from evidence, and fresh re-probing."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable

from bootrescue.core.errors import CollectionError
from bootrescue.core.models import BitLockerFacts, SafetyState, SystemSnapshot

logger = logging.getLogger("bootrescue.safety")

BitLockerProbe = Callable[[], BitLockerFacts]


def derive_safety_state(snapshot: SystemSnapshot) -> SafetyState:
    """Unavailable facts stay None, which the gate treats as unsafe."""
    bitlocker = snapshot.bitlocker.get()
    return SafetyState(
        live_os=snapshot.live_os.get(),
        bitlocker_active=bitlocker.active if bitlocker is not None else None,
        recovery_build=snapshot.host_build.get(),
        target_build=snapshot.os_build.get(),
    )


class SafetyMonitor:
    """Supplies a freshly probed SafetyState before every action.

    Builds and the live-OS flag cannot change during a run; BitLocker
    protection can (the plan may suspend it), so only that is re-probed.
    """

    def __init__(self, baseline: SafetyState, bitlocker_probe: BitLockerProbe | None = None):
        self.baseline = baseline
        self.bitlocker_probe = bitlocker_probe

    def current(self) -> SafetyState:
        if self.bitlocker_probe is None:
            return self.baseline
        try:
            facts = self.bitlocker_probe()
        except (CollectionError, OSError) as e:
            logger.warning("BitLocker re-probe failed, treating state as unknown: %s", e)
            return replace(self.baseline, bitlocker_active=None)
        return replace(self.baseline, bitlocker_active=facts.active)
