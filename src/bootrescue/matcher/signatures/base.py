"""Base signature class for all boot-failure signatures."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from bootrescue.core.models import Detection, Severity, SystemSnapshot


class Signature(ABC):
    """One independent rule over a snapshot.

    ``requires`` names the snapshot fields the rule reads; the matcher skips
    the rule (with a recorded reason) when any of them is unavailable, so
    ``evaluate`` may call ``probe.value`` on those fields directly.
    """

    signature_id: str = ""
    title: str = ""
    severity: Severity = Severity.WARNING
    confidence: int = 50
    requires: tuple[str, ...] = ()
    remediation: str = ""
    description: str = ""

    @abstractmethod
    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        """Return a Detection when the failure pattern is present."""
        ...

    def _detect(
        self,
        description: str | None = None,
        evidence: dict[str, Any] | None = None,
        severity: Severity | None = None,
        confidence: int | None = None,
    ) -> Detection:
        """Helper to create a Detection with this signature's defaults."""
        pairs = tuple(
            (key, _render(value)) for key, value in sorted((evidence or {}).items())
        )
        return Detection(
            id=self.signature_id,
            title=self.title,
            severity=severity or self.severity,
            confidence=self.confidence if confidence is None else confidence,
            description=description or self.description,
            evidence=pairs,
            remediation=self.remediation,
        )


def _render(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ", ".join(_render(v) for v in value)
    if value is None:
        return ""
    return str(value)
