"""Error taxonomy shared by every engine stage.

Collection and match errors are absorbed into the snapshot and the match
result as explicit markers. Gate and executor errors stop at most the
remaining plan. Every error can render itself as a record for the
canonical document, so front ends never translate errors themselves.
"""

from __future__ import annotations

from typing import Any


class BootRescueError(Exception):
    """Base class for all engine errors."""

    def details(self) -> dict[str, Any]:
        return {}

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {"type": type(self).__name__, "message": str(self)}
        record.update(self.details())
        return record


class ConfigError(BootRescueError):
    """bootrescue.toml could not be read or holds invalid values."""


class CollectionError(BootRescueError):
    """A single evidence probe could not complete."""

    def __init__(self, probe: str, reason: str):
        self.probe = probe
        self.reason = reason
        super().__init__(f"{probe}: {reason}")

    def details(self) -> dict[str, Any]:
        return {"probe": self.probe}


class SnapshotUnavailable(CollectionError):
    """Collection produced no usable evidence at all."""


class MatchSkipped(BootRescueError):
    """A signature could not be evaluated because evidence was unavailable."""

    def __init__(self, signature_id: str, fields: tuple[str, ...], reason: str):
        self.signature_id = signature_id
        self.fields = fields
        self.reason = reason
        super().__init__(f"{signature_id} not evaluated: {reason}")

    def details(self) -> dict[str, Any]:
        return {"signature": self.signature_id, "fields": list(self.fields)}


class SafetyBlocked(BootRescueError):
    """The safety gate refused an action."""

    def __init__(self, action_key: str, state: str, reasons: tuple[str, ...]):
        self.action_key = action_key
        self.state = state
        self.reasons = reasons
        detail = "; ".join(reasons) if reasons else state
        super().__init__(f"{action_key} refused by safety gate: {detail}")

    def details(self) -> dict[str, Any]:
        return {"action": self.action_key, "gate": self.state}


class ActionFailed(BootRescueError):
    """A remediation command reported failure."""

    def __init__(self, action_key: str, exit_code: int | None, fatal: bool, output: str = ""):
        self.action_key = action_key
        self.exit_code = exit_code
        self.fatal = fatal
        self.output = output
        kind = "fatal" if fatal else "non-fatal"
        super().__init__(f"{action_key} failed ({kind}, exit code {exit_code})")

    def details(self) -> dict[str, Any]:
        return {"action": self.action_key, "exitCode": self.exit_code, "fatal": self.fatal}


class PlanIncomplete(BootRescueError):
    """A detection had no mapped remediation and needs a human."""

    def __init__(self, detection_ids: tuple[str, ...]):
        self.detection_ids = detection_ids
        super().__init__(
            "no automatic remediation for: " + ", ".join(detection_ids)
        )

    def details(self) -> dict[str, Any]:
        return {"detections": list(self.detection_ids)}


class LockContention(BootRescueError):
    """Another process holds the apply lock for the target volume."""

    def __init__(self, lock_path: str, holder: str = ""):
        self.lock_path = lock_path
        self.holder = holder
        message = f"apply refused: lock held ({lock_path})"
        if holder:
            message += f" by {holder}"
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {"lock": self.lock_path}


class ActionValidationError(BootRescueError, ValueError):
    """A remediation action was built with invalid arguments."""


class InternalError(BootRescueError):
    """An unexpected exception escaped a stage; captured for the document."""

    def __init__(self, stage: str, error: Exception):
        self.stage = stage
        self.error_type = type(error).__name__
        super().__init__(f"{stage} failed unexpectedly: {self.error_type}: {error}")

    def details(self) -> dict[str, Any]:
        return {"stage": self.stage, "errorType": self.error_type}
