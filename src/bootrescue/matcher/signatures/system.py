"""Registry and log signatures (REG-001, LOG-001, LOG-002)."""

from __future__ import annotations

from bootrescue.core.models import Detection, Severity, SystemSnapshot
from bootrescue.matcher.signatures.base import Signature


class REG001SystemHiveMissing(Signature):
    signature_id = "REG-001"
    title = "SYSTEM hive missing or empty"
    severity = Severity.CRITICAL
    confidence = 95
    requires = ("system_hive",)
    remediation = "Restore the SYSTEM hive from config\\RegBack or a backup."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        hive = snapshot.system_hive.value
        if hive.exists and not hive.empty:
            return None
        state = "missing" if not hive.exists else "zero-length"
        return self._detect(f"The SYSTEM hive is {state}.", {"path": hive.path, "state": state})


class LOG001CrashDump(Signature):
    signature_id = "LOG-001"
    title = "Crash dump present"
    severity = Severity.INFO
    confidence = 30
    requires = ("crash_dumps",)
    remediation = "Analyse the dump to identify the faulting driver."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        dumps = snapshot.crash_dumps.value
        if not dumps:
            return None
        return self._detect(
            f"{len(dumps)} crash dump(s) found; the system has bugchecked.",
            {"count": len(dumps), "latest": dumps[-1].path},
        )


class LOG002RepairRootCause(Signature):
    signature_id = "LOG-002"
    title = "Automatic Repair root cause recorded"
    severity = Severity.WARNING
    confidence = 50
    requires = ("repair_root_cause",)
    remediation = "Check the file system of the target volume."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        cause = snapshot.repair_root_cause.value
        if not cause:
            return None
        return self._detect(f"Automatic Repair reported: {cause}", {"root_cause": cause})
