"""Servicing stack signatures (SVC-001 through SVC-003)."""

from __future__ import annotations

from bootrescue.core.models import Detection, Severity, SystemSnapshot
from bootrescue.matcher.signatures.base import Signature

REVERT_HINT = "Revert pending component store actions with DISM."


class SVC001PendingXml(Signature):
    """An interrupted update left WinSxS\\pending.xml behind."""

    signature_id = "SVC-001"
    title = "Component store operation pending"
    severity = Severity.WARNING
    confidence = 80
    requires = ("servicing_markers",)
    remediation = REVERT_HINT

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        markers = snapshot.servicing_markers.value
        if "pending.xml" not in markers:
            return None
        return self._detect(
            "WinSxS\\pending.xml is present; every boot retries the interrupted update.",
            {"markers": markers},
        )


class SVC002PendingRenames(Signature):
    signature_id = "SVC-002"
    title = "Pending file rename operations"
    severity = Severity.WARNING
    confidence = 60
    requires = ("pending_renames",)
    remediation = "Back up the SYSTEM hive and clear PendingFileRenameOperations."

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        renames = snapshot.pending_renames.value
        if not renames:
            return None
        return self._detect(
            f"{len(renames)} file operations are queued for the next boot.",
            {"count": len(renames), "first": renames[0]},
        )


class SVC003CbsRebootPending(Signature):
    signature_id = "SVC-003"
    title = "Servicing reboot pending"
    severity = Severity.INFO
    confidence = 40
    requires = ("servicing_markers",)
    remediation = REVERT_HINT

    def evaluate(self, snapshot: SystemSnapshot) -> Detection | None:
        markers = snapshot.servicing_markers.value
        if "cbs-reboot-pending" not in markers:
            return None
        return self._detect(
            "Component Based Servicing is waiting for a reboot to finish an update.",
            {"markers": markers},
        )
