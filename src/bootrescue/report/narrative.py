"""Plain-language summary that ties related detections together."""

from __future__ import annotations

from bootrescue.core.models import (
    Detection,
    ExecutionOutcome,
    ExecutionReport,
    ExecutionStatus,
    MatchResult,
    Severity,
    SystemSnapshot,
)

FAMILIES = (
    ("BCD", "Boot configuration"),
    ("BOOT", "Boot files"),
    ("SEC", "Secure Boot"),
    ("DRV", "Storage drivers"),
    ("SVC", "Servicing"),
    ("ENC", "Encryption"),
    ("ESP", "System partition"),
    ("PWR", "Power state"),
    ("REG", "Registry"),
    ("LOG", "Crash history"),
)

# (detection ids that must all be present, combined explanation)
CAUSAL_LINKS = (
    (
        ("BCD-001", "BOOT-005"),
        "The BCD store and the UEFI boot manager are both gone, which points to a "
        "wiped or reformatted EFI system partition; a single BCD rebuild restores both.",
    ),
    (
        ("BCD-001", "BOOT-006"),
        "The BCD store and bootmgr are both gone from the system partition; a "
        "single BCD rebuild restores both.",
    ),
    (
        ("SVC-001", "SVC-002"),
        "A pending component store transaction and queued file renames indicate an "
        "update interrupted mid-install.",
    ),
    (
        ("BOOT-001", "SEC-002"),
        "The installation carries only the BIOS loader while firmware boots in UEFI "
        "mode with Secure Boot.",
    ),
    (
        ("PWR-001", "LOG-001"),
        "A crash while hibernating would explain both the truncated hibernation file "
        "and the crash dump.",
    ),
)


def _family_sentences(detections: tuple[Detection, ...]) -> list[str]:
    sentences = []
    for prefix, label in FAMILIES:
        members = [d for d in detections if d.id.split("-", 1)[0] == prefix]
        if members:
            listed = "; ".join(f"{d.title} ({d.id})" for d in members)
            sentences.append(f"{label}: {listed}.")
    return sentences


def _storage_link(ids: set[str]) -> str | None:
    if ids & {"DRV-001", "DRV-002"}:
        return (
            "Windows cannot load its storage stack at boot, which typically surfaces "
            "as INACCESSIBLE_BOOT_DEVICE."
        )
    return None


def build_narrative(
    target_root: str,
    snapshot: SystemSnapshot | None,
    match: MatchResult | None,
    plan,
    execution: ExecutionReport | None,
) -> str:
    """Compose the narrative from whatever stages completed."""
    if snapshot is None:
        return f"No usable evidence could be collected from {target_root}; nothing was diagnosed."

    parts: list[str] = []
    unavailable = len(snapshot.unavailable)
    if match is None or not match.detections:
        parts.append(f"No known boot failure signature matched {target_root}.")
    else:
        detections = match.detections
        critical = sum(1 for d in detections if d.severity == Severity.CRITICAL)
        parts.append(
            f"Found {len(detections)} issue(s) on {target_root}, {critical} of them critical."
        )
        parts.extend(_family_sentences(detections))
        ids = {d.id for d in detections}
        for required, text in CAUSAL_LINKS:
            if all(i in ids for i in required):
                parts.append(text)
        storage = _storage_link(ids)
        if storage:
            parts.append(storage)

    if match is not None and match.skipped:
        parts.append(
            f"{len(match.skipped)} signature(s) could not be checked because "
            f"{unavailable} evidence field(s) were unavailable."
        )

    if plan is not None and plan.items:
        manual = sum(1 for item in plan.items if item.action.kind == "manual-intervention")
        text = f"The plan has {len(plan.items)} step(s)"
        if manual:
            text += f", {manual} of them for manual intervention"
        parts.append(text + ".")
        if plan.incomplete:
            parts.append("No automatic remediation exists for: " + ", ".join(plan.incomplete) + ".")

    if execution is not None:
        parts.append(_execution_sentence(execution))

    return " ".join(parts)


def _execution_sentence(execution: ExecutionReport) -> str:
    if execution.outcome == ExecutionOutcome.LOCK_CONTENTION:
        return "Apply was refused because another process holds the volume lock."
    if not execution.apply:
        return "Preview only: nothing was changed."
    counts: dict[ExecutionStatus, int] = {}
    for result in execution.results:
        counts[result.status] = counts.get(result.status, 0) + 1
    done = counts.get(ExecutionStatus.SUCCESS, 0) + counts.get(ExecutionStatus.NOOP, 0)
    text = f"Applied {done} of {len(execution.results)} step(s)"
    extras = [
        f"{n} {status.value}" for status, n in sorted(counts.items(), key=lambda kv: kv[0].value)
        if status not in (ExecutionStatus.SUCCESS, ExecutionStatus.NOOP)
    ]
    if extras:
        text += " (" + ", ".join(extras) + ")"
    if execution.outcome == ExecutionOutcome.HALTED:
        text += "; execution halted after a fatal failure"
    elif execution.outcome == ExecutionOutcome.CANCELLED:
        text += "; execution was cancelled"
    return text + "."
