"""Append-only action log.

Every proposed, executed, skipped or refused action is recorded so that
support staff can see exactly what the engine did and when.

Log location: ``<state dir>/action.log``

Format (pipe-delimited, one line per entry, captured output on indented
continuation lines)::

    timestamp | mode | [TAG] | action | status | exit_code | command
      > output line

View the log via::

    bootrescue log
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path

from bootrescue.core.models import ActionLogEntry, Intent
from bootrescue.remediation.lock import try_lock, unlock

_HEADER = (
    "# bootrescue action log\n"
    "# Format: timestamp | mode | [TAG] | action | status | exit_code | command\n"
    "#\n"
)
_OUTPUT_PREFIX = "  > "
_MAX_OUTPUT_LINES = 200

TAGS = (
    "PROPOSED",
    "WOULD-EXECUTE",
    "EXECUTE",
    "RESULT",
    "SAFETY-BLOCKED",
    "SKIPPED",
    "MANUAL",
    "REFUSED",
)


class ActionLog:
    """Append-only log of engine actions.

    Writes are serialised through a thread lock and an advisory file lock,
    and flushed before ``record`` returns.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._ensure_header()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def record(
        self,
        *,
        mode: Intent,
        tag: str,
        action: str,
        status: str,
        command: str = "",
        exit_code: int | None = None,
        output: str = "",
    ) -> ActionLogEntry:
        """Append one entry and return it."""
        if tag not in TAGS:
            raise ValueError(f"unknown action log tag {tag!r}")
        now = datetime.now(timezone.utc)
        line = " | ".join(
            [
                now.isoformat(timespec="milliseconds"),
                mode.value,
                f"[{tag}]",
                _sanitise(action),
                _sanitise(status),
                "" if exit_code is None else str(exit_code),
                _sanitise(command),
            ]
        )
        lines = [line]
        output_lines = [ln.rstrip() for ln in output.splitlines() if ln.strip()]
        if len(output_lines) > _MAX_OUTPUT_LINES:
            dropped = len(output_lines) - _MAX_OUTPUT_LINES
            output_lines = output_lines[:_MAX_OUTPUT_LINES] + [f"... {dropped} more lines"]
        lines.extend(_OUTPUT_PREFIX + ln for ln in output_lines)
        self._append("\n".join(lines) + "\n")

        return ActionLogEntry(
            timestamp=now,
            mode=mode,
            tag=tag,
            action=action,
            status=status,
            command=command,
            exit_code=exit_code,
            output="\n".join(output_lines),
        )

    def read_all(self) -> str:
        with self._lock:
            if not self._path.exists():
                return ""
            return self._path.read_text(encoding="utf-8")

    def read_entries(self, last_n: int = 50) -> list[ActionLogEntry]:
        """Parse the last *n* entries, including their captured output."""
        raw: list[tuple[list[str], list[str]]] = []
        for ln in self.read_all().splitlines():
            if ln.startswith(_OUTPUT_PREFIX):
                if raw:
                    raw[-1][1].append(ln[len(_OUTPUT_PREFIX):])
                continue
            if not ln.strip() or ln.startswith("#"):
                continue
            parts = [p.strip() for p in ln.split("|", 6)]
            if len(parts) < 7:
                continue
            raw.append((parts, []))

        if last_n:
            raw = raw[-last_n:]
        entries: list[ActionLogEntry] = []
        for parts, output in raw:
            try:
                timestamp = datetime.fromisoformat(parts[0])
                mode = Intent(parts[1])
            except ValueError:
                continue
            entries.append(ActionLogEntry(
                timestamp=timestamp,
                mode=mode,
                tag=parts[2].strip("[]"),
                action=parts[3],
                status=parts[4],
                exit_code=int(parts[5]) if parts[5].lstrip("-").isdigit() else None,
                command=parts[6],
                output="\n".join(output),
            ))
        return entries

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_header(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not self._path.exists():
            self._path.write_text(_HEADER, encoding="utf-8")

    def _append(self, text: str) -> None:
        with self._lock:
            with open(self._path, "a", encoding="utf-8") as fd:
                locked = try_lock(fd)
                try:
                    fd.write(text)
                    fd.flush()
                finally:
                    if locked:
                        unlock(fd)


def _sanitise(value: str) -> str:
    """Replace pipes and newlines so they don't break the log format."""
    return value.replace("|", "/").replace("\n", " ").replace("\r", "")
