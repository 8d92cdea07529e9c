"""Process boundary to the native Windows tools."""

from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass
from typing import Sequence

logger = logging.getLogger("bootrescue.runner")

EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124
EXIT_OS_ERROR = 126


@dataclass(frozen=True)
class CommandResult:
    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        parts = [p.strip() for p in (self.stdout, self.stderr) if p and p.strip()]
        return "\n".join(parts)


def format_command(argv: Sequence[str]) -> str:
    """Render an argument vector the way cmd.exe would receive it."""
    return subprocess.list2cmdline(list(argv))


class CommandRunner:
    """Runs a command to completion and captures its output."""

    def __init__(self, timeout: int = 300):
        self.timeout = timeout

    def run(self, argv: Sequence[str], timeout: int | None = None) -> CommandResult:
        args = tuple(argv)
        limit = timeout or self.timeout
        logger.debug("Running %s (timeout %ss)", format_command(args), limit)
        start = time.monotonic()

        try:
            proc = subprocess.run(
                list(args),
                capture_output=True,
                text=True,
                errors="replace",
                timeout=limit,
            )
        except FileNotFoundError:
            return CommandResult(args, EXIT_NOT_FOUND, stderr=f"command not found: {args[0]}")
        except subprocess.TimeoutExpired as e:
            return CommandResult(
                args,
                EXIT_TIMEOUT,
                stdout=_text(e.stdout),
                stderr=f"timed out after {limit}s",
                duration_seconds=time.monotonic() - start,
            )
        except OSError as e:
            return CommandResult(args, EXIT_OS_ERROR, stderr=str(e))

        result = CommandResult(
            argv=args,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            duration_seconds=time.monotonic() - start,
        )
        if not result.success:
            logger.debug(
                "%s exited %s: %s", args[0], result.returncode, result.stderr[:500]
            )
        return result


def _text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value
