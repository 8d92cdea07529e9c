"""Parity harness: independent runs must serialise identically."""

from __future__ import annotations

import difflib
import hashlib
import json
from dataclasses import dataclass
from typing import Any, Callable

TIMESTAMP_KEYS = frozenset({"generatedAt", "collectedAt", "startedAt", "finishedAt"})


def strip_timestamps(value: Any) -> Any:
    """Blank every timestamp key, keeping the key itself in place."""
    if isinstance(value, dict):
        return {
            k: (None if k in TIMESTAMP_KEYS else strip_timestamps(v)) for k, v in value.items()
        }
    if isinstance(value, list):
        return [strip_timestamps(v) for v in value]
    return value


def canonical_bytes(document: dict[str, Any]) -> bytes:
    """The exact bytes every front end receives."""
    return (json.dumps(document, indent=2, ensure_ascii=False) + "\n").encode("utf-8")


@dataclass(frozen=True)
class ParityResult:
    equal: bool
    runs: int
    digest: str
    diff: str = ""


def run_parity(run_once: Callable[[], dict[str, Any]], runs: int = 2) -> ParityResult:
    """Run the pipeline *runs* times and compare documents modulo timestamps."""
    if runs < 2:
        raise ValueError("parity needs at least two runs")

    baseline = canonical_bytes(strip_timestamps(run_once()))
    digest = hashlib.sha256(baseline).hexdigest()
    for _ in range(runs - 1):
        candidate = canonical_bytes(strip_timestamps(run_once()))
        if candidate != baseline:
            diff = "".join(difflib.unified_diff(
                baseline.decode("utf-8").splitlines(keepends=True),
                candidate.decode("utf-8").splitlines(keepends=True),
                fromfile="run-1",
                tofile="run-n",
            ))
            return ParityResult(equal=False, runs=runs, digest=digest, diff=diff)
    return ParityResult(equal=True, runs=runs, digest=digest)
