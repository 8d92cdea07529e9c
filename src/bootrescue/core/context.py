"""Explicit per-run context passed through every engine stage."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, MutableMapping

from bootrescue.core.config import BootRescueConfig
from bootrescue.core.models import Intent

logger = logging.getLogger("bootrescue.engine")


class CancellationToken:
    """Cooperative cancellation flag, checked between actions."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class ProgressEvent:
    phase: str  # "collect", "match", "gate", "plan", "execute", "report"
    status: str  # "started", "progress", "completed"
    percent: int | None = None
    message: str = ""


ProgressCallback = Callable[[ProgressEvent], None]


class RunLogAdapter(logging.LoggerAdapter):
    """Prefixes every record with the fixed run context."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        ctx = self.extra or {}
        return f"[{ctx.get('mode')} {ctx.get('target')}] {msg}", kwargs


@dataclass(frozen=True)
class EngineContext:
    """Everything a stage may consult; no stage reads ambient state."""

    target_root: str
    esp: str
    apply: bool = False
    verbose: bool = False
    acknowledge_live_os: bool = False
    override_build_check: bool = False
    registry_exports: tuple[str, ...] = ()
    config: BootRescueConfig = field(default_factory=BootRescueConfig)
    cancel: CancellationToken = field(default_factory=CancellationToken)
    progress: ProgressCallback | None = None
    logger: logging.LoggerAdapter | None = None

    def __post_init__(self) -> None:
        if self.logger is None:
            adapter = RunLogAdapter(
                logger, {"target": self.target_root, "mode": self.intent.value}
            )
            object.__setattr__(self, "logger", adapter)

    @property
    def intent(self) -> Intent:
        return Intent.APPLY if self.apply else Intent.PREVIEW

    def report_progress(
        self,
        phase: str,
        status: str,
        percent: int | None = None,
        message: str = "",
    ) -> None:
        """Invoke the caller's progress callback at a checkpoint."""
        if self.progress is None:
            return
        event = ProgressEvent(phase=phase, status=status, percent=percent, message=message)
        try:
            self.progress(event)
        except Exception:
            self.logger.exception("Progress callback failed at %s/%s", phase, status)
