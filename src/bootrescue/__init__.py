"""bootrescue: precision boot diagnosis and repair for Windows installations."""

from bootrescue._version import __version__
from bootrescue.core.context import CancellationToken, EngineContext, ProgressEvent
from bootrescue.engine import DiagnosisEngine, EngineRun

__all__ = [
    "__version__",
    "CancellationToken",
    "DiagnosisEngine",
    "EngineContext",
    "EngineRun",
    "ProgressEvent",
]
