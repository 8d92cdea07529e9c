"""Evidence collection: read-only probes that build a SystemSnapshot."""

from bootrescue.collector.engine import EvidenceCollector
from bootrescue.collector.host import detect_host

__all__ = [
    "EvidenceCollector",
    "detect_host",
]
