"""Signature matcher: evaluates every signature against one snapshot."""

from __future__ import annotations

import logging

from bootrescue.core.config import BootRescueConfig
from bootrescue.core.models import Detection, MatchResult, MatchSkip, SystemSnapshot
from bootrescue.matcher.signatures import ALL_SIGNATURES
from bootrescue.matcher.signatures.base import Signature
from bootrescue.matcher.signatures.boot_files import BOOT002LoaderTruncated

logger = logging.getLogger("bootrescue.matcher")


def build_signatures(config: BootRescueConfig) -> list[Signature]:
    """Instantiate the catalog, applying config overrides."""
    signatures: list[Signature] = []
    for sig_cls in ALL_SIGNATURES:
        if sig_cls is BOOT002LoaderTruncated:
            signatures.append(BOOT002LoaderTruncated(min_size=config.collector.min_loader_size))
        else:
            signatures.append(sig_cls())
    return signatures


class SignatureMatcher:
    """Runs independent signatures; never deduplicates or merges detections."""

    def __init__(
        self,
        config: BootRescueConfig | None = None,
        signatures: list[Signature] | None = None,
    ):
        self.config = config or BootRescueConfig()
        self.signatures = signatures if signatures is not None else build_signatures(self.config)

    def match(self, snapshot: SystemSnapshot) -> MatchResult:
        detections: list[Detection] = []
        skipped: list[MatchSkip] = []
        ignored = set(self.config.matcher.ignore)

        for sig in self.signatures:
            if sig.signature_id in ignored:
                continue

            missing = tuple(f for f in sig.requires if not snapshot.probe(f).available)
            if missing:
                reasons = "; ".join(f"{f}: {snapshot.probe(f).reason}" for f in missing)
                skipped.append(MatchSkip(sig.signature_id, missing, f"evidence unavailable ({reasons})"))
                continue

            try:
                detection = sig.evaluate(snapshot)
            except Exception as e:
                logger.exception("Signature %s failed", sig.signature_id)
                skipped.append(MatchSkip(
                    sig.signature_id, sig.requires, f"rule error: {type(e).__name__}: {e}"
                ))
                continue

            if detection is not None:
                detections.append(detection)

        detections.sort(key=Detection.sort_key)
        skipped.sort(key=lambda s: s.signature_id)
        logger.debug(
            "Matched %d detections, %d signatures skipped", len(detections), len(skipped)
        )
        return MatchResult(detections=tuple(detections), skipped=tuple(skipped))
