"""Evidence collector: runs every probe and assembles the SystemSnapshot."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from bootrescue.collector.host import detect_host, is_live_target
from bootrescue.collector.probes import TargetProbes, resolve_path
from bootrescue.collector.registry import RegExportReader, RegistryReader, RegQueryReader
from bootrescue.core.config import BootRescueConfig
from bootrescue.core.context import EngineContext
from bootrescue.core.errors import CollectionError, SnapshotUnavailable
from bootrescue.core.models import (
    HOST_FIELDS,
    SNAPSHOT_FIELDS,
    BitLockerFacts,
    HostEnvironment,
    Probe,
    SystemSnapshot,
)
from bootrescue.core.runner import CommandRunner

logger = logging.getLogger("bootrescue.collector")


class EvidenceCollector:
    """Collects one immutable snapshot per call.

    A probe that fails is recorded as unavailable with its reason; only a
    missing target or a snapshot with no evidence at all is an error.
    """

    def __init__(
        self,
        config: BootRescueConfig | None = None,
        runner: CommandRunner | None = None,
        registry: RegistryReader | None = None,
        host: HostEnvironment | None = None,
    ):
        self.config = config or BootRescueConfig()
        self.runner = runner or CommandRunner(timeout=self.config.collector.command_timeout)
        self.registry = registry
        self.host = host

    def collect(self, context: EngineContext) -> SystemSnapshot:
        root = Path(context.target_root)
        if not root.is_dir():
            raise SnapshotUnavailable("target", f"{context.target_root} is not an accessible directory")

        context.report_progress("collect", "started")
        host = self.host or detect_host()
        registry, owned = self._registry_for(context, host)
        probes = TargetProbes(
            context.target_root, context.esp, self.config.collector, self.runner, registry, host
        )

        values: dict[str, Probe] = {}
        try:
            total = len(SNAPSHOT_FIELDS)
            for index, name in enumerate(SNAPSHOT_FIELDS, start=1):
                values[name] = self._run_probe(context, probes, name)
                context.report_progress("collect", "progress", index * 100 // total, name)
        finally:
            if owned:
                registry.close()

        snapshot = SystemSnapshot(
            target_root=context.target_root,
            esp=context.esp,
            collected_at=datetime.now(),
            **values,
        )
        if not any(snapshot.probe(n).available for n in SNAPSHOT_FIELDS if n not in HOST_FIELDS):
            raise SnapshotUnavailable("snapshot", "no probe produced any evidence")

        context.logger.info(
            "Collected snapshot: %d/%d probes available",
            total - len(snapshot.unavailable),
            total,
        )
        context.report_progress("collect", "completed", 100)
        return snapshot

    def bitlocker_state(self, context: EngineContext) -> BitLockerFacts:
        """Re-probe BitLocker only, for safety re-checks between actions."""
        host = self.host or detect_host()
        probes = TargetProbes(
            context.target_root, context.esp, self.config.collector, self.runner,
            _NoRegistry(), host,
        )
        return probes.bitlocker()

    def _run_probe(self, context: EngineContext, probes: TargetProbes, name: str) -> Probe:
        try:
            return Probe.ok(getattr(probes, name)())
        except CollectionError as e:
            context.logger.warning("Probe %s unavailable: %s", name, e.reason)
            return Probe.unavailable(e.reason)
        except OSError as e:
            context.logger.warning("Probe %s unavailable: %s", name, e)
            return Probe.unavailable(f"{type(e).__name__}: {e.strerror or e}")
        except ValueError as e:
            context.logger.warning("Probe %s unavailable: %s", name, e)
            return Probe.unavailable(f"unexpected data: {e}")

    def _registry_for(
        self, context: EngineContext, host: HostEnvironment
    ) -> tuple[RegistryReader, bool]:
        if self.registry is not None:
            return self.registry, False
        if context.registry_exports:
            try:
                return RegExportReader([Path(p) for p in context.registry_exports]), True
            except CollectionError as e:
                context.logger.warning("Registry exports unreadable: %s", e.reason)
                return _NoRegistry(e.reason), False
        hive_dir = None
        if not is_live_target(host, context.target_root):
            hive_dir = resolve_path(Path(context.target_root), "Windows", "System32", "config")
        return RegQueryReader(
            self.runner, hive_dir=hive_dir, timeout=self.config.collector.command_timeout
        ), True


class _NoRegistry(RegistryReader):
    def __init__(self, reason: str = "registry not available for re-probe"):
        self.reason = reason

    def query(self, hive: str, key: str):
        raise CollectionError(f"registry:{hive}", self.reason)
