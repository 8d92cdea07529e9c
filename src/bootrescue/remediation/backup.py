"""Backup session management for BCD and registry hive backups."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path


class BackupStore:
    """One timestamped session directory per apply run, with a manifest."""

    def __init__(self, state_dir: Path):
        self.backup_dir = state_dir / "backups"
        self._session: Path | None = None

    def session(self) -> Path:
        """Create (once) and return this run's session directory."""
        if self._session is None:
            timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
            session = self.backup_dir / timestamp
            counter = 1
            while session.exists():
                session = self.backup_dir / f"{timestamp}.{counter}"
                counter += 1
            session.mkdir(parents=True)
            self._session = session
        return self._session

    def record(self, action_key: str, source: str, artifact: str, detection_ids: tuple[str, ...]) -> None:
        manifest_file = self.session() / "manifest.json"
        manifest = []
        if manifest_file.exists():
            manifest = json.loads(manifest_file.read_text())

        manifest.append({
            "action": action_key,
            "source": source,
            "backup": artifact,
            "detections": list(detection_ids),
            "timestamp": datetime.now().isoformat(timespec="seconds"),
        })
        manifest_file.write_text(json.dumps(manifest, indent=2))

    def sessions(self) -> list[Path]:
        if not self.backup_dir.exists():
            return []
        return sorted(p for p in self.backup_dir.iterdir() if p.is_dir())

    def manifest(self, session: Path) -> list[dict]:
        manifest_file = session / "manifest.json"
        if not manifest_file.exists():
            return []
        return json.loads(manifest_file.read_text())
