"""Tests for backup sessions."""

from __future__ import annotations

from bootrescue.remediation.backup import BackupStore


def test_session_is_created_once(tmp_path):
    store = BackupStore(tmp_path)
    first = store.session()
    assert first.is_dir()
    assert store.session() == first
    assert store.sessions() == [first]


def test_sessions_in_same_second_do_not_collide(tmp_path):
    a = BackupStore(tmp_path).session()
    b = BackupStore(tmp_path).session()
    assert a != b
    assert len(BackupStore(tmp_path).sessions()) == 2


def test_manifest_records_each_backup(tmp_path):
    store = BackupStore(tmp_path)
    store.record("backup-bcd[...]", "S:\\BCD", "X\\BCD", ("BCD-001",))
    store.record("backup-registry-hive[...]", "D:\\SYSTEM", "X\\SYSTEM", ("SVC-002",))

    manifest = store.manifest(store.session())
    assert [m["action"] for m in manifest] == ["backup-bcd[...]", "backup-registry-hive[...]"]
    assert manifest[1]["detections"] == ["SVC-002"]
    assert manifest[0]["source"] == "S:\\BCD"


def test_no_sessions_yet(tmp_path):
    store = BackupStore(tmp_path / "state")
    assert store.sessions() == []
