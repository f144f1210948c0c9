import os
import stat
from datetime import datetime, timedelta, timezone

import pytest

from flashmaster.infrastructure.utils import atomic
from flashmaster.infrastructure.utils.atomic import (
    atomic_write,
    backup_name,
    list_backups,
    rotate_backups,
)

MOMENT = datetime(2025, 3, 1, 9, 30, 15, 123456, tzinfo=timezone.utc)


def test_backup_name_is_timestamped(tmp_path):
    assert backup_name(tmp_path / "flashmaster.json", MOMENT) == (
        "flashmaster-20250301-093015-123456.json"
    )


def test_first_write_takes_no_backup(tmp_path):
    target = tmp_path / "nested" / "store.json"

    assert atomic_write(target, "v1", backups_dir=tmp_path / "backups") is None
    assert target.read_text() == "v1"
    assert list_backups(target, tmp_path / "backups") == []


def test_overwrite_backs_up_previous_version(tmp_path):
    target = tmp_path / "store.json"
    backups = tmp_path / "backups"
    atomic_write(target, "v1", backups_dir=backups, moment=MOMENT)

    backup = atomic_write(target, "v2", backups_dir=backups, moment=MOMENT)

    assert target.read_text() == "v2"
    assert backup is not None
    assert backup.read_text() == "v1"


def test_rotation_keeps_newest(tmp_path):
    target = tmp_path / "store.json"
    backups = tmp_path / "backups"
    for i in range(6):
        atomic_write(target, f"v{i}", backups_dir=backups, keep=2, moment=MOMENT + timedelta(seconds=i))

    kept = list_backups(target, backups)
    assert [p.read_text() for p in kept] == ["v3", "v4"]


def test_rotate_backups_returns_removed(tmp_path):
    target = tmp_path / "store.json"
    backups = tmp_path / "backups"
    backups.mkdir()
    for i in range(4):
        (backups / backup_name(target, MOMENT + timedelta(seconds=i))).write_text(str(i))
    (backups / "unrelated.txt").write_text("keep me")

    removed = rotate_backups(target, backups, keep=1)

    assert len(removed) == 3
    assert [p.read_text() for p in list_backups(target, backups)] == ["3"]
    assert (backups / "unrelated.txt").exists()


def test_failure_before_rename_leaves_target(tmp_path, monkeypatch):
    target = tmp_path / "store.json"
    atomic_write(target, "v1")

    def failing_replace(src, dst):
        raise OSError("rename failed")

    monkeypatch.setattr(os, "replace", failing_replace)

    with pytest.raises(OSError):
        atomic_write(target, "v2")

    assert target.read_text() == "v1"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["store.json"]


def test_failure_while_writing_leaves_target(tmp_path, monkeypatch):
    target = tmp_path / "store.json"
    atomic_write(target, "v1")

    def failing_fsync(fd):
        raise OSError("I/O error")

    monkeypatch.setattr(os, "fsync", failing_fsync)

    with pytest.raises(OSError):
        atomic_write(target, "v2")

    assert target.read_text() == "v1"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["store.json"]


def test_rotation_failure_after_rename_is_not_fatal(tmp_path, monkeypatch):
    target = tmp_path / "store.json"
    backups = tmp_path / "backups"
    atomic_write(target, "v1", backups_dir=backups, moment=MOMENT)

    def failing_rotate(*args, **kwargs):
        raise OSError("permission denied")

    monkeypatch.setattr(atomic, "rotate_backups", failing_rotate)

    backup = atomic_write(target, "v2", backups_dir=backups, moment=MOMENT)

    assert target.read_text() == "v2"
    assert backup is not None and backup.read_text() == "v1"


def test_dir_sync_failure_after_rename_is_not_fatal(tmp_path, monkeypatch):
    target = tmp_path / "store.json"

    def failing_sync(directory):
        raise OSError("fsync not supported")

    monkeypatch.setattr(atomic, "fsync_dir", failing_sync)

    atomic_write(target, "v1")

    assert target.read_text() == "v1"


@pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
def test_overwrite_keeps_file_mode(tmp_path):
    target = tmp_path / "store.json"
    atomic_write(target, "v1")
    target.chmod(0o644)

    atomic_write(target, "v2")

    assert stat.S_IMODE(target.stat().st_mode) == 0o644
