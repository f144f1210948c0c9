"""
Atomic file replacement with rotating, timestamped backups.

The write sequence is:
1. Acquire a temporary file next to the target
2. Serialize the full payload into it, flush and fsync
3. Copy the previous version aside into a timestamped backup slot
4. Atomically rename the temporary file over the target
5. Remove the temporary file on every exit path

A crash at any point leaves either the previous or the new version in
place, never a partial file.
"""

import logging
import os
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from flashmaster.domain.constants import BACKUP_TIMESTAMP_FORMAT

logger = logging.getLogger(__name__)


@contextmanager
def temp_sibling(path: Path) -> Iterator[Path]:
    """Yield a fresh temporary path in ``path``'s directory; remove it on exit if it still exists."""
    fd, name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    os.close(fd)
    tmp = Path(name)
    try:
        yield tmp
    finally:
        if tmp.exists():
            tmp.unlink()


def write_durable(path: Path, data: str) -> None:
    with path.open("w", encoding="utf-8") as fh:
        fh.write(data)
        fh.flush()
        os.fsync(fh.fileno())


def fsync_dir(directory: Path) -> None:
    """Persist a rename on POSIX. No-op where directories cannot be opened."""
    if not hasattr(os, "O_DIRECTORY"):
        return
    fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def backup_name(path: Path, moment: datetime) -> str:
    return f"{path.stem}-{moment.strftime(BACKUP_TIMESTAMP_FORMAT)}{path.suffix}"


def list_backups(path: Path, backups_dir: Path) -> list[Path]:
    """Backups of ``path``, oldest first."""
    if not backups_dir.is_dir():
        return []
    return sorted(backups_dir.glob(f"{path.stem}-*{path.suffix}"), key=lambda p: p.name)


def backup_file(path: Path, backups_dir: Path, moment: datetime | None = None) -> Path:
    """
    Copy ``path`` into ``backups_dir`` under a timestamped name.

    The copy itself is written to a temporary file and renamed, so a crash
    never leaves a truncated backup behind.
    """
    moment = moment or datetime.now(timezone.utc)
    backups_dir.mkdir(parents=True, exist_ok=True)
    target = backups_dir / backup_name(path, moment)
    with temp_sibling(target) as tmp:
        shutil.copy2(path, tmp)
        os.replace(tmp, target)
    return target


def rotate_backups(path: Path, backups_dir: Path, keep: int) -> list[Path]:
    """Delete all but the newest ``keep`` backups. Returns the removed paths."""
    backups = list_backups(path, backups_dir)
    excess = backups[: max(len(backups) - max(keep, 1), 0)]
    for old in excess:
        old.unlink()
        logger.debug(f"Rotated out backup {old.name}")
    return excess


def atomic_write(
    path: Path,
    data: str,
    backups_dir: Path | None = None,
    keep: int = 10,
    moment: datetime | None = None,
) -> Path | None:
    """
    Replace ``path`` with ``data`` atomically, backing up the previous version.

    Args:
        path: Target file.
        data: Full new content.
        backups_dir: Where to keep copies of previous versions. No backup is
            taken when None or when the target does not exist yet.
        keep: Number of backups to retain.
        moment: Timestamp for the backup name (defaults to now).

    Returns:
        The backup path, if one was taken.

    Raises:
        OSError: on any filesystem failure up to the rename. The target is
            left untouched. Once the rename has happened the write is
            committed, so later failures (directory sync, backup rotation)
            are only logged.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    backup: Path | None = None

    with temp_sibling(path) as tmp:
        write_durable(tmp, data)
        if path.exists():
            shutil.copymode(path, tmp)
            if backups_dir is not None:
                backup = backup_file(path, backups_dir, moment)
        os.replace(tmp, path)

    try:
        fsync_dir(path.parent)
        if backup is not None:
            rotate_backups(path, backups_dir, keep)
    except OSError as e:
        logger.warning(f"Wrote {path} but post-write housekeeping failed: {e}")
    return backup
