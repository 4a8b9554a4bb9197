"""Backups of the unpatched client binary.

The pristine binary is kept as ``<binary>.original``. Patching rewrites
bytes in place, so a patched binary has the same size as its backup;
a size difference means the binary was replaced from outside (usually
a game update) and the backup no longer describes it.
"""

from __future__ import annotations

import shutil
from datetime import datetime, timezone
from pathlib import Path

import structlog

logger = structlog.get_logger()

BACKUP_SUFFIX = ".original"


def backup_path_for(binary: Path) -> Path:
    return binary.with_name(binary.name + BACKUP_SUFFIX)


def _archive_timestamp(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H-%M-%S")


def backup_is_stale(binary: Path) -> bool:
    """Check whether the backup no longer matches the binary's size."""
    backup = backup_path_for(binary)
    if not backup.exists():
        return False
    return binary.stat().st_size != backup.stat().st_size


def ensure_backup(binary: Path, now: datetime | None = None) -> Path:
    """Make sure a backup of the current unpatched binary exists.

    Creates the backup on first use. When the existing backup's size
    differs from the binary, the old backup is archived with a timestamp
    suffix and replaced by a fresh copy.

    Args:
        binary: Client executable
        now: Timestamp for archived backups (defaults to the current time)

    Returns:
        Path of the backup

    Raises:
        OSError: If the backup cannot be written
    """
    backup = backup_path_for(binary)

    if not backup.exists():
        logger.info("backup_created", path=str(backup))
        shutil.copy2(binary, backup)
        return backup

    if backup_is_stale(binary):
        archived = backup.with_name(f"{backup.name}.{_archive_timestamp(now)}")
        logger.info("backup_archived", archived=str(archived), reason="binary_size_changed")
        backup.rename(archived)
        shutil.copy2(binary, backup)
        return backup

    logger.debug("backup_exists", path=str(backup))
    return backup


def restore_backup(binary: Path) -> bool:
    """Copy the backup over the binary.

    Returns:
        False if there is no backup to restore
    """
    backup = backup_path_for(binary)
    if not backup.exists():
        return False
    shutil.copy2(backup, binary)
    logger.info("binary_restored", path=str(binary))
    return True
