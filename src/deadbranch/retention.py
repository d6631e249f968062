"""Keep-count retention for backup files."""

import logging
from typing import Iterable

from deadbranch.backup import BackupFile
from deadbranch.errors import InvalidPolicyError

logger = logging.getLogger(__name__)


def select_for_removal(backups: Iterable[BackupFile], keep: int) -> list[BackupFile]:
    """Pick the backups to remove so that only the newest ``keep`` remain.

    Backups are ordered by timestamp, newest first; equal timestamps are
    ordered by file name.

    Raises:
        InvalidPolicyError: If keep is negative
    """
    if keep < 0:
        raise InvalidPolicyError(f"Number of backups to keep cannot be negative: {keep}")
    ordered = sorted(backups, key=BackupFile.sort_key, reverse=True)
    return ordered[keep:]


def prune(backups: Iterable[BackupFile], keep: int) -> list[BackupFile]:
    """Delete old backup files from disk.

    Returns:
        list[BackupFile]: The backups that were removed
    """
    removed = select_for_removal(backups, keep)
    for backup in removed:
        if backup.path is None:
            continue
        # Already gone counts as removed
        backup.path.unlink(missing_ok=True)
        logger.debug("Removed backup %s", backup.path)
    return removed
