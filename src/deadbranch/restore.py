"""Find the commit to recreate a deleted branch from."""

import logging
from dataclasses import dataclass
from typing import Container, Iterable, Optional

from deadbranch.backup import BackupFile
from deadbranch.errors import ConflictError, InvalidNameError, NotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RestoreSelector:
    """What to restore and where."""

    branch_name: str
    explicit_backup_file: Optional[str] = None
    new_name: Optional[str] = None
    overwrite: bool = False


@dataclass(frozen=True)
class RestoreTarget:
    """Where a branch should be recreated."""

    sha: str
    target_name: str
    backup: BackupFile


def _select_backup(identifier: str, backups: Iterable[BackupFile]) -> BackupFile:
    """Pick a backup by file name or timestamp."""
    for backup in backups:
        if identifier in (backup.filename, backup.timestamp):
            return backup
    raise NotFoundError(f"Backup file '{identifier}' not found")


def _check_target_name(name: str) -> None:
    if not name or any(ch.isspace() for ch in name) or name.startswith("-"):
        raise InvalidNameError(f"Invalid branch name: {name!r}")


def resolve(
    selector: RestoreSelector,
    candidate_backups: Iterable[BackupFile],
    live_branches: Container[str] = (),
) -> RestoreTarget:
    """Resolve a restore request to a commit and a target branch name.

    Without an explicit backup file the most recent backup containing the
    branch wins, so a branch deleted several times comes back as it was at
    its latest deletion.

    Args:
        selector: Branch to restore, optional backup file, new name and overwrite flag
        candidate_backups: Backups of the repository
        live_branches: Names of the branches that currently exist

    Returns:
        RestoreTarget: Commit SHA, branch name to create and the backup used

    Raises:
        NotFoundError: If the backup file or the branch cannot be found
        InvalidNameError: If the target name is not usable
        ConflictError: If the target branch exists and overwrite is not set
    """
    backups = sorted(candidate_backups, key=BackupFile.sort_key, reverse=True)

    if selector.explicit_backup_file:
        backup = _select_backup(selector.explicit_backup_file, backups)
        entry = backup.find(selector.branch_name)
        if entry is None:
            raise NotFoundError(f"Branch '{selector.branch_name}' not found in backup {backup.filename}")
        found = (backup, entry)
    else:
        found = None
        for backup in backups:
            entry = backup.find(selector.branch_name)
            if entry is not None:
                found = (backup, entry)
                break
        if found is None:
            raise NotFoundError(f"Branch '{selector.branch_name}' not found in any backup")

    backup, entry = found
    # A remote ref like origin/foo is restored as the local branch foo
    target_name = selector.new_name or entry.branch_name
    _check_target_name(target_name)

    if target_name in live_branches and not selector.overwrite:
        raise ConflictError(f"Branch '{target_name}' already exists. Use --force to overwrite it")

    logger.debug("Resolved %s to %s from %s", selector.branch_name, entry.sha, backup.filename)
    return RestoreTarget(sha=entry.sha, target_name=target_name, backup=backup)
