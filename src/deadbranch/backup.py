"""Backup files recording deleted branches.

A backup file is plain text. Every entry is a runnable git command, so a
branch can be recreated by hand even without deadbranch::

    # deadbranch backup
    # Created: 2026-02-01T14:30:22+00:00
    # Repository: my-repo
    #
    # To restore a branch, run the git command shown
    #

    # origin/feature/old-api
    git branch feature/old-api 3f2c9d1e...

Files live under ``<backups root>/<repository>/backup-<YYYYMMDD-HHMMSS>.txt``
and are never modified once written.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from deadbranch.config import get_backups_root
from deadbranch.errors import ParseError

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
RESTORE_VERB = "git branch"
HEADER_TITLE = "# deadbranch backup"
CREATED_PREFIX = "# Created:"
REPOSITORY_PREFIX = "# Repository:"
WORKDIR_PREFIX = "# Working directory:"

_FILENAME_RE = re.compile(r"^backup-(\d{8}-\d{6})\.txt$")
_SHA_RE = re.compile(r"^[0-9a-fA-F]{7,64}$")


@dataclass(frozen=True)
class BackupEntry:
    """A deleted branch and the commit it pointed to."""

    branch_name: str
    sha: str
    # Ref the branch was deleted from (e.g. origin/foo)
    source: Optional[str] = field(default=None, compare=False)


@dataclass(frozen=True)
class BackupFile:
    """A backup written for one deletion batch."""

    repo_identifier: str
    timestamp: str
    entries: tuple[BackupEntry, ...]
    path: Optional[Path] = field(default=None, compare=False)

    @property
    def filename(self) -> str:
        """File name of the backup (``backup-<timestamp>.txt``)."""
        if self.path is not None:
            return self.path.name
        return backup_filename(self.timestamp)

    @property
    def created(self) -> datetime:
        """Creation time parsed from the timestamp, in UTC."""
        return parse_timestamp(self.timestamp)

    @property
    def branch_count(self) -> int:
        """Number of branches recorded in the backup."""
        return len(self.entries)

    def sort_key(self) -> tuple[str, str]:
        """Chronological sort key; fixed-width timestamps sort lexically."""
        return self.timestamp, self.filename

    def find(self, ref: str) -> Optional[BackupEntry]:
        """Return the entry recorded for a ref, if any.

        An entry deleted from exactly ``ref`` wins, so ``feature/x`` finds the
        local branch and ``origin/feature/x`` the remote one when both were
        deleted together. Otherwise the last entry with that branch name wins.
        """
        for entry in reversed(self.entries):
            if (entry.source or entry.branch_name) == ref:
                return entry
        for entry in reversed(self.entries):
            if entry.branch_name == ref:
                return entry
        return None

    def format_age(self, now: Optional[datetime] = None) -> str:
        """Format the age of the backup as a human-readable string."""
        if now is None:
            now = datetime.now(timezone.utc)
        seconds = int((now - self.created).total_seconds())
        days, remainder = divmod(seconds, 86400)
        hours = remainder // 3600
        minutes = (remainder % 3600) // 60

        if days > 0:
            return f"{days} {'day' if days == 1 else 'days'} ago"
        if hours > 0:
            return f"{hours} {'hour' if hours == 1 else 'hours'} ago"
        if minutes > 0:
            return f"{minutes} {'minute' if minutes == 1 else 'minutes'} ago"
        return "just now"


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as a fixed-width, sortable backup timestamp (UTC)."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(text: str) -> datetime:
    """Parse a ``YYYYMMDD-HHMMSS`` timestamp as UTC.

    Raises:
        ValueError: If the text is not a valid timestamp
    """
    if not re.fullmatch(r"\d{8}-\d{6}", text):
        raise ValueError(f"Invalid backup timestamp: {text!r}")
    return datetime.strptime(text, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def backup_filename(timestamp: str) -> str:
    """Build the file name for a backup timestamp."""
    return f"backup-{timestamp}.txt"


def timestamp_from_filename(path: Path) -> Optional[str]:
    """Extract the timestamp from a backup file name, or None if it doesn't match."""
    match = _FILENAME_RE.match(path.name)
    if not match:
        return None
    try:
        parse_timestamp(match.group(1))
    except ValueError:
        return None
    return match.group(1)


def repo_backup_dir(repo_identifier: str, root: Optional[Path] = None) -> Path:
    """Directory holding the backups of one repository."""
    return (root if root is not None else get_backups_root()) / repo_identifier


def _check_entry(entry: BackupEntry) -> None:
    """Make sure an entry will survive a write/read cycle."""
    name = entry.branch_name
    if not name or name.startswith("#") or any(ch.isspace() for ch in name):
        raise ValueError(f"Branch name cannot be stored in a backup: {name!r}")
    if not _SHA_RE.match(entry.sha):
        raise ValueError(f"Invalid commit SHA for branch '{name}': {entry.sha!r}")


def render_backup(backup: BackupFile, working_dir: Optional[Path] = None) -> str:
    """Render a backup as file content."""
    lines = [
        HEADER_TITLE,
        f"{CREATED_PREFIX} {backup.created.isoformat()}",
        f"{REPOSITORY_PREFIX} {backup.repo_identifier}",
    ]
    if working_dir is not None:
        lines.append(f"{WORKDIR_PREFIX} {working_dir}")
    lines.extend(["#", "# To restore a branch, run the git command shown", "#", ""])

    for entry in backup.entries:
        lines.append(f"# {entry.source or entry.branch_name}")
        lines.append(f"{RESTORE_VERB} {entry.branch_name} {entry.sha}")
        lines.append("")

    return "\n".join(lines)


def write_backup(
    entries: Iterable[BackupEntry],
    repo_identifier: str,
    root: Optional[Path] = None,
    now: Optional[datetime] = None,
    working_dir: Optional[Path] = None,
) -> BackupFile:
    """Write a new backup file for a batch of branches about to be deleted.

    Args:
        entries: Branches in deletion order
        repo_identifier: Repository the branches belong to
        root: Backups root directory (defaults to the configured one)
        now: Creation time (defaults to the current time)
        working_dir: Repository working directory, recorded in the header

    Returns:
        BackupFile: The backup that was written, with its path

    Raises:
        ValueError: If there are no entries or an entry cannot be stored
        FileExistsError: If a backup with the same timestamp already exists
    """
    entries = tuple(entries)
    if not entries:
        raise ValueError("Refusing to write an empty backup")
    for entry in entries:
        _check_entry(entry)

    timestamp = format_timestamp(now if now is not None else datetime.now(timezone.utc))
    directory = repo_backup_dir(repo_identifier, root)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / backup_filename(timestamp)

    backup = BackupFile(repo_identifier=repo_identifier, timestamp=timestamp, entries=entries, path=path)
    # Exclusive create: an existing backup is never overwritten
    with open(path, "x", encoding="utf-8") as f:
        f.write(render_backup(backup, working_dir))

    logger.debug("Wrote backup %s with %d branch(es)", path, len(entries))
    return backup


def _parse_entry(line: str, path: Path, lineno: int, source: Optional[str]) -> BackupEntry:
    """Parse a single ``git branch <name> <sha>`` line."""
    tokens = line.split()
    if len(tokens) != 4 or " ".join(tokens[:2]) != RESTORE_VERB:
        raise ParseError(f"Expected '{RESTORE_VERB} <branch> <sha>', got {line.strip()!r}", path, lineno)
    name, sha = tokens[2], tokens[3]
    if not _SHA_RE.match(sha):
        raise ParseError(f"Invalid commit SHA {sha!r}", path, lineno)
    return BackupEntry(branch_name=name, sha=sha, source=source)


def read_backup(path: Path) -> BackupFile:
    """Read and validate a backup file.

    Blank lines and comments are skipped. Any other line that is not a valid
    restore command fails the whole read, so no entry is ever silently dropped.

    Raises:
        ParseError: If the file is malformed
        OSError: If the file cannot be read
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as err:
        raise ParseError("File is not valid UTF-8", path) from err

    created: Optional[str] = None
    repository: Optional[str] = None
    pending_comment: Optional[str] = None
    entries: list[BackupEntry] = []

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            pending_comment = None
            continue
        if line.startswith("#"):
            if line.startswith(CREATED_PREFIX) and created is None:
                created = line[len(CREATED_PREFIX) :].strip()
            elif line.startswith(REPOSITORY_PREFIX) and repository is None:
                repository = line[len(REPOSITORY_PREFIX) :].strip()
            pending_comment = line.lstrip("#").strip() or None
            continue
        entries.append(_parse_entry(line, path, lineno, pending_comment))
        pending_comment = None

    timestamp = timestamp_from_filename(path)
    if timestamp is None and created:
        try:
            timestamp = format_timestamp(datetime.fromisoformat(created))
        except ValueError as err:
            raise ParseError(f"Invalid creation time {created!r}", path) from err
    if timestamp is None:
        raise ParseError("Cannot determine backup time from file name or header", path)

    return BackupFile(
        repo_identifier=repository or path.parent.name,
        timestamp=timestamp,
        entries=tuple(entries),
        path=path,
    )


def _backup_paths(directory: Path) -> list[Path]:
    """Backup files in a repository's backup directory."""
    if not directory.is_dir():
        return []
    return [
        path
        for path in directory.iterdir()
        if path.is_file() and path.name.startswith("backup-") and path.suffix == ".txt"
    ]


def list_repo_backups(repo_identifier: str, root: Optional[Path] = None, strict: bool = False) -> list[BackupFile]:
    """List backups of one repository, newest first.

    Args:
        repo_identifier: Repository to list
        root: Backups root directory (defaults to the configured one)
        strict: Raise on unreadable backups instead of skipping them

    Raises:
        ParseError: If strict and a backup file is malformed
    """
    backups: list[BackupFile] = []
    for path in _backup_paths(repo_backup_dir(repo_identifier, root)):
        try:
            backups.append(read_backup(path))
        except ParseError as err:
            if strict:
                raise
            logger.warning("Could not parse backup file: %s", err)

    backups.sort(key=BackupFile.sort_key, reverse=True)
    return backups


def list_unreadable_backups(repo_identifier: str, root: Optional[Path] = None) -> list[Path]:
    """Backup files of one repository that cannot be parsed, oldest name first."""
    unreadable = []
    for path in sorted(_backup_paths(repo_backup_dir(repo_identifier, root))):
        try:
            read_backup(path)
        except ParseError:
            unreadable.append(path)
    return unreadable


def list_all_backups(root: Optional[Path] = None) -> dict[str, list[BackupFile]]:
    """List backups of every repository, keyed by repository identifier."""
    root = root if root is not None else get_backups_root()
    result: dict[str, list[BackupFile]] = {}
    if not root.is_dir():
        return result

    for directory in sorted(root.iterdir()):
        if not directory.is_dir():
            continue
        backups = list_repo_backups(directory.name, root)
        if backups:
            result[directory.name] = backups
    return result
