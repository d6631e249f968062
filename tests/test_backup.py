"""Tests for backup files."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from deadbranch.backup import (
    BackupEntry,
    BackupFile,
    format_timestamp,
    list_all_backups,
    list_repo_backups,
    parse_timestamp,
    read_backup,
    timestamp_from_filename,
    write_backup,
)
from deadbranch.errors import ParseError

NOW = datetime(2026, 2, 1, 14, 30, 22, tzinfo=timezone.utc)
SHA1 = "a1b2c3d4e5f60718293a4b5c6d7e8f9012345678"
SHA2 = "0123456789abcdef0123456789abcdef01234567"


def write_text(path: Path, content: str) -> Path:
    """Write a backup file by hand."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def test_round_trip(backups_root: Path) -> None:
    """Test that reading a written backup gives back the same entries in order."""
    entries = [BackupEntry("feature/b", SHA2), BackupEntry("feature/a", SHA1), BackupEntry("fix/c", SHA1[:7])]

    written = write_backup(entries, "my-repo", root=backups_root, now=NOW)
    read = read_backup(written.path)

    assert list(read.entries) == entries
    assert read.repo_identifier == "my-repo"
    assert read.timestamp == "20260201-143022"
    assert read == written


def test_write_layout(backups_root: Path) -> None:
    """Test where backups are written and what they look like."""
    backup = write_backup(
        [BackupEntry("feature/old-api", SHA1, source="origin/feature/old-api")],
        "my-repo",
        root=backups_root,
        now=NOW,
        working_dir=Path("/work/my-repo"),
    )

    assert backup.path == backups_root / "my-repo" / "backup-20260201-143022.txt"
    assert backup.filename == "backup-20260201-143022.txt"
    content = backup.path.read_text()
    assert content.startswith("# deadbranch backup\n")
    assert "# Created: 2026-02-01T14:30:22+00:00" in content
    assert "# Repository: my-repo" in content
    assert "# Working directory: /work/my-repo" in content
    assert f"# origin/feature/old-api\ngit branch feature/old-api {SHA1}\n" in content


def test_default_root_from_environment(backups_root: Path) -> None:
    """Test that the backups root comes from the environment when not given."""
    backup = write_backup([BackupEntry("a", SHA1)], "env-repo", now=NOW)
    assert backup.path.parent == backups_root / "env-repo"


def test_source_is_read_back(backups_root: Path) -> None:
    """Test that the comment above an entry is kept as its source."""
    written = write_backup([BackupEntry("x", SHA1, source="origin/x")], "r", root=backups_root, now=NOW)
    assert read_backup(written.path).entries[0].source == "origin/x"


def test_write_is_exclusive(backups_root: Path) -> None:
    """Test that an existing backup is never overwritten."""
    first = write_backup([BackupEntry("a", SHA1)], "r", root=backups_root, now=NOW)
    with pytest.raises(FileExistsError):
        write_backup([BackupEntry("b", SHA2)], "r", root=backups_root, now=NOW)
    assert [e.branch_name for e in read_backup(first.path).entries] == ["a"]


def test_write_rejects_empty_batch(backups_root: Path) -> None:
    """Test that an empty backup is refused."""
    with pytest.raises(ValueError):
        write_backup([], "r", root=backups_root, now=NOW)
    assert not (backups_root / "r").exists()


@pytest.mark.parametrize(
    "entry",
    [
        BackupEntry("", SHA1),
        BackupEntry("has space", SHA1),
        BackupEntry("#comment", SHA1),
        BackupEntry("ok", "not-a-sha"),
        BackupEntry("ok", "abc"),
    ],
)
def test_write_rejects_unreadable_entries(backups_root: Path, entry: BackupEntry) -> None:
    """Test that entries which could not be parsed back are refused."""
    with pytest.raises(ValueError):
        write_backup([entry], "r", root=backups_root, now=NOW)


def test_read_tolerates_blank_lines_and_comments(tmp_path: Path) -> None:
    """Test that blank lines and comments are ignored."""
    path = write_text(
        tmp_path / "repo" / "backup-20260201-143022.txt",
        f"""# deadbranch backup
# Created: 2026-02-01T14:30:22Z

# feature/old-api
git branch feature/old-api {SHA1}


   git branch bugfix/login {SHA2}   
""",
    )

    backup = read_backup(path)

    assert [(e.branch_name, e.sha) for e in backup.entries] == [("feature/old-api", SHA1), ("bugfix/login", SHA2)]
    # No repository header: the directory name is used
    assert backup.repo_identifier == "repo"


@pytest.mark.parametrize(
    "line",
    [
        "git branch feature/x",
        f"git branch feature/x {SHA1} extra",
        f"git checkout feature/x {SHA1}",
        "git branch feature/x e5f6g7h8",
        "git branch feature/x abc12",
        "rm -rf /",
    ],
)
def test_read_rejects_malformed_lines(tmp_path: Path, line: str) -> None:
    """Test that a single bad line fails the whole read."""
    path = write_text(
        tmp_path / "repo" / "backup-20260201-143022.txt",
        f"# deadbranch backup\ngit branch good {SHA1}\n{line}\n",
    )

    with pytest.raises(ParseError) as excinfo:
        read_backup(path)
    assert excinfo.value.line == 3
    assert excinfo.value.path == path


def test_timestamp_from_header_when_filename_differs(tmp_path: Path) -> None:
    """Test that a renamed backup still gets its time from the header."""
    path = write_text(tmp_path / "copy.txt", f"# Created: 2026-02-01T14:30:22+00:00\ngit branch a {SHA1}\n")
    assert read_backup(path).timestamp == "20260201-143022"


def test_missing_timestamp_is_parse_error(tmp_path: Path) -> None:
    """Test that a backup without any time information is rejected."""
    path = write_text(tmp_path / "copy.txt", f"git branch a {SHA1}\n")
    with pytest.raises(ParseError):
        read_backup(path)


def test_missing_file_raises_os_error(tmp_path: Path) -> None:
    """Test that I/O errors propagate unchanged."""
    with pytest.raises(FileNotFoundError):
        read_backup(tmp_path / "backup-20260201-143022.txt")


def test_timestamp_helpers() -> None:
    """Test timestamp formatting and parsing."""
    assert format_timestamp(NOW) == "20260201-143022"
    assert format_timestamp(NOW.astimezone(timezone(timedelta(hours=2)))) == "20260201-143022"
    assert parse_timestamp("20260201-143022") == NOW
    with pytest.raises(ValueError):
        parse_timestamp("2026-02-01")
    assert timestamp_from_filename(Path("/x/backup-20260201-143022.txt")) == "20260201-143022"
    assert timestamp_from_filename(Path("/x/not-a-backup.txt")) is None
    assert timestamp_from_filename(Path("/x/backup-invalid.txt")) is None
    assert timestamp_from_filename(Path("/x/backup-20261399-999999.txt")) is None


def test_format_age() -> None:
    """Test human-readable backup age."""
    backup = BackupFile("r", "20260201-143022", ())
    assert backup.format_age(NOW + timedelta(seconds=30)) == "just now"
    assert backup.format_age(NOW + timedelta(minutes=1)) == "1 minute ago"
    assert backup.format_age(NOW + timedelta(hours=2)) == "2 hours ago"
    assert backup.format_age(NOW + timedelta(days=1, hours=3)) == "1 day ago"
    assert backup.format_age(NOW + timedelta(days=12)) == "12 days ago"


def test_find_returns_last_entry() -> None:
    """Test that the last entry for a name wins within one backup."""
    backup = BackupFile("r", "20260201-143022", (BackupEntry("a", SHA1), BackupEntry("a", SHA2)))
    assert backup.find("a").sha == SHA2
    assert backup.find("b") is None


def test_find_prefers_exact_ref() -> None:
    """Test that local and remote entries with the same branch name stay reachable."""
    backup = BackupFile(
        "r",
        "20260201-143022",
        (BackupEntry("feature/x", SHA1, source="feature/x"), BackupEntry("feature/x", SHA2, source="origin/feature/x")),
    )
    assert backup.find("feature/x").sha == SHA1
    assert backup.find("origin/feature/x").sha == SHA2


def test_list_repo_backups_newest_first(backups_root: Path) -> None:
    """Test listing the backups of one repository."""
    for days in (3, 1, 2):
        write_backup([BackupEntry(f"b{days}", SHA1)], "repo", root=backups_root, now=NOW - timedelta(days=days))
    # Files that are not backups are ignored
    (backups_root / "repo" / "notes.txt").write_text("hello")

    backups = list_repo_backups("repo", root=backups_root)

    assert [b.entries[0].branch_name for b in backups] == ["b1", "b2", "b3"]


def test_list_repo_backups_missing_repo(backups_root: Path) -> None:
    """Test that an unknown repository has no backups."""
    assert list_repo_backups("nothing-here", root=backups_root) == []


def test_list_repo_backups_skips_corrupt_files(backups_root: Path) -> None:
    """Test that listing skips unreadable backups unless strict."""
    write_backup([BackupEntry("good", SHA1)], "repo", root=backups_root, now=NOW)
    write_text(backups_root / "repo" / "backup-20260101-000000.txt", "garbage line\n")

    assert [b.timestamp for b in list_repo_backups("repo", root=backups_root)] == ["20260201-143022"]
    with pytest.raises(ParseError):
        list_repo_backups("repo", root=backups_root, strict=True)


def test_undecodable_file_is_parse_error(backups_root: Path) -> None:
    """Test that a file that is not UTF-8 fails like any other malformed backup."""
    path = backups_root / "repo" / "backup-20260101-000000.txt"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"git branch f\xff\xfe 1234567\n")
    write_backup([BackupEntry("good", SHA1)], "repo", root=backups_root, now=NOW)

    with pytest.raises(ParseError, match="not valid UTF-8"):
        read_backup(path)
    assert [b.timestamp for b in list_repo_backups("repo", root=backups_root)] == ["20260201-143022"]
    with pytest.raises(ParseError):
        list_repo_backups("repo", root=backups_root, strict=True)


def test_list_all_backups(backups_root: Path) -> None:
    """Test listing backups grouped by repository."""
    write_backup([BackupEntry("a", SHA1)], "alpha", root=backups_root, now=NOW)
    write_backup([BackupEntry("b", SHA1)], "beta", root=backups_root, now=NOW)
    write_backup([BackupEntry("c", SHA1)], "beta", root=backups_root, now=NOW + timedelta(seconds=1))
    (backups_root / "empty").mkdir()

    all_backups = list_all_backups(root=backups_root)

    assert sorted(all_backups) == ["alpha", "beta"]
    assert len(all_backups["beta"]) == 2


def test_list_all_backups_no_root(tmp_path: Path) -> None:
    """Test listing when nothing was ever backed up."""
    assert list_all_backups(root=tmp_path / "missing") == {}
