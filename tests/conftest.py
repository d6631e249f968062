"""Test configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest
from git import Actor, Repo

AUTHOR = Actor("Test User", "test@example.com")


def days_ago(days: int) -> str:
    """Git internal date string for a moment N days in the past."""
    moment = datetime.now(timezone.utc) - timedelta(days=days)
    return f"{int(moment.timestamp())} +0000"


def commit_file(repo: Repo, name: str, content: str, age_days: int = 0) -> str:
    """Write a file and commit it with a back-dated commit. Returns the commit SHA."""
    path = Path(repo.working_tree_dir) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    repo.index.add([name])
    date = days_ago(age_days)
    commit = repo.index.commit(f"Add {name}", author=AUTHOR, committer=AUTHOR, author_date=date, commit_date=date)
    return commit.hexsha


@pytest.fixture(autouse=True)
def backups_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep backups and config inside the test directory."""
    root = tmp_path / "backups"
    monkeypatch.setenv("DEADBRANCH_BACKUP_DIR", str(root))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    # Wide output so table rows are never truncated
    monkeypatch.setenv("COLUMNS", "200")
    return root


@pytest.fixture
def test_env(tmp_path: Path) -> Generator[tuple[Path, Path], None, None]:
    """Create a test environment with local and remote repositories.

    Branches (age of the branch tip in days):
        main                  default branch
        develop               200, merged, local only (protected by default config)
        feature/old-merged    60, merged, pushed
        feature/old-unmerged  45, not merged, pushed
        feature/recent        5, merged, pushed
        wip/experiment        90, merged, local only (excluded by default config)
        feature/current       100, merged, checked out

    Returns:
        Tuple of (local_repo_path, remote_repo_path)
    """
    remote_path = tmp_path / "remote"
    local_path = tmp_path / "local"
    remote_path.mkdir()
    local_path.mkdir()

    Repo.init(remote_path, bare=True)
    local_repo = Repo.init(local_path)

    # Set up git config
    with local_repo.config_writer() as config:
        config.set_value("user", "name", AUTHOR.name)
        config.set_value("user", "email", AUTHOR.email)

    # Initial commit on main, whatever git's default branch name is
    commit_file(local_repo, "README.md", "# Test Repository", age_days=300)
    local_repo.git.branch("-M", "main")
    main_branch = local_repo.heads.main

    origin = local_repo.create_remote("origin", url=str(remote_path))
    origin.push("main")
    main_branch.set_tracking_branch(origin.refs.main)

    def create_branch(name: str, age_days: int, merge: bool = False, push: bool = False) -> None:
        """Create a branch with one back-dated commit."""
        main_branch.checkout()
        branch = local_repo.create_head(name)
        branch.checkout()
        commit_file(local_repo, f"{name}.txt", f"{name} content", age_days=age_days)

        if push:
            origin.push(name)

        if merge:
            main_branch.checkout()
            local_repo.git.merge(name, "--no-ff", "-m", f"Merge {name}")
            origin.push("main")

    create_branch("develop", 200, merge=True)
    create_branch("feature/old-merged", 60, merge=True, push=True)
    create_branch("feature/old-unmerged", 45, push=True)
    create_branch("feature/recent", 5, merge=True, push=True)
    create_branch("wip/experiment", 90, merge=True)
    create_branch("feature/current", 100, merge=True)

    local_repo.heads["feature/current"].checkout()

    yield local_path, remote_path

    # Cleanup is handled by pytest's tmp_path fixture
