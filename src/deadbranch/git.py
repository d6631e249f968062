"""Git repository operations."""

import logging
import re
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from deadbranch.branch import BranchRecord

logger = logging.getLogger(__name__)

_REF_FORMAT = "%(refname)|%(committerdate:unix)|%(objectname)"


class BranchScope(Enum):
    """Which branches to list."""

    LOCAL = "local"
    REMOTE = "remote"
    ALL = "all"


class GitError(Exception):
    """Git operation error."""


class GitRepo:
    """Git repository operations."""

    def __init__(self, path: Path) -> None:
        """Initialize repository."""
        try:
            self.repo: Repo = Repo(path, search_parent_directories=True)
            if self.repo.bare:
                raise GitError("Cannot operate on bare repository")
        except (GitCommandError, ValueError, InvalidGitRepositoryError, NoSuchPathError) as err:
            raise GitError(f"Failed to open repository: {err}") from err

    @property
    def working_dir(self) -> Path:
        """Root of the working tree."""
        return Path(self.repo.working_tree_dir)

    def get_current_branch_name(self) -> str:
        """Get current branch name."""
        try:
            try:
                return self.repo.active_branch.name
            except TypeError:
                # We're in a detached HEAD state, no branch is current
                return ""
        except (GitCommandError, ValueError) as err:
            raise GitError(f"Failed to get current branch: {err}") from err

    def get_default_branch(self) -> str:
        """Detect the default branch used for merge detection.

        Tries the remote HEAD first, then local main/master, and falls back to "main".
        """
        try:
            head = self.repo.git.symbolic_ref("--short", "refs/remotes/origin/HEAD").strip()
            if head.startswith("origin/"):
                return head[len("origin/") :]
        except GitCommandError:
            # No remote HEAD, look at local branches instead
            pass

        for name in ("main", "master"):
            if self.branch_exists(name):
                return name
        return "main"

    def get_repo_identifier(self) -> str:
        """Get a stable, filesystem-safe name for this repository.

        Uses the origin URL when there is one, so clones of the same project share backups.
        """
        name = ""
        try:
            url = self.repo.remote("origin").url
            name = re.split(r"[/:\\]", url.rstrip("/"))[-1]
            if name.endswith(".git"):
                name = name[: -len(".git")]
        except ValueError:
            # No origin remote
            pass
        if not name:
            name = self.working_dir.name
        return re.sub(r"[^A-Za-z0-9._-]", "_", name) or "repository"

    def fetch_and_prune(self) -> None:
        """Fetch from all remotes and prune deleted remote branches."""
        try:
            for remote in self.repo.remotes:
                self.repo.git.fetch(remote.name, "--prune")
        except GitCommandError as err:
            raise GitError(f"Failed to fetch from remotes: {err}") from err

    def is_ancestor(self, candidate_sha: str, target_branch: str) -> bool:
        """Check if a commit is reachable from the tip of a branch."""
        try:
            self.repo.git.merge_base("--is-ancestor", candidate_sha, target_branch)
            return True
        except GitCommandError as err:
            # Exit status 1 means "not an ancestor", anything else is a real failure
            if err.status == 1:
                return False
            raise GitError(f"Failed to check merge status of {candidate_sha}: {err}") from err

    def _for_each_ref(self, prefix: str) -> list[tuple[str, datetime, str]]:
        """List refs under a prefix as (name without prefix, commit time, sha)."""
        try:
            output = self.repo.git.for_each_ref(f"--format={_REF_FORMAT}", prefix)
        except GitCommandError as err:
            raise GitError(f"Failed to list branches: {err}") from err

        refs = []
        for line in output.splitlines():
            parts = line.split("|")
            if len(parts) != 3:
                continue
            refname, timestamp, sha = parts
            try:
                commit_time = datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
            except ValueError:
                # Non-commit refs have no committer date
                logger.debug("Skipping %s: no commit date", refname)
                continue
            refs.append((refname[len(prefix) :], commit_time, sha))
        return refs

    def list_branches(self, default_branch: str, scope: BranchScope = BranchScope.ALL) -> list[BranchRecord]:
        """List branches with their last commit and merge status.

        Remote HEAD refs and the remote copies of the default branch are skipped.

        Args:
            default_branch: Branch to compute merge status against
            scope: Local branches, remote branches or both

        Returns:
            list[BranchRecord]: Local branches first, then remote branches
        """
        current = self.get_current_branch_name()
        branches: list[BranchRecord] = []

        if scope in (BranchScope.LOCAL, BranchScope.ALL):
            for name, commit_time, sha in self._for_each_ref("refs/heads/"):
                branches.append(
                    BranchRecord(
                        name=name,
                        last_commit_time=commit_time,
                        head_sha=sha,
                        is_current=name == current,
                        is_merged=self.is_ancestor(sha, default_branch),
                    )
                )

        if scope in (BranchScope.REMOTE, BranchScope.ALL):
            for name, commit_time, sha in self._for_each_ref("refs/remotes/"):
                if "/" not in name:
                    continue
                remote_name, branch_name = name.split("/", 1)
                if branch_name in ("HEAD", default_branch):
                    continue
                branches.append(
                    BranchRecord(
                        name=name,
                        last_commit_time=commit_time,
                        head_sha=sha,
                        is_remote=True,
                        remote_name=remote_name,
                        is_merged=self.is_ancestor(sha, default_branch),
                    )
                )

        logger.debug("Found %d branch(es) in %s", len(branches), self.working_dir)
        return branches

    def branch_exists(self, name: str) -> bool:
        """Check if a local branch exists."""
        try:
            self.repo.git.rev_parse("--verify", "--quiet", f"refs/heads/{name}")
            return True
        except GitCommandError:
            return False

    def list_local_branch_names(self) -> set[str]:
        """Names of all local branches."""
        return {name for name, _, _ in self._for_each_ref("refs/heads/")}

    def delete_local_branch(self, name: str, force: bool = False) -> None:
        """Delete a local branch.

        Raises:
            GitError: If git refuses, e.g. because the branch is not fully merged
        """
        try:
            self.repo.git.branch("-D" if force else "-d", name)
        except GitCommandError as err:
            if "not fully merged" in str(err):
                raise GitError(f"Branch '{name}' has unmerged changes. Use --force to delete anyway") from err
            raise GitError(f"Failed to delete branch '{name}': {err}") from err

    def delete_remote_branch(self, branch: BranchRecord) -> None:
        """Delete a branch on its remote."""
        try:
            self.repo.git.push(branch.remote_name or "origin", "--delete", branch.short_name)
        except GitCommandError as err:
            raise GitError(f"Failed to delete remote branch '{branch.name}': {err}") from err

    def create_branch(self, name: str, sha: str, force: bool = False) -> None:
        """Create (or with force, reset) a local branch at a commit.

        Raises:
            GitError: If the commit no longer exists or git rejects the branch name
        """
        try:
            self.repo.git.cat_file("-e", f"{sha}^{{commit}}")
        except GitCommandError as err:
            raise GitError(f"Commit {sha} no longer exists (it may have been garbage collected)") from err

        args = ["-f", name, sha] if force else [name, sha]
        try:
            self.repo.git.branch(*args)
        except GitCommandError as err:
            raise GitError(f"Failed to create branch '{name}': {err}") from err
