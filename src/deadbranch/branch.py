"""Branch records and the eligibility classifier."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from deadbranch.errors import InvalidPolicyError
from deadbranch.patterns import matches_any

SECONDS_PER_DAY = 86400


class Reason(Enum):
    """Why a branch is or is not eligible for deletion.

    Members are listed in the order the classifier checks them.
    """

    CURRENT_BRANCH = "current"
    PROTECTED = "protected"
    EXCLUDED_BY_PATTERN = "excluded"
    TOO_YOUNG = "too young"
    UNMERGED = "unmerged"
    ELIGIBLE = "eligible"


@dataclass(frozen=True)
class BranchRecord:
    """A local or remote branch as reported by the repository."""

    name: str
    last_commit_time: datetime
    head_sha: str
    is_remote: bool = False
    remote_name: Optional[str] = None
    is_current: bool = False
    is_merged: bool = False

    @property
    def short_name(self) -> str:
        """Branch name without the remote prefix (``origin/foo`` -> ``foo``)."""
        if self.is_remote and self.remote_name and self.name.startswith(f"{self.remote_name}/"):
            return self.name[len(self.remote_name) + 1 :]
        return self.name

    def age_days(self, now: Optional[datetime] = None) -> int:
        """Whole days elapsed since the last commit, truncated."""
        if now is None:
            now = datetime.now(timezone.utc)
        seconds = (now - self.last_commit_time).total_seconds()
        return int(seconds // SECONDS_PER_DAY)

    def format_age(self, now: Optional[datetime] = None) -> str:
        """Format age in a human-readable way."""
        days = self.age_days(now)
        return "1 day" if days == 1 else f"{days} days"


@dataclass(frozen=True)
class Policy:
    """Rules deciding which branches may be deleted."""

    max_age_days: int = 30
    protected_names: frozenset[str] = field(default_factory=frozenset)
    exclude_patterns: tuple[str, ...] = ()
    merged_only: bool = True
    force_unmerged: bool = False

    def __post_init__(self) -> None:
        """Validate and normalize policy values."""
        if isinstance(self.max_age_days, bool) or not isinstance(self.max_age_days, int):
            raise InvalidPolicyError(f"Age threshold must be an integer, got {self.max_age_days!r}")
        if self.max_age_days < 0:
            raise InvalidPolicyError(f"Age threshold cannot be negative: {self.max_age_days}")
        # Accept any iterable from callers but store immutable copies
        object.__setattr__(self, "protected_names", frozenset(self.protected_names))
        object.__setattr__(self, "exclude_patterns", tuple(self.exclude_patterns))


@dataclass(frozen=True)
class Verdict:
    """Classification result for a single branch."""

    branch: BranchRecord
    reason: Reason

    @property
    def eligible(self) -> bool:
        """Whether the branch may be deleted."""
        return self.reason is Reason.ELIGIBLE


def _is_protected(branch: BranchRecord, policy: Policy, default_branch: str) -> bool:
    """Exact-name protection; the default branch is always protected."""
    if branch.short_name == default_branch:
        return True
    return branch.name in policy.protected_names or branch.short_name in policy.protected_names


def _is_excluded(branch: BranchRecord, policy: Policy) -> bool:
    """Check exclude patterns against both the full and the short name."""
    if not policy.exclude_patterns:
        return False
    if matches_any(policy.exclude_patterns, branch.short_name):
        return True
    return branch.is_remote and matches_any(policy.exclude_patterns, branch.name)


def classify(
    branch: BranchRecord,
    policy: Policy,
    default_branch: str,
    now: Optional[datetime] = None,
) -> Verdict:
    """Decide whether a branch is eligible for deletion.

    Rules are checked in a fixed order and the first one that applies
    determines the reason: current branch, protected name, exclude pattern,
    age, then merge status.

    Args:
        branch: Branch to classify, with its merge status already computed
        policy: Deletion rules
        default_branch: Branch that merge status was computed against
        now: Reference time for the age check (defaults to the current time)

    Returns:
        Verdict: The branch and the reason for the decision
    """
    if branch.is_current:
        return Verdict(branch, Reason.CURRENT_BRANCH)
    if _is_protected(branch, policy, default_branch):
        return Verdict(branch, Reason.PROTECTED)
    if _is_excluded(branch, policy):
        return Verdict(branch, Reason.EXCLUDED_BY_PATTERN)
    if branch.age_days(now) < policy.max_age_days:
        return Verdict(branch, Reason.TOO_YOUNG)
    if not branch.is_merged and policy.merged_only and not policy.force_unmerged:
        return Verdict(branch, Reason.UNMERGED)
    return Verdict(branch, Reason.ELIGIBLE)


def classify_all(
    branches: Iterable[BranchRecord],
    policy: Policy,
    default_branch: str,
    now: Optional[datetime] = None,
) -> list[Verdict]:
    """Classify every branch against the same reference time."""
    if now is None:
        now = datetime.now(timezone.utc)
    return [classify(branch, policy, default_branch, now) for branch in branches]


def partition(verdicts: Iterable[Verdict]) -> tuple[list[Verdict], list[Verdict]]:
    """Split verdicts into (eligible, ineligible), keeping input order."""
    eligible: list[Verdict] = []
    ineligible: list[Verdict] = []
    for verdict in verdicts:
        (eligible if verdict.eligible else ineligible).append(verdict)
    return eligible, ineligible


def display_order(branch: BranchRecord) -> tuple[bool, float, str]:
    """Sort key for display: unmerged first, then most recent commit first."""
    return branch.is_merged, -branch.last_commit_time.timestamp(), branch.name


def sort_branches(branches: Iterable[BranchRecord]) -> list[BranchRecord]:
    """Sort branches for display."""
    return sorted(branches, key=display_order)
