"""Glob matching for branch exclude patterns.

Only ``*`` is special. It matches any run of characters, including ``/``,
so ``*/wip`` matches ``feature/wip`` and ``*test*`` matches ``my-test-branch``.
Matching is case-sensitive and anchored at both ends.
"""

from typing import Iterable


def matches(pattern: str, candidate: str) -> bool:
    """Check if a branch name matches a pattern.

    Args:
        pattern: Glob pattern where ``*`` matches zero or more characters
        candidate: Branch name to test

    Returns:
        bool: True if the whole candidate matches the pattern
    """
    if not isinstance(pattern, str) or not isinstance(candidate, str):
        return False

    p = 0
    c = 0
    # Position of the last star seen and the candidate index it is currently absorbing up to
    star = -1
    mark = 0

    while c < len(candidate):
        if p < len(pattern) and pattern[p] == "*":
            star = p
            mark = c
            p += 1
        elif p < len(pattern) and pattern[p] == candidate[c]:
            p += 1
            c += 1
        elif star != -1:
            # Backtrack: let the last star swallow one more character
            p = star + 1
            mark += 1
            c = mark
        else:
            return False

    # Trailing stars match the empty string
    while p < len(pattern) and pattern[p] == "*":
        p += 1
    return p == len(pattern)


def matches_any(patterns: Iterable[str], candidate: str) -> bool:
    """Check if a branch name matches any of the given patterns."""
    return any(matches(pattern, candidate) for pattern in patterns)
