"""Error types raised by the deadbranch core."""

from pathlib import Path
from typing import Optional


class DeadbranchError(Exception):
    """Base class for deadbranch errors."""


class ParseError(DeadbranchError):
    """Backup file could not be parsed."""

    def __init__(self, message: str, path: Optional[Path] = None, line: Optional[int] = None) -> None:
        """Initialize error.

        Args:
            message: What was wrong with the file
            path: Backup file that failed to parse
            line: 1-based line number of the offending line, if known
        """
        location = ""
        if path is not None:
            location = str(path)
            if line is not None:
                location += f":{line}"
            location += ": "
        super().__init__(f"{location}{message}")
        self.path = path
        self.line = line


class NotFoundError(DeadbranchError):
    """Requested branch or backup file does not exist."""


class AmbiguousError(DeadbranchError):
    """More than one backup entry matches a restore request.

    Not raised at the moment: the most recent backup always wins.
    """


class ConflictError(DeadbranchError):
    """Restore target already exists as a live branch."""


class InvalidNameError(DeadbranchError):
    """Branch name cannot be used as a restore target."""


class InvalidPolicyError(DeadbranchError):
    """Cleanup or retention policy has invalid values."""


class ConfigError(InvalidPolicyError):
    """Configuration file is invalid."""
