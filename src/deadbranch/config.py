"""Configuration management for deadbranch."""

import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import tomli_w

from deadbranch.branch import Policy
from deadbranch.errors import ConfigError

DEFAULT_DAYS = 30
DEFAULT_KEEP = 10
DEFAULT_PROTECTED = ["main", "master", "develop", "staging", "production"]
DEFAULT_EXCLUDE_PATTERNS = ["wip/*", "draft/*", "*/wip", "*/draft"]

BACKUP_DIR_ENV = "DEADBRANCH_BACKUP_DIR"


@dataclass
class GeneralConfig:
    """General options."""

    default_days: int = DEFAULT_DAYS


@dataclass
class BranchesConfig:
    """Branch protection and merge detection settings."""

    protected: list[str] = field(default_factory=lambda: list(DEFAULT_PROTECTED))
    exclude_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))
    # Auto-detected from the repository when not set
    default_branch: Optional[str] = None


@dataclass
class BackupsConfig:
    """Backup retention settings."""

    keep: int = DEFAULT_KEEP


@dataclass
class Config:
    """Root configuration container."""

    general: GeneralConfig = field(default_factory=GeneralConfig)
    branches: BranchesConfig = field(default_factory=BranchesConfig)
    backups: BackupsConfig = field(default_factory=BackupsConfig)

    # Metadata (not from TOML)
    _source: Optional[Path] = field(default=None, repr=False)

    def to_policy(self, days: Optional[int] = None, merged_only: bool = True, force_unmerged: bool = False) -> Policy:
        """Build a cleanup policy, with an optional age override from the command line."""
        return Policy(
            max_age_days=self.general.default_days if days is None else days,
            protected_names=frozenset(self.branches.protected),
            exclude_patterns=tuple(self.branches.exclude_patterns),
            merged_only=merged_only,
            force_unmerged=force_unmerged,
        )


def get_xdg_config_home() -> Path:
    """Get XDG config home, respecting environment variable."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg)
    return Path.home() / ".config"


def get_config_path() -> Path:
    """Get the path to the config file."""
    return get_xdg_config_home() / "deadbranch" / "config.toml"


def get_backups_root() -> Path:
    """Get the directory holding per-repository backup directories."""
    override = os.environ.get(BACKUP_DIR_ENV)
    if override:
        return Path(override)
    return Path.home() / ".deadbranch" / "backups"


def _load_toml(path: Path) -> dict[str, Any]:
    """Load and parse a TOML file."""
    with open(path, "rb") as f:
        result: dict[str, Any] = tomllib.load(f)
        return result


def _is_non_negative_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _is_string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def _validate_config(data: dict[str, Any]) -> list[str]:
    """Validate TOML data and return list of errors."""
    errors: list[str] = []

    for section in ("general", "branches", "backups"):
        if section in data and not isinstance(data[section], dict):
            errors.append(f"[{section}] must be a table")
    if errors:
        return errors

    days = data.get("general", {}).get("default_days")
    if days is not None and not _is_non_negative_int(days):
        errors.append(f"Invalid general.default_days: {days!r} (use a whole number of days, 0 or more)")

    branches = data.get("branches", {})
    for key in ("protected", "exclude_patterns"):
        if key in branches and not _is_string_list(branches[key]):
            errors.append(f"Invalid branches.{key}: expected a list of strings")

    default_branch = branches.get("default_branch")
    if default_branch is not None and (not isinstance(default_branch, str) or not default_branch.strip()):
        errors.append(f"Invalid branches.default_branch: {default_branch!r}")

    keep = data.get("backups", {}).get("keep")
    if keep is not None and not _is_non_negative_int(keep):
        errors.append(f"Invalid backups.keep: {keep!r} (use a whole number, 0 or more)")

    return errors


def _filter_known_keys(data: dict[str, Any], dataclass_type: type) -> dict[str, Any]:
    """Filter dict to only include keys that are valid fields for the dataclass."""
    valid_fields = {f.name for f in fields(dataclass_type)}
    return {k: v for k, v in data.items() if k in valid_fields}


# Mapping of section names to their config classes
SECTION_TYPES = {
    "general": GeneralConfig,
    "branches": BranchesConfig,
    "backups": BackupsConfig,
}


def _dict_to_config(data: dict[str, Any], source: Optional[Path] = None) -> Config:
    """Convert parsed TOML dict to Config dataclass."""
    sections = {name: cls(**_filter_known_keys(data.get(name, {}), cls)) for name, cls in SECTION_TYPES.items()}
    return Config(**sections, _source=source)


def load_config_from_file(path: Path) -> Config:
    """Load configuration from a specific file.

    Raises:
        ConfigError: If the file is not valid TOML or has invalid values
    """
    try:
        data = _load_toml(path)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e
    errors = _validate_config(data)
    if errors:
        raise ConfigError(f"Config validation failed ({path}): {'; '.join(errors)}")
    return _dict_to_config(data, path)


def load_config() -> Config:
    """Load the user configuration, or built-in defaults if there is no config file."""
    path = get_config_path()
    if not path.exists():
        return Config()
    return load_config_from_file(path)


# Keys accepted by `config set`, mapped to (section, field)
SETTABLE_KEYS = {
    "default-days": ("general", "default_days"),
    "protected-branches": ("branches", "protected"),
    "exclude-patterns": ("branches", "exclude_patterns"),
    "default-branch": ("branches", "default_branch"),
    "backup-keep": ("backups", "keep"),
}
LIST_KEYS = {"protected-branches", "exclude-patterns"}


def config_to_dict(config: Config) -> dict[str, Any]:
    """Convert a Config to a TOML-serializable dict (unset values are left out)."""
    data: dict[str, Any] = {}
    for name in SECTION_TYPES:
        section = getattr(config, name)
        data[name] = {f.name: getattr(section, f.name) for f in fields(section) if getattr(section, f.name) is not None}
    return data


def _parse_value(key: str, values: list[str]) -> Any:
    """Convert command line values to the TOML value for a key."""
    if key in LIST_KEYS:
        # Accept both `a b c` and `a,b,c`
        return [item.strip() for value in values for item in value.split(",") if item.strip()]
    if len(values) != 1:
        raise ConfigError(f"{key} takes a single value, got {len(values)}")
    value = values[0].strip()
    if key == "default-branch":
        return value or None
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"Invalid number for {key}: {value!r}") from e


def set_config_value(key: str, values: list[str], path: Optional[Path] = None) -> Config:
    """Set one setting in the config file, creating the file if needed.

    Args:
        key: Setting name, e.g. ``default-days`` or ``protected-branches``
        values: New value; list settings take several values
        path: Config file (defaults to the user config file)

    Returns:
        Config: The configuration after the change

    Raises:
        ConfigError: If the key is unknown, the value is invalid or the file is broken
    """
    if key not in SETTABLE_KEYS:
        raise ConfigError(f"Unknown config key: {key}. Valid keys: {', '.join(SETTABLE_KEYS)}")
    path = path if path is not None else get_config_path()

    if path.exists():
        # Refuse to rewrite a file that is already broken
        load_config_from_file(path)
        data = _load_toml(path)
    else:
        data = config_to_dict(Config())

    section, name = SETTABLE_KEYS[key]
    value = _parse_value(key, values)
    table = data.setdefault(section, {})
    if value is None:
        table.pop(name, None)
    else:
        table[name] = value

    errors = _validate_config(data)
    if errors:
        raise ConfigError(f"Invalid value for {key}: {'; '.join(errors)}")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(tomli_w.dumps(data), encoding="utf-8")
    return _dict_to_config(data, path)


def write_default_config(path: Optional[Path] = None) -> Path:
    """Write the default config template, replacing any existing file."""
    path = path if path is not None else get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    return path


# Default config template for `config init` and `config reset`
DEFAULT_CONFIG_TEMPLATE = """\
# deadbranch configuration

[general]
# Branches whose last commit is younger than this are never deleted
default_days = 30

[branches]
# Exact branch names that are never deleted
protected = ["main", "master", "develop", "staging", "production"]

# Glob patterns for branches that are never deleted (* matches anything, including /)
exclude_patterns = ["wip/*", "draft/*", "*/wip", "*/draft"]

# Branch used for merge detection (auto-detected when not set)
# default_branch = "main"

[backups]
# Number of backups kept per repository by `deadbranch backup clean`
keep = 10
"""
