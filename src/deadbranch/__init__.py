"""Stale git branch cleanup tool.

Features:
- List stale branches with their age and merge status
- Clean up old merged branches (unmerged ones only with --force)
- Branch protection by exact name and exclusion by glob pattern
- Backup file written before every deletion batch
- Restore deleted branches from backups
- Retention cleanup for old backup files
"""

__version__ = "0.3.0"
