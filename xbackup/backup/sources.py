"""
Discovery of what to back up.

Each configured backup directory is scanned for user sub-directories. A
directory without sub-directories that holds ready-made backup files
(*.tar, *.zip, *.gz, *.zst) is registered under the reserved owner
`__root__`; those files are processed one by one instead of being archived.
"""

import logging
import os
from fnmatch import fnmatch
from pathlib import Path
from typing import Dict, List, Optional

ROOT_OWNER = '__root__'
ROOT_BACKUP_PATTERNS = ('*.tar', '*.zip', '*.gz', '*.zst')


def should_exclude(path: Path, patterns: List[str]) -> bool:
    """
    Check if a path matches any exclude pattern.

    Patterns are matched against the full path and the bare name;
    a leading `**/` also matches the name alone.
    """
    path_str = str(path)
    path_name = path.name

    for pattern in patterns:
        if fnmatch(path_str, pattern) or fnmatch(path_name, pattern):
            return True
        if pattern.startswith('**/') and fnmatch(path_name, pattern[3:]):
            return True

    return False


class LocalFinder:
    """Finds backup owners and loose backup files in local directories."""

    def __init__(self, backup_dirs: List[str], exclude_patterns: List[str] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize finder.

        Args:
            backup_dirs: Directories whose sub-directories are backup owners
            exclude_patterns: Glob patterns of entries to ignore
            logger: Logger to use instead of the module logger
        """
        self.backup_dirs = backup_dirs
        self.exclude_patterns = exclude_patterns or []
        self.log = logger or logging.getLogger(__name__)

    def find_backup_users(self) -> Dict[str, str]:
        """
        Find all owners in all backup directories.

        Returns:
            Dict of {owner: path}. Later directories win on duplicate names.
        """
        users = {}

        for base_dir in self.backup_dirs:
            base = Path(base_dir)
            self.log.info(f"Searching for users in backup dir: {base_dir}")

            if not base.is_dir():
                self.log.warning(f"Backup directory does not exist: {base_dir}")
                continue

            try:
                entries = sorted(base.iterdir())
            except OSError as e:
                self.log.warning(f"Could not read backup directory {base_dir}: {e}")
                continue

            has_user = False
            for entry in entries:
                if entry.is_dir() and not should_exclude(entry, self.exclude_patterns):
                    users[entry.name] = str(entry)
                    has_user = True

            if not has_user and self._loose_backups(base):
                users[ROOT_OWNER] = str(base)

        return users

    def find_root_backups(self, directory: str, keep_latest: int) -> List[str]:
        """
        Newest loose backup files of a directory.

        Args:
            directory: Directory registered as the root owner
            keep_latest: Maximum number of files to return

        Returns:
            Paths sorted newest first
        """
        files = self._loose_backups(Path(directory))
        files.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return [str(p) for p in files[:max(keep_latest, 0)]]

    def _loose_backups(self, directory: Path) -> List[Path]:
        try:
            return [
                entry for entry in directory.iterdir()
                if entry.is_file()
                and any(fnmatch(entry.name, pattern) for pattern in ROOT_BACKUP_PATTERNS)
                and not should_exclude(entry, self.exclude_patterns)
            ]
        except OSError as e:
            self.log.warning(f"Could not read backup files in {directory}: {e}")
            return []


def directory_size(path: str) -> int:
    """Total size in bytes of the regular files below path."""
    total = 0
    for root, _, files in os.walk(path):
        for name in files:
            full = os.path.join(root, name)
            if os.path.isfile(full) and not os.path.islink(full):
                total += os.path.getsize(full)
    return total
