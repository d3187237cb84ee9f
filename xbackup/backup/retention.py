"""
Retention rotation for remote backups.

Lists every file on a remote, groups the files by owner (the name prefix
before the first `.YYYY-MM-DD`) and keeps only the newest N files of each
owner. Files whose names carry no owner/date prefix are never touched.
"""

import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from xbackup.errors import BackupError

DEFAULT_KEEP_LATEST = 7

_OWNER_PATTERN = re.compile(r'^(.+?)\.\d{4}-\d{2}-\d{2}', re.IGNORECASE)
_USER_PATTERN = re.compile(r'^([a-zA-Z0-9_.-]+?)\.(\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})\.')


def extract_owner(path: str) -> Optional[str]:
    """
    Extract the owner token from a backup file path.

    Example:
        'remote/alice.2025-06-28_10-30-00.tar.xbk.gz.aes' -> 'alice'

    Returns:
        Owner name, or None if the basename has no owner/date prefix
    """
    match = _OWNER_PATTERN.match(os.path.basename(path))
    return match.group(1) if match else None


def extract_user(filename: str) -> Optional[str]:
    """Owner of a filename in the strict `<owner>.YYYY-MM-DD_HH-MM-SS.` form."""
    match = _USER_PATTERN.match(os.path.basename(filename))
    return match.group(1) if match else None


def extract_version(filename: str) -> Optional[str]:
    """Timestamp `YYYY-MM-DD_HH-MM-SS` of a filename in the strict form."""
    match = _USER_PATTERN.match(os.path.basename(filename))
    return match.group(2) if match else None


def group_files_by_owner(files: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """
    Group file records by owner.

    Records without an owner are left out of every group.
    """
    groups = {}
    for record in files:
        owner = extract_owner(record['path'])
        if owner is not None:
            groups.setdefault(owner, []).append(record)
    return groups


def select_for_deletion(files: List[Dict[str, Any]], keep_latest: int) -> List[Dict[str, Any]]:
    """
    Pick the records outside the newest keep_latest of one group.

    Sorting is stable, so records with equal timestamps keep their listing
    order.

    Raises:
        ValueError: If keep_latest is negative
    """
    if keep_latest < 0:
        raise ValueError(f"keep_latest must be >= 0, got {keep_latest}")

    ordered = sorted(files, key=lambda f: f.get('last_modified') or 0, reverse=True)
    return ordered[keep_latest:]


class RotationManager:
    """
    Applies the keep-latest-N policy to one remote storage.

    Each run lists, groups, evaluates and deletes exactly once. A failed
    delete is logged and counted; the run moves on to the next file.
    """

    def __init__(
        self,
        storage,
        keep_latest: int = DEFAULT_KEEP_LATEST,
        remote_path: str = '',
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize rotation manager.

        Args:
            storage: Storage adapter with list_files() and delete()
            keep_latest: Files to keep per owner
            remote_path: Prefix (directory) on the remote to rotate
            logger: Logger to use instead of the module logger
        """
        if keep_latest < 0:
            raise ValueError(f"keep_latest must be >= 0, got {keep_latest}")

        self.storage = storage
        self.keep_latest = keep_latest
        self.remote_path = remote_path or ''
        self.log = logger or logging.getLogger(__name__)
        self.logs = []

    def run(self, dry_run: bool = False) -> Dict[str, Any]:
        """
        Run one rotation pass.

        Args:
            dry_run: Log what would be deleted without deleting

        Returns:
            Dict with summary of the pass:
            {
                'files_found': int,
                'groups': int,
                'kept': int,
                'deleted': int,
                'failed': int,
                'skipped': int,
                'logs': List[str]
            }

        Raises:
            StorageError: If the remote cannot be listed
        """
        self._log(
            f"Starting backup rotation (keep latest {self.keep_latest})"
            + (" [DRY-RUN]" if dry_run else "")
        )

        summary = {
            'files_found': 0,
            'groups': 0,
            'kept': 0,
            'deleted': 0,
            'failed': 0,
            'skipped': 0,
        }

        try:
            files = self.storage.list_files(self.remote_path, recursive=True)
        except BackupError as e:
            self._log(f"Failed to list remote files: {e}", logging.ERROR)
            raise

        summary['files_found'] = len(files)
        self._log(f"Found {len(files)} files in remote storage")

        groups = group_files_by_owner(files)
        summary['groups'] = len(groups)
        summary['skipped'] = len(files) - sum(len(g) for g in groups.values())

        for record in files:
            if extract_owner(record['path']) is None:
                self._log(f"Could not extract owner from file: {record['path']}", logging.WARNING)

        for owner, owner_files in groups.items():
            to_delete = select_for_deletion(owner_files, self.keep_latest)
            summary['kept'] += len(owner_files) - len(to_delete)

            self._log(
                f"Owner '{owner}': {len(owner_files)} files, "
                f"keeping {len(owner_files) - len(to_delete)}, deleting {len(to_delete)}"
            )

            for record in to_delete:
                path = record['path']

                if dry_run:
                    self._log(f"[DRY-RUN] Would delete: {path}")
                    continue

                try:
                    self.storage.delete(path)
                    summary['deleted'] += 1
                    self._log(f"Deleted: {path}")
                except BackupError as e:
                    summary['failed'] += 1
                    self._log(f"Failed to delete {path}: {e}", logging.WARNING)

        self._log(
            f"Rotation complete. Groups: {summary['groups']}, "
            f"kept: {summary['kept']}, deleted: {summary['deleted']}, "
            f"failed: {summary['failed']}, skipped: {summary['skipped']}"
        )

        summary['logs'] = self.logs
        return summary

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Level for the injected logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        self.log.log(level, message)
