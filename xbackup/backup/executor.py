"""
Backup executor - orchestrates the complete backup workflow.

Workflow:
1. Skip the run if the last successful run finished less than 24h ago
2. Discover owners in the backup directories
3. Per owner: skip if every remote already holds the artifact, otherwise
   archive, compress/encrypt and upload to every remote
4. Rotate every remote (keep latest N per owner)
5. On full success: clean the temp directory and record the run
"""

import json
import logging
import math
import os
import shutil
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from xbackup.errors import BackupError
from .compression import create_archive, get_archive_size
from .naming import create_archive_name
from .pipeline import ArtifactPipeline
from .retention import RotationManager, extract_user, extract_version
from .sources import ROOT_OWNER, LocalFinder, directory_size
from .storage import create_storages, remote_key
from .tools import discard_file

SUCCESS_WINDOW = timedelta(hours=24)

# A loose root backup counts as present remotely only if the remote copy is
# at least this fraction of the source size.
ROOT_REMOTE_SIZE_RATIO = 0.5


class BackupExecutor:
    """
    Orchestrates one backup run over all owners and remotes.
    """

    def __init__(self, config: Dict[str, Any], storages: Optional[List[Dict[str, Any]]] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize backup executor.

        Args:
            config: Settings dict from load_config()
            storages: List of {'driver', 'storage'} dicts (default: from config)
            logger: Logger to use instead of the module logger

        Raises:
            ValueError: If ROTATION_KEEP_LATEST is negative
        """
        self.config = config
        self.log = logger or logging.getLogger(__name__)
        self.logs = []
        self.tmp_dir = config['TMP_DIR']
        self.remote_path = config.get('REMOTE_PATH', '')

        self.keep_latest = config.get('ROTATION_KEEP_LATEST', 7)
        if self.keep_latest < 0:
            raise ValueError(f"ROTATION_KEEP_LATEST must be >= 0, got {self.keep_latest}")

        self.storages = storages if storages is not None else create_storages(config, self.log)
        self._pipeline = None

        self.finder = LocalFinder(
            config['BACKUP_DIRS'],
            exclude_patterns=config.get('ARCHIVE_EXCLUDE'),
            logger=self.log
        )

    @property
    def pipeline(self) -> ArtifactPipeline:
        """
        Artifact pipeline for the configured methods, built on first use.

        Not built for rotation-only use.

        Raises:
            ValueError: If the method, password or backend settings are invalid
        """
        if self._pipeline is None:
            self._pipeline = ArtifactPipeline(
                compression=self.config['BACKUP_COMPRESSION'],
                encryption=self.config['BACKUP_ENCRYPTION'],
                password=self.config.get('ENCRYPTION_PASSWORD'),
                level=self.config.get('BACKUP_COMPRESSION_LEVEL'),
                backend=self.config.get('CODEC_BACKEND', 'native'),
                tmp_dir=self.tmp_dir,
                chunk_size=self.config['CHUNK_SIZE'],
                logger=self.log
            )
        return self._pipeline

    def execute(self, dry_run: bool = False, force: bool = False) -> Dict[str, Any]:
        """
        Execute one backup run.

        Args:
            dry_run: Log what would happen without creating, uploading or deleting
            force: Ignore the 24h last-success gate

        Returns:
            Dict with summary of the run:
            {
                'status': 'success' | 'failed' | 'skipped',
                'users': List[str],
                'uploaded': List[str],
                'failed': List[str],
                'skipped': List[str],
                'rotation': List[dict],
                'logs': List[str]
            }
        """
        summary = {
            'status': 'success',
            'users': [],
            'uploaded': [],
            'failed': [],
            'skipped': [],
            'rotation': [],
        }

        if not force:
            last_success = self.read_last_success()
            if last_success and datetime.now(timezone.utc) - last_success < SUCCESS_WINDOW:
                self._log(
                    f"Last successful backup at {last_success.isoformat()}, within 24h, skipping execution."
                )
                summary['status'] = 'skipped'
                summary['logs'] = self.logs
                return summary

        self._log("Backup process started" + (" [DRY-RUN]" if dry_run else ""))
        self._log(
            f"Methods: compression={self.pipeline.compression}, "
            f"encryption={self.pipeline.encryption}, backend={self.pipeline.backend}"
        )

        if not self.storages:
            self._log("No valid remote storage backends available.", logging.ERROR)
            summary['status'] = 'failed'
            summary['failed'].append("No valid remote storage backends available")
            summary['logs'] = self.logs
            return summary

        os.makedirs(self.tmp_dir, exist_ok=True)

        users = self.finder.find_backup_users()
        if not users:
            self._log("No users found to backup in configured backup directories.")
        else:
            self._log(f"Found users to backup: {', '.join(users)}")

        for owner, path in users.items():
            summary['users'].append(owner)
            self._log(f"--- Starting backup for user: {owner} ---")

            if owner == ROOT_OWNER:
                self._backup_root(path, dry_run, summary)
            else:
                try:
                    self._backup_user(owner, path, dry_run, summary)
                except (BackupError, OSError) as e:
                    self._fail(summary, f"Failed to backup user {owner}: {e}")

            self._log(f"--- Finished backup for user: {owner} ---")

        summary['rotation'] = self.rotate(dry_run)

        if summary['failed']:
            summary['status'] = 'failed'
            self._log("Some backups had issues. Please check the logs for details.", logging.WARNING)
        else:
            self._log("All backups completed successfully.")
            if not dry_run:
                self.cleanup_tmp_dir()
                self.write_last_success()

        summary['logs'] = self.logs
        return summary

    def rotate(self, dry_run: bool = False) -> List[Dict[str, Any]]:
        """
        Run rotation on every remote.

        A failing remote is logged and reported; the others still rotate.

        Returns:
            One summary dict per remote, with its 'driver' (and 'error' on failure)
        """
        if not self.config.get('ROTATION_ENABLED', True):
            self._log("Backup rotation is disabled. Skipping.")
            return []

        results = []
        for info in self.storages:
            manager = RotationManager(
                info['storage'],
                keep_latest=self.keep_latest,
                remote_path=self.remote_path,
                logger=self.log
            )
            try:
                result = manager.run(dry_run)
                result.pop('logs', None)
                results.append({'driver': info['driver'], **result})
            except BackupError as e:
                self._log(f"Backup rotation failed on {info['driver']}: {e}", logging.ERROR)
                results.append({'driver': info['driver'], 'error': str(e)})
            self.logs.extend(manager.logs)

        return results

    def _backup_user(self, owner: str, user_path: str, dry_run: bool, summary: Dict[str, Any]):
        """Archive one user directory and ship its artifact."""
        plain_name = create_archive_name(owner, 'tar')
        artifact_name = self.pipeline.artifact_name(plain_name)

        status = self._remote_status(artifact_name)
        if status and all(s['exists'] for s in status):
            self._log(f"Skipping backup for user {owner}: {artifact_name} exists on all remote storages")
            summary['skipped'].append(artifact_name)
            return

        if dry_run:
            self._log(f"[DRY-RUN] Would archive {user_path} to {artifact_name}")
            return

        self._log(f"Archiving {user_path} ({directory_size(user_path)} bytes)")
        plain_path = os.path.join(self.tmp_dir, plain_name)
        try:
            create_archive(user_path, plain_path, self.config.get('ARCHIVE_EXCLUDE'))
            self._log(f"Archive created: {plain_name} ({get_archive_size(plain_path)} bytes)")
            artifact_path = self.pipeline.process(plain_path, self.tmp_dir)
        finally:
            discard_file(plain_path, self.log)

        self._upload_everywhere(artifact_path, status, summary)

    def _backup_root(self, directory: str, dry_run: bool, summary: Dict[str, Any]):
        """Ship the newest loose backup files of a directory one by one."""
        files = self.finder.find_root_backups(directory, self.keep_latest)

        if not files:
            self._log(f"No backup files found in root directory: {directory}", logging.WARNING)
            return

        for source in files:
            filename = os.path.basename(source)
            artifact_name = self.pipeline.artifact_name(filename)

            try:
                threshold = math.ceil(os.path.getsize(source) * ROOT_REMOTE_SIZE_RATIO)
                status = self._remote_status(artifact_name, threshold)
                if status and all(s['exists'] for s in status):
                    self._log(f"Skipping {filename}: {artifact_name} already exists on remote storage(s)")
                    summary['skipped'].append(artifact_name)
                    continue

                if dry_run:
                    self._log(f"[DRY-RUN] Would process {source} to {artifact_name}")
                    continue

                # Work on a copy so source files are never modified
                work_copy = os.path.join(self.tmp_dir, filename)
                try:
                    shutil.copyfile(source, work_copy)
                    artifact_path = self.pipeline.process(work_copy, self.tmp_dir)
                finally:
                    discard_file(work_copy, self.log)

                self._upload_everywhere(artifact_path, status, summary)

            except (BackupError, OSError) as e:
                self._fail(summary, f"Failed to process {source}: {e}")

    def _remote_status(self, filename: str, min_size: int = 0) -> List[Dict[str, Any]]:
        """
        Check every remote for an artifact.

        Returns:
            One dict per storage: {'exists': bool, 'size': int | None}.
            A copy smaller than min_size counts as missing.
        """
        key = remote_key(self.remote_path, filename)
        status = []

        for info in self.storages:
            entry = {'exists': False, 'size': None}
            try:
                if info['storage'].file_exists(key):
                    entry['size'] = info['storage'].file_size(key)
                    entry['exists'] = entry['size'] >= min_size
            except BackupError as e:
                self._log(f"Could not check {key} on {info['driver']}: {e}", logging.WARNING)
            status.append(entry)

        present = sum(1 for s in status if s['exists'])
        self._log(f"Remote status for {filename}: {present}/{len(status)} remotes have it")
        return status

    def _upload_everywhere(self, artifact_path: str, status: List[Dict[str, Any]],
                           summary: Dict[str, Any]) -> bool:
        """
        Upload an artifact to every remote that lacks a same-size copy.

        The local artifact is removed only when every upload succeeded.
        """
        filename = os.path.basename(artifact_path)
        key = remote_key(self.remote_path, filename)
        local_size = os.path.getsize(artifact_path)
        all_ok = True

        for info, remote in zip(self.storages, status):
            driver = info['driver']

            if remote['exists'] and remote['size'] == local_size:
                self._log(f"Skipping upload to {driver}: {key} already exists with matching size")
                continue

            try:
                info['storage'].upload(artifact_path, key)
                summary['uploaded'].append(f"{driver}:{key}")
                self._log(f"Uploaded {filename} to {driver} ({local_size} bytes)")
            except BackupError as e:
                all_ok = False
                self._fail(summary, f"Upload failed for {filename} to remote {driver}: {e}")

        if all_ok:
            discard_file(artifact_path, self.log)
        else:
            self._log(f"{artifact_path} was NOT deleted because not all uploads succeeded.", logging.WARNING)

        return all_ok

    def read_last_success(self) -> Optional[datetime]:
        """Time of the last successful run, or None."""
        status_file = self.config['STATUS_FILE']

        if not os.path.isfile(status_file):
            return None

        try:
            with open(status_file, 'r') as f:
                data = json.load(f)
            last = datetime.fromisoformat(data['last_success'])
        except (OSError, ValueError, KeyError, TypeError) as e:
            self._log(f"Unable to read backup status from {status_file}: {e}", logging.WARNING)
            return None

        if last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        return last

    def write_last_success(self):
        """Record now as the time of the last successful run."""
        status_file = self.config['STATUS_FILE']
        data = {'last_success': datetime.now(timezone.utc).isoformat()}

        try:
            os.makedirs(os.path.dirname(status_file) or '.', exist_ok=True)
            with open(status_file, 'w') as f:
                json.dump(data, f, indent=2)
            self._log(f"Backup status written to {status_file}")
        except OSError as e:
            self._log(f"Failed to write backup status to {status_file}: {e}", logging.ERROR)

    def cleanup_tmp_dir(self):
        """Remove everything in the temp directory except the status file."""
        if not os.path.isdir(self.tmp_dir):
            return

        status_file = os.path.abspath(self.config['STATUS_FILE'])
        self._log(f"Cleaning up temp directory: {self.tmp_dir}")

        for entry in os.scandir(self.tmp_dir):
            if os.path.abspath(entry.path) == status_file:
                continue
            try:
                if entry.is_dir(follow_symlinks=False):
                    shutil.rmtree(entry.path)
                else:
                    os.remove(entry.path)
            except OSError as e:
                self._log(f"Warning: Failed to remove {entry.path}: {e}", logging.WARNING)

    def _fail(self, summary: Dict[str, Any], message: str):
        self._log(message, logging.ERROR)
        summary['failed'].append(message)

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


def restore_backup(
    config: Dict[str, Any],
    user: str,
    version: Optional[str] = None,
    remote: Optional[str] = None,
    outdir: Optional[str] = None,
    storages: Optional[List[Dict[str, Any]]] = None,
    logger: Optional[logging.Logger] = None
) -> str:
    """
    Download a user's backup and undo its compression/encryption.

    Args:
        config: Settings dict from load_config()
        user: Owner whose backup to restore
        version: Timestamp `YYYY-MM-DD_HH-MM-SS` (default: newest)
        remote: Driver of the remote to read from (default: first remote)
        outdir: Target directory (default: TMP_DIR/download)
        storages: List of {'driver', 'storage'} dicts (default: from config)

    Returns:
        Path of the restored plain archive

    Raises:
        BackupError: If no remote, backup or version matches, or a step fails
    """
    log = logger or logging.getLogger(__name__)
    storages = storages if storages is not None else create_storages(config, log)

    if remote:
        storages = [s for s in storages if s['driver'] == remote]
    if not storages:
        raise BackupError(f"No valid remote storage found{f' for driver {remote}' if remote else ''}")

    storage = storages[0]['storage']
    files = storage.list_files(config.get('REMOTE_PATH', ''), recursive=True)

    candidates = [f for f in files if extract_user(f['path']) == user]
    if not candidates:
        raise BackupError(f"No backups found for user {user}")

    if version:
        candidates = [f for f in candidates if extract_version(f['path']) == version]
        if not candidates:
            raise BackupError(f"No backup of user {user} with version {version}")

    candidates.sort(
        key=lambda f: (extract_version(f['path']), f.get('last_modified') or 0),
        reverse=True
    )
    chosen = candidates[0]['path']

    outdir = outdir or os.path.join(config['TMP_DIR'], 'download')
    os.makedirs(outdir, exist_ok=True)

    local_path = os.path.join(outdir, os.path.basename(chosen))
    log.info(f"Downloading {chosen} to {local_path}")
    storage.download(chosen, local_path)

    pipeline = ArtifactPipeline(
        password=config.get('ENCRYPTION_PASSWORD'),
        backend=config.get('CODEC_BACKEND', 'native'),
        tmp_dir=config['TMP_DIR'],
        chunk_size=config['CHUNK_SIZE'],
        logger=log
    )
    restored = pipeline.restore(local_path, outdir)

    if os.path.getsize(restored) == 0:
        log.warning(f"Output file {restored} has size 0 B. Check decryption/decompression.")

    log.info(f"Backup file for user={user}, version={extract_version(chosen)} is ready at {restored}")
    return restored
