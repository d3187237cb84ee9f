"""
Backup module for xbackup.

This module handles the core backup functionality including:
- Artifact naming (which methods were applied, in what order)
- Compression and encryption (native codecs, external tools, stream cipher)
- Storage (S3, B2 and local directory)
- Execution orchestration and restore
- Retention rotation
"""

from .executor import BackupExecutor, restore_backup
from .naming import decode_artifact_name, encode_artifact_name
from .pipeline import ArtifactPipeline
from .sources import LocalFinder
from .compression import create_archive
from .storage import S3Storage, LocalStorage
from .retention import RotationManager

__all__ = [
    'BackupExecutor',
    'restore_backup',
    'decode_artifact_name',
    'encode_artifact_name',
    'ArtifactPipeline',
    'LocalFinder',
    'create_archive',
    'S3Storage',
    'LocalStorage',
    'RotationManager'
]
