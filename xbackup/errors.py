"""
Exception hierarchy for xbackup.

Every failure raised by the artifact pipeline, the storage adapters and the
rotation engine derives from BackupError so callers running batches can
catch one type, log it and move on to the next item.
"""

from typing import Any, Dict, Optional


class BackupError(Exception):
    """Base class for all backup errors."""

    def __init__(self, message: str = '', context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}


class InputUnreadableError(BackupError):
    """Raised when a source file is missing or cannot be read."""
    pass


class ToolError(BackupError):
    """Base class for external tool failures."""
    pass


class ToolSpawnError(ToolError):
    """Raised when an external executable cannot be started."""
    pass


class ToolExitError(ToolError):
    """Raised when an external executable exits with a non-zero status."""

    def __init__(self, message: str = '', returncode: int = None, stderr: str = '',
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context)
        self.returncode = returncode
        self.stderr = stderr


class OutputMissingError(ToolError):
    """Raised when a tool exits cleanly but its destination file is absent."""
    pass


class CipherError(BackupError):
    """Raised when the stream cipher rejects data (wrong key, truncation, corruption)."""
    pass


class CompressionError(BackupError):
    """Raised when archive creation or a native codec fails."""
    pass


class StorageError(BackupError):
    """Raised when a storage operation fails."""
    pass
