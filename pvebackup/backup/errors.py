"""
Failure taxonomy for backup runs.

Every fatal failure derives from BackupError and is handled by the
executor's single failure path. RetentionDeletionFailure is not fatal and does
not derive from BackupError.
"""

from typing import List


class BackupError(Exception):
    """Base class for backup run failures."""
    pass


class PreflightFailure(BackupError):
    """Raised when the environment is not ready. Nothing has been created yet."""
    pass


class DumpFailure(BackupError):
    """Raised when one or more workloads could not be dumped, or none exist."""

    def __init__(self, message: str, failed_jobs: List = None):
        super().__init__(message)
        self.failed_jobs = failed_jobs or []


class EncryptionFailure(BackupError):
    """Raised on the first artifact that cannot be encrypted."""
    pass


class UploadFailure(BackupError):
    """Raised when the bulk transfer to the remote fails."""
    pass


class RunInterrupted(BackupError):
    """Raised when the run is terminated by a signal."""
    pass


class RetentionDeletionFailure(Exception):
    """
    Raised by the retain stage when a snapshot set cannot be deleted.

    Never fatal: the retention manager tallies and logs it.
    """
    pass
