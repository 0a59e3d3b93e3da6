"""Exceptions raised by the backup and restore engine."""

from typing import List, Optional


class BackupError(Exception):
    """Base exception for backup and restore errors."""
    pass


class BackupBuildError(BackupError):
    """Raised when an archive could not be built."""
    pass


class ArchiveValidationError(BackupError):
    """Raised when an archive is malformed. Always raised before the store is touched."""
    pass


class RestoreAbortedError(BackupError):
    """Raised when a notebook fails to restore under the abort policy.

    Notebooks restored before the failing one stay committed. Their reports
    are carried in ``reports`` and their legacy payloads in
    ``restored_payloads``, so callers can still refresh those notebooks.
    """

    def __init__(self, message: str, workspace_id: Optional[str] = None,
                 reports: Optional[List] = None,
                 restored_payloads: Optional[List] = None):
        super().__init__(message)
        self.workspace_id = workspace_id
        self.reports = reports or []
        self.restored_payloads = restored_payloads or []
