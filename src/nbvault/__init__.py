"""
nbvault - backup and restore for notebook workspaces

Snapshots folders, notebooks, documents, notes and their files into one
self-describing zip archive, and restores it into a store that may already
hold other data.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .storage import WorkspaceStore, Folder, Workspace, Document, Note
from .backup import (
    BackupService,
    BackupStream,
    RestoreFailurePolicy,
    RestoreResult,
    WorkspaceBackupRequest,
)
from .config import NbVaultConfig

__all__ = [
    "WorkspaceStore",
    "Folder",
    "Workspace",
    "Document",
    "Note",
    "BackupService",
    "BackupStream",
    "RestoreFailurePolicy",
    "RestoreResult",
    "WorkspaceBackupRequest",
    "NbVaultConfig",
]
