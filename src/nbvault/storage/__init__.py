from .models import Folder, Workspace, Document, Note
from .workspace_store import (
    BLOB_SUBTREES,
    StoreError,
    WorkspaceNotFoundError,
    WorkspaceStore,
)

__all__ = [
    "Folder",
    "Workspace",
    "Document",
    "Note",
    "BLOB_SUBTREES",
    "StoreError",
    "WorkspaceNotFoundError",
    "WorkspaceStore",
]
