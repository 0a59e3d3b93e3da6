"""
Data models for the workspace store.

This module contains the dataclasses for folders, workspaces (notebooks),
documents and notepad notes. Each model converts to and from the camelCase
dictionaries used in backup archives; unknown keys are ignored on read so that
archives written by newer versions still load.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from dataclasses import dataclass


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, accepting the trailing 'Z' form."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Folder:
    """A folder node. Parents are referenced by id only."""
    id: str
    name: str
    parent_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = utcnow()
        if self.updated_at is None:
            self.updated_at = self.created_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "parentId": self.parent_id,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Folder":
        """Create Folder from dictionary.

        Raises:
            ValueError: If id is not a non-empty string or parentId is not a string
        """
        folder_id = data["id"]
        parent_id = data.get("parentId")
        if not isinstance(folder_id, str) or not folder_id:
            raise ValueError(f"Folder id must be a non-empty string, got {folder_id!r}")
        if parent_id is not None and not isinstance(parent_id, str):
            raise ValueError(f"Folder parentId must be a string, got {parent_id!r}")
        return cls(
            id=folder_id,
            name=data.get("name") or "",
            parent_id=parent_id,
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
        )


@dataclass
class Workspace:
    """A notebook: the container for documents and notes."""
    id: str
    title: str
    folder_id: Optional[str] = None
    description: Optional[str] = None
    is_pinned: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = utcnow()
        if self.updated_at is None:
            self.updated_at = self.created_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "title": self.title,
            "folderId": self.folder_id,
            "description": self.description,
            "isPinned": self.is_pinned,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Workspace":
        """Create Workspace from dictionary."""
        return cls(
            id=data["id"],
            title=data.get("title") or "",
            folder_id=data.get("folderId"),
            description=data.get("description"),
            is_pinned=bool(data.get("isPinned", False)),
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
        )


@dataclass
class Document:
    """An uploaded document. Its bytes live under the workspace blob root."""
    id: str
    workspace_id: str
    file_name: str
    size_bytes: int = 0
    status: str = "PENDING"
    mime_type: Optional[str] = None
    text_content: Optional[str] = None
    status_message: Optional[str] = None
    file_path: Optional[str] = None
    is_vectorized: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = utcnow()
        if self.updated_at is None:
            self.updated_at = self.created_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "workspaceId": self.workspace_id,
            "fileName": self.file_name,
            "mimeType": self.mime_type,
            "sizeBytes": self.size_bytes,
            "status": self.status,
            "statusMessage": self.status_message,
            "textContent": self.text_content,
            "filePath": self.file_path,
            "isVectorized": self.is_vectorized,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Document":
        """Create Document from dictionary.

        Also reads the older notebookId/fileSize keys.
        """
        size = data.get("sizeBytes", data.get("fileSize")) or 0
        return cls(
            id=data["id"],
            workspace_id=data.get("workspaceId") or data.get("notebookId") or "",
            file_name=data.get("fileName") or "",
            size_bytes=int(size),
            status=data.get("status") or "PENDING",
            mime_type=data.get("mimeType"),
            text_content=data.get("textContent"),
            status_message=data.get("statusMessage"),
            file_path=data.get("filePath"),
            is_vectorized=bool(data.get("isVectorized", False)),
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
        )


@dataclass
class Note:
    """A structured notepad note."""
    id: str
    workspace_id: str
    title: Optional[str] = None
    content: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = utcnow()
        if self.updated_at is None:
            self.updated_at = self.created_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "workspaceId": self.workspace_id,
            "title": self.title,
            "content": self.content,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Note":
        """Create Note from dictionary."""
        return cls(
            id=data["id"],
            workspace_id=data.get("workspaceId") or data.get("notebookId") or "",
            title=data.get("title"),
            content=data.get("content"),
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
        )
