"""
Workspace Store - relational rows plus per-workspace blob trees

This module is the persistence layer that backup and restore read from and
write to:
- folders / notebooks / documents / notepad_notes tables (SQLite)
- an uploads root where each notebook owns <uploads>/<notebook_id>/
  with documents/, notes/ and vectors/ sub-trees
- explicit transactions so a notebook can be destroyed and recreated atomically
- id-preserving inserts (insert_*) used by restore, next to the small set of
  id-generating create/add helpers used to seed a store
"""

import sqlite3
import shutil
import threading
import uuid
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Union

from .models import (
    Document,
    Folder,
    Note,
    Workspace,
    format_timestamp,
    parse_timestamp,
    utcnow,
)
from .schema import init_database

logger = logging.getLogger(__name__)

# Blob sub-trees owned by every notebook, in backup order
BLOB_SUBTREES = ("documents", "notes", "vectors")


class StoreError(Exception):
    """Base exception for workspace store errors."""
    pass


class WorkspaceNotFoundError(StoreError):
    """Raised when a notebook row does not exist."""

    def __init__(self, workspace_id: str):
        super().__init__(f"Workspace not found: {workspace_id}")
        self.workspace_id = workspace_id


def validate_entity_id(entity_id: str) -> str:
    """Validate an id that is also used as a directory name.

    Raises:
        ValueError: If the id is empty or could escape its parent directory
    """
    if not isinstance(entity_id, str) or not entity_id.strip():
        raise ValueError("Invalid id: must be a non-empty string")
    if entity_id in (".", "..") or "/" in entity_id or "\\" in entity_id:
        raise ValueError(f"Invalid id: {entity_id!r}")
    if "\x00" in entity_id:
        raise ValueError(f"Invalid id: {entity_id!r}")
    return entity_id


class WorkspaceStore:
    """
    Workspace Store - folders, notebooks, documents and notes

    Pattern: One persistent SQLite connection in autocommit mode; multi-statement
    work goes through transaction()
    Lifetime: Owned by the caller, close() when done

    Example:
        store = WorkspaceStore(db_path, uploads_dir)
        with store.transaction():
            store.delete_notes(ws_id)
            store.delete_documents(ws_id)
            store.delete_workspace(ws_id)
    """

    def __init__(self,
                 db_path: Union[str, Path],
                 uploads_dir: Union[str, Path],
                 enable_wal: bool = True):
        """
        Initialize Workspace Store.

        Args:
            db_path: Path to SQLite database file (or ':memory:' for in-memory)
            uploads_dir: Root directory holding one blob tree per notebook
            enable_wal: Enable WAL mode for concurrent writes (default: True)
        """
        self.db_path = Path(db_path) if str(db_path) != ':memory:' else ':memory:'
        self.uploads_dir = Path(uploads_dir)

        if self.db_path != ':memory:':
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.uploads_dir.mkdir(parents=True, exist_ok=True)

        # isolation_level=None: autocommit, transactions are explicit BEGIN/COMMIT
        self._conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
            isolation_level=None,
            timeout=30.0
        )
        # Re-entrant so store methods can run inside transaction()
        self._db_lock = threading.RLock()
        self._in_transaction = False

        init_database(self._conn, enable_wal and self.db_path != ':memory:')

    # ==================== Transactions ====================

    @contextmanager
    def transaction(self) -> Iterator["WorkspaceStore"]:
        """
        Run the enclosed statements in one IMMEDIATE transaction.

        Commits on normal exit, rolls back on any exception. Nested use joins
        the outer transaction.
        """
        with self._db_lock:
            if self._in_transaction:
                yield self
                return

            self._conn.execute("BEGIN IMMEDIATE")
            self._in_transaction = True
            try:
                yield self
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")
            finally:
                self._in_transaction = False

    def _execute(self, sql: str, params: Sequence = ()) -> sqlite3.Cursor:
        with self._db_lock:
            return self._conn.execute(sql, params)

    def _executemany(self, sql: str, rows: List[tuple]) -> None:
        with self._db_lock:
            self._conn.executemany(sql, rows)

    # ==================== Folders ====================

    def list_folders(self) -> List[Folder]:
        """Return every folder in the store, oldest first."""
        cursor = self._execute("""
            SELECT id, name, parent_id, created_at, updated_at
            FROM folders ORDER BY created_at ASC, id ASC
        """)
        return [self._row_to_folder(row) for row in cursor.fetchall()]

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        cursor = self._execute("""
            SELECT id, name, parent_id, created_at, updated_at
            FROM folders WHERE id = ?
        """, (folder_id,))
        row = cursor.fetchone()
        return self._row_to_folder(row) if row else None

    def folder_exists(self, folder_id: str) -> bool:
        cursor = self._execute("SELECT 1 FROM folders WHERE id = ?", (folder_id,))
        return cursor.fetchone() is not None

    def insert_folder(self, folder: Folder) -> None:
        """Insert a folder keeping its id."""
        self._execute("""
            INSERT INTO folders (id, name, parent_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
        """, (
            folder.id,
            folder.name,
            folder.parent_id,
            format_timestamp(folder.created_at),
            format_timestamp(folder.updated_at),
        ))

    def set_folder_parent(self, folder_id: str, parent_id: Optional[str]) -> bool:
        cursor = self._execute(
            "UPDATE folders SET parent_id = ? WHERE id = ?",
            (parent_id, folder_id)
        )
        return cursor.rowcount > 0

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> Folder:
        """Create a folder with a fresh id."""
        folder = Folder(id=str(uuid.uuid4()), name=name, parent_id=parent_id)
        self.insert_folder(folder)
        return folder

    @staticmethod
    def _row_to_folder(row: tuple) -> Folder:
        return Folder(
            id=row[0],
            name=row[1],
            parent_id=row[2],
            created_at=parse_timestamp(row[3]),
            updated_at=parse_timestamp(row[4]),
        )

    # ==================== Notebooks ====================

    def list_workspaces(self) -> List[Workspace]:
        cursor = self._execute("""
            SELECT id, title, folder_id, description, is_pinned, created_at, updated_at
            FROM notebooks ORDER BY created_at ASC, id ASC
        """)
        return [self._row_to_workspace(row) for row in cursor.fetchall()]

    def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        cursor = self._execute("""
            SELECT id, title, folder_id, description, is_pinned, created_at, updated_at
            FROM notebooks WHERE id = ?
        """, (workspace_id,))
        row = cursor.fetchone()
        return self._row_to_workspace(row) if row else None

    def insert_workspace(self, workspace: Workspace) -> None:
        """Insert a notebook keeping its id."""
        validate_entity_id(workspace.id)
        self._execute("""
            INSERT INTO notebooks
            (id, title, folder_id, description, is_pinned, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            workspace.id,
            workspace.title,
            workspace.folder_id,
            workspace.description,
            1 if workspace.is_pinned else 0,
            format_timestamp(workspace.created_at),
            format_timestamp(workspace.updated_at),
        ))

    def create_workspace(self,
                         title: str,
                         folder_id: Optional[str] = None,
                         description: Optional[str] = None) -> Workspace:
        """Create a notebook with a fresh id."""
        workspace = Workspace(
            id=str(uuid.uuid4()),
            title=title,
            folder_id=folder_id,
            description=description,
        )
        self.insert_workspace(workspace)
        return workspace

    def delete_workspace(self, workspace_id: str) -> None:
        """
        Delete a notebook row.

        Raises:
            WorkspaceNotFoundError: If no row had that id
        """
        cursor = self._execute("DELETE FROM notebooks WHERE id = ?", (workspace_id,))
        if cursor.rowcount == 0:
            raise WorkspaceNotFoundError(workspace_id)

    @staticmethod
    def _row_to_workspace(row: tuple) -> Workspace:
        return Workspace(
            id=row[0],
            title=row[1],
            folder_id=row[2],
            description=row[3],
            is_pinned=bool(row[4]),
            created_at=parse_timestamp(row[5]),
            updated_at=parse_timestamp(row[6]),
        )

    # ==================== Documents ====================

    _DOCUMENT_COLUMNS = """
        id, notebook_id, file_name, mime_type, size_bytes, status, status_message,
        text_content, file_path, is_vectorized, created_at, updated_at
    """

    def list_documents(self, workspace_id: str) -> List[Document]:
        cursor = self._execute(f"""
            SELECT {self._DOCUMENT_COLUMNS}
            FROM documents WHERE notebook_id = ?
            ORDER BY created_at ASC, id ASC
        """, (workspace_id,))
        return [self._row_to_document(row) for row in cursor.fetchall()]

    def insert_documents(self, documents: List[Document]) -> int:
        """Bulk-insert documents keeping their ids. Returns rows inserted."""
        if not documents:
            return 0
        rows = [
            (
                doc.id,
                doc.workspace_id,
                doc.file_name,
                doc.mime_type,
                doc.size_bytes,
                doc.status,
                doc.status_message,
                doc.text_content,
                doc.file_path,
                1 if doc.is_vectorized else 0,
                format_timestamp(doc.created_at),
                format_timestamp(doc.updated_at),
            )
            for doc in documents
        ]
        self._executemany(f"""
            INSERT INTO documents ({self._DOCUMENT_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, rows)
        return len(rows)

    def add_document(self,
                     workspace_id: str,
                     file_name: str,
                     data: bytes,
                     mime_type: Optional[str] = None,
                     text_content: Optional[str] = None,
                     status: str = "COMPLETED") -> Document:
        """
        Store an uploaded file under the notebook's documents/ tree and record it.

        The blob is named after the document id so the row and file stay linked.
        """
        doc_id = str(uuid.uuid4())
        suffix = Path(file_name).suffix
        blob_dir = self.blob_subtree(workspace_id, "documents")
        blob_dir.mkdir(parents=True, exist_ok=True)
        blob_path = blob_dir / f"{doc_id}{suffix}"
        blob_path.write_bytes(data)

        document = Document(
            id=doc_id,
            workspace_id=workspace_id,
            file_name=file_name,
            size_bytes=len(data),
            status=status,
            mime_type=mime_type,
            text_content=text_content,
            file_path=str(blob_path.relative_to(self.uploads_dir)),
        )
        self.insert_documents([document])
        return document

    def delete_documents(self, workspace_id: str) -> int:
        cursor = self._execute(
            "DELETE FROM documents WHERE notebook_id = ?", (workspace_id,)
        )
        return cursor.rowcount

    @staticmethod
    def _row_to_document(row: tuple) -> Document:
        return Document(
            id=row[0],
            workspace_id=row[1],
            file_name=row[2],
            mime_type=row[3],
            size_bytes=row[4],
            status=row[5],
            status_message=row[6],
            text_content=row[7],
            file_path=row[8],
            is_vectorized=bool(row[9]),
            created_at=parse_timestamp(row[10]),
            updated_at=parse_timestamp(row[11]),
        )

    # ==================== Notepad notes ====================

    def list_notes(self, workspace_id: str) -> List[Note]:
        cursor = self._execute("""
            SELECT id, notebook_id, title, content, created_at, updated_at
            FROM notepad_notes WHERE notebook_id = ?
            ORDER BY created_at ASC, id ASC
        """, (workspace_id,))
        return [
            Note(
                id=row[0],
                workspace_id=row[1],
                title=row[2],
                content=row[3],
                created_at=parse_timestamp(row[4]),
                updated_at=parse_timestamp(row[5]),
            )
            for row in cursor.fetchall()
        ]

    def insert_notes(self, notes: List[Note]) -> int:
        """Bulk-insert notes keeping their ids. Returns rows inserted."""
        if not notes:
            return 0
        rows = [
            (
                note.id,
                note.workspace_id,
                note.title,
                note.content,
                format_timestamp(note.created_at),
                format_timestamp(note.updated_at),
            )
            for note in notes
        ]
        self._executemany("""
            INSERT INTO notepad_notes (id, notebook_id, title, content, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, rows)
        return len(rows)

    def add_note(self,
                 workspace_id: str,
                 title: str,
                 content: str,
                 write_markdown: bool = True) -> Note:
        """
        Create a notepad note, optionally mirrored as notes/<note_id>.md.
        """
        now = utcnow()
        note = Note(
            id=str(uuid.uuid4()),
            workspace_id=workspace_id,
            title=title,
            content=content,
            created_at=now,
            updated_at=now,
        )
        self.insert_notes([note])
        if write_markdown:
            notes_dir = self.blob_subtree(workspace_id, "notes")
            notes_dir.mkdir(parents=True, exist_ok=True)
            (notes_dir / f"{note.id}.md").write_text(f"# {title}\n\n{content}\n", encoding="utf-8")
        return note

    def delete_notes(self, workspace_id: str) -> int:
        cursor = self._execute(
            "DELETE FROM notepad_notes WHERE notebook_id = ?", (workspace_id,)
        )
        return cursor.rowcount

    # ==================== Blob trees ====================

    def blob_root(self, workspace_id: str) -> Path:
        """Directory owning every file of one notebook."""
        return self.uploads_dir / validate_entity_id(workspace_id)

    def blob_subtree(self, workspace_id: str, name: str) -> Path:
        if name not in BLOB_SUBTREES:
            raise ValueError(f"Unknown blob sub-tree: {name}. Must be one of: {BLOB_SUBTREES}")
        return self.blob_root(workspace_id) / name

    def remove_blob_tree(self, workspace_id: str) -> bool:
        """Delete a notebook's blob root. Returns False if there was none."""
        root = self.blob_root(workspace_id)
        if not root.exists():
            return False
        shutil.rmtree(root)
        logger.info(f"Removed blob tree for workspace {workspace_id}: {root}")
        return True

    def close(self) -> None:
        """Close connection."""
        if getattr(self, "_conn", None) is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
