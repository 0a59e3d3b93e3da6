"""
Archive Builder - full snapshot of selected notebooks into one zip

Layout written into the archive:
    manifest.json
    folders.json
    {workspaceId}/metadata.json
    {workspaceId}/documents_meta.json
    {workspaceId}/notepad_notes.json   (only when structured notes exist)
    {workspaceId}/notes.json           (legacy payload, verbatim)
    {workspaceId}/documents|notes|vectors/...

The tree is materialized in a TempWorkspace, compressed to a zip file next to
it, and handed back as a BackupStream. The TempWorkspace lives exactly as long
as the stream: closing or draining the stream removes it.
"""

import json
import logging
import shutil
import sqlite3
import weakref
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

from ..storage.workspace_store import BLOB_SUBTREES, WorkspaceStore
from .errors import BackupBuildError, BackupError
from .manifest import FORMAT_VERSION, Manifest, write_manifest
from .temp_workspace import TempWorkspace

logger = logging.getLogger(__name__)

ZIP_CONTENT_TYPE = "application/zip"

FOLDERS_FILENAME = "folders.json"
METADATA_FILENAME = "metadata.json"
DOCUMENTS_META_FILENAME = "documents_meta.json"
NOTEPAD_NOTES_FILENAME = "notepad_notes.json"
LEGACY_NOTES_FILENAME = "notes.json"


@dataclass
class WorkspaceBackupRequest:
    """One notebook to back up, with the client-held legacy notes payload."""
    workspace_id: str
    legacy_note_payload: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkspaceBackupRequest":
        """Accepts {workspaceId, legacyNotePayload} or the older {id, notesJsonString}."""
        workspace_id = data.get("workspaceId", data.get("id"))
        payload = data.get("legacyNotePayload", data.get("notesJsonString", ""))
        if not isinstance(workspace_id, str) or not workspace_id:
            raise ValueError("Backup request needs a workspace id")
        if payload is None:
            payload = ""
        if not isinstance(payload, str):
            raise ValueError("legacyNotePayload must be a string")
        return cls(workspace_id=workspace_id, legacy_note_payload=payload)


RequestLike = Union[WorkspaceBackupRequest, Dict[str, Any], str]


def _coerce_request(item: RequestLike) -> WorkspaceBackupRequest:
    if isinstance(item, WorkspaceBackupRequest):
        return item
    if isinstance(item, str):
        return WorkspaceBackupRequest(workspace_id=item)
    if isinstance(item, dict):
        return WorkspaceBackupRequest.from_dict(item)
    raise TypeError(f"Unsupported backup request: {item!r}")


def _write_json(path: Path, data: Any) -> None:
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")


class BackupStream:
    """
    Readable byte stream over a finished backup archive.

    Owns the TempWorkspace holding the archive and releases it on close(),
    when iteration reaches the end, on context-manager exit, or when the
    stream is garbage collected without being closed.
    """

    content_type = ZIP_CONTENT_TYPE

    def __init__(self,
                 archive_path: Path,
                 temp: TempWorkspace,
                 chunk_size: int = 64 * 1024,
                 filename: Optional[str] = None):
        self.archive_path = archive_path
        self.chunk_size = chunk_size
        self.filename = filename or archive_path.name
        self.size = archive_path.stat().st_size
        self._file = open(archive_path, "rb")
        self._finalizer = weakref.finalize(self, _close_and_release, self._file, temp)

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def read(self, size: int = -1) -> bytes:
        if self.closed:
            raise ValueError("I/O operation on closed backup stream")
        return self._file.read(size)

    def __iter__(self) -> Iterator[bytes]:
        try:
            while True:
                chunk = self.read(self.chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            self.close()

    def copy_to(self, destination: Path) -> Path:
        """Drain the stream into a file and close it."""
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        with open(destination, "wb") as out:
            for chunk in self:
                out.write(chunk)
        return destination

    def close(self) -> None:
        self._finalizer()

    def __enter__(self) -> "BackupStream":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def _close_and_release(handle, temp: TempWorkspace) -> None:
    try:
        handle.close()
    finally:
        temp.release()


class ArchiveBuilder:
    """
    Archive Builder - writes notebooks, folders and blob trees into a zip

    Pattern: Materialize in a TempWorkspace, compress, return a BackupStream
    Lifetime: Stateless between builds; safe to run concurrently

    Example:
        builder = ArchiveBuilder(store)
        with builder.build([WorkspaceBackupRequest("ws1", payload)]) as stream:
            response.write_all(stream)
    """

    ARCHIVE_FILENAME = "backup.zip"
    CONTENT_DIRNAME = "content"

    def __init__(self,
                 store: WorkspaceStore,
                 temp_root: Optional[Path] = None,
                 compression_level: int = 9,
                 chunk_size: int = 64 * 1024,
                 format_version: str = FORMAT_VERSION):
        """
        Args:
            store: Store to read notebooks and blobs from
            temp_root: Parent for temporary directories (default: system temp)
            compression_level: zlib level 0-9; backups favor ratio over speed
            chunk_size: Read size of the returned stream
            format_version: Value written to manifest.formatVersion
        """
        if not 0 <= compression_level <= 9:
            raise ValueError("compression_level must be between 0 and 9")
        self.store = store
        self.temp_root = temp_root
        self.compression_level = compression_level
        self.chunk_size = chunk_size
        self.format_version = format_version

    def build(self, workspaces: Iterable[RequestLike]) -> BackupStream:
        """
        Build an archive for the given notebooks, in the given order.

        Returns:
            BackupStream over the finalized zip

        Raises:
            BackupBuildError: On any I/O or store failure; the temporary
                directory is already removed when this propagates
        """
        try:
            requests = [_coerce_request(item) for item in workspaces]
        except (TypeError, ValueError) as e:
            raise BackupBuildError(f"Invalid backup request: {e}") from e
        logger.info(f"Starting backup creation for {len(requests)} notebooks")

        temp = TempWorkspace("backup", self.temp_root)
        work_dir = temp.acquire()
        try:
            self._check_requests(requests)
            content_dir = work_dir / self.CONTENT_DIRNAME
            content_dir.mkdir()

            manifest = Manifest(
                workspace_ids=[r.workspace_id for r in requests],
                format_version=self.format_version,
            )
            write_manifest(content_dir, manifest)
            self._write_folders(content_dir)

            for request in requests:
                self._write_workspace(content_dir, request)

            archive_path = self._compress(content_dir, work_dir / self.ARCHIVE_FILENAME)
            # Only the archive is needed from here on
            shutil.rmtree(content_dir)
        except BackupError:
            temp.release()
            raise
        except (OSError, sqlite3.Error, ValueError) as e:
            logger.error(f"Error during backup creation: {e}")
            temp.release()
            raise BackupBuildError(f"Backup creation failed: {e}") from e
        except BaseException:
            temp.release()
            raise

        timestamp = manifest.created_at.strftime("%Y-%m-%dT%H-%M-%S")
        try:
            stream = BackupStream(
                archive_path,
                temp,
                chunk_size=self.chunk_size,
                filename=f"notebook_backup_{timestamp}.zip",
            )
        except OSError as e:
            temp.release()
            raise BackupBuildError(f"Backup creation failed: {e}") from e

        logger.info(f"Archiving complete. Total bytes: {stream.size}")
        return stream

    def _check_requests(self, requests: List[WorkspaceBackupRequest]) -> None:
        seen = set()
        for request in requests:
            if request.workspace_id in seen:
                raise BackupBuildError(f"Duplicate workspace id in request: {request.workspace_id}")
            seen.add(request.workspace_id)
            try:
                workspace = self.store.get_workspace(request.workspace_id)
            except ValueError as e:
                raise BackupBuildError(str(e)) from e
            if workspace is None:
                raise BackupBuildError(f"Workspace not found: {request.workspace_id}")

    def _write_folders(self, content_dir: Path) -> None:
        # Every folder, so a restore never depends on a separate folder export
        folders = self.store.list_folders()
        _write_json(content_dir / FOLDERS_FILENAME, [f.to_dict() for f in folders])
        logger.info(f"Backing up {len(folders)} folders")

    def _write_workspace(self, content_dir: Path, request: WorkspaceBackupRequest) -> None:
        workspace_id = request.workspace_id
        logger.info(f"Processing notebook ID: {workspace_id}")
        workspace_dir = content_dir / workspace_id
        workspace_dir.mkdir()

        workspace = self.store.get_workspace(workspace_id)
        _write_json(workspace_dir / METADATA_FILENAME, workspace.to_dict())

        documents = self.store.list_documents(workspace_id)
        _write_json(workspace_dir / DOCUMENTS_META_FILENAME, [d.to_dict() for d in documents])

        (workspace_dir / LEGACY_NOTES_FILENAME).write_text(
            request.legacy_note_payload, encoding="utf-8"
        )

        notes = self.store.list_notes(workspace_id)
        if notes:
            logger.info(f"Backing up {len(notes)} notepad notes for notebook {workspace_id}")
            _write_json(workspace_dir / NOTEPAD_NOTES_FILENAME, [n.to_dict() for n in notes])

        for name in BLOB_SUBTREES:
            source = self.store.blob_subtree(workspace_id, name)
            if not source.is_dir():
                logger.warning(f"No {name} directory found for notebook {workspace_id} at {source}")
                continue
            shutil.copytree(source, workspace_dir / name)
            logger.debug(f"Copied {source} into backup")

    def _compress(self, content_dir: Path, archive_path: Path) -> Path:
        """Zip the content tree. Files are streamed into the archive one at a time."""
        with zipfile.ZipFile(
            archive_path,
            "w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=self.compression_level,
        ) as zf:
            for path in sorted(content_dir.rglob("*")):
                arcname = path.relative_to(content_dir).as_posix()
                if path.is_dir():
                    # Keep empty directories so blob trees restore byte-identical
                    if not any(path.iterdir()):
                        zf.write(path, arcname=arcname)
                    continue
                zf.write(path, arcname=arcname)
        return archive_path

