"""
Backup Service - the two operations the application calls

- create_backup(workspaces) -> BackupStream (application/zip)
- restore_from_backup(archive_path) -> RestoreResult

Both run synchronously; callers on a latency-sensitive path should hand them
to a worker. Temporary directories are always released, and an uploaded
archive is deleted after a restore attempt whatever its outcome.
"""

import logging
from pathlib import Path
from typing import Iterable, Optional, Union

from ..storage.workspace_store import WorkspaceStore
from .builder import ArchiveBuilder, BackupStream, RequestLike
from .extractor import ArchiveExtractor
from .manifest import FORMAT_VERSION
from .restore import (
    RestoreFailurePolicy,
    RestoreOrchestrator,
    RestoreResult,
    WorkspaceLockRegistry,
)

logger = logging.getLogger(__name__)


class BackupService:
    """
    Backup Service - builder, extractor and orchestrator behind one object

    Example:
        service = BackupService.from_config(NbVaultConfig.load())
        stream = service.create_backup([{"id": ws_id, "notesJsonString": notes}])
        result = service.restore_from_backup("/tmp/upload-123.zip")
    """

    def __init__(self,
                 store: WorkspaceStore,
                 temp_root: Optional[Path] = None,
                 compression_level: int = 9,
                 chunk_size: int = 64 * 1024,
                 format_version: str = FORMAT_VERSION,
                 failure_policy: RestoreFailurePolicy = RestoreFailurePolicy.ABORT,
                 delete_uploaded_archive: bool = True,
                 locks: Optional[WorkspaceLockRegistry] = None,
                 owns_store: bool = False):
        self.store = store
        self.failure_policy = RestoreFailurePolicy.from_value(failure_policy)
        self.delete_uploaded_archive = delete_uploaded_archive
        self.locks = locks
        self._owns_store = owns_store

        self.builder = ArchiveBuilder(
            store,
            temp_root=temp_root,
            compression_level=compression_level,
            chunk_size=chunk_size,
            format_version=format_version,
        )
        self.extractor = ArchiveExtractor(temp_root=temp_root)

    @classmethod
    def from_config(cls, config, store: Optional[WorkspaceStore] = None) -> "BackupService":
        """Build a service from an NbVaultConfig, opening the store it names if none is given."""
        owns_store = store is None
        if store is None:
            store = WorkspaceStore(config.storage.database_path, config.storage.uploads_dir)
        return cls(
            store,
            temp_root=config.backup.temp_dir,
            compression_level=config.backup.compression_level,
            chunk_size=config.backup.chunk_size,
            format_version=config.backup.format_version,
            failure_policy=config.restore.failure_policy,
            delete_uploaded_archive=config.restore.delete_uploaded_archive,
            owns_store=owns_store,
        )

    def create_backup(self, workspaces: Iterable[RequestLike]) -> BackupStream:
        """
        Build a full snapshot of the given notebooks.

        Args:
            workspaces: WorkspaceBackupRequest objects, {workspaceId, legacyNotePayload}
                dicts (or {id, notesJsonString}), or bare notebook ids

        Returns:
            BackupStream; close it (or read it to the end) to free its temp directory
        """
        return self.builder.build(workspaces)

    def write_backup(self, workspaces: Iterable[RequestLike], destination: Union[str, Path]) -> Path:
        """Build a backup and write it to a file."""
        with self.create_backup(workspaces) as stream:
            return stream.copy_to(Path(destination))

    def restore_from_backup(self,
                            archive_path: Union[str, Path],
                            policy: Optional[RestoreFailurePolicy] = None,
                            delete_archive: Optional[bool] = None) -> RestoreResult:
        """
        Restore every notebook in an archive.

        Args:
            archive_path: Zip produced by create_backup (or the legacy application)
            policy: Override the configured failure policy
            delete_archive: Override delete_uploaded_archive

        Raises:
            ArchiveValidationError: Archive rejected before any mutation
            RestoreAbortedError: A notebook failed under the ABORT policy
        """
        archive_path = Path(archive_path)
        if delete_archive is None:
            delete_archive = self.delete_uploaded_archive
        orchestrator = RestoreOrchestrator(
            self.store,
            policy=policy if policy is not None else self.failure_policy,
            locks=self.locks,
        )

        logger.info(f"Starting restore process from zip file: {archive_path}")
        try:
            with self.extractor.extract(archive_path) as extracted:
                return orchestrator.restore(extracted)
        finally:
            if delete_archive:
                self._delete_archive(archive_path)

    def _delete_archive(self, archive_path: Path) -> None:
        try:
            archive_path.unlink(missing_ok=True)
            logger.info(f"Cleaned up uploaded zip file: {archive_path}")
        except OSError as e:
            logger.error(f"Error cleaning up uploaded zip file {archive_path}: {e}")

    def close(self) -> None:
        if self._owns_store:
            self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
