"""
Restore Orchestrator - rebuild folders and notebooks from an extracted backup

The restore runs as a fixed sequence:

    ValidatingManifest -> FolderPass -> per notebook:
        Destroying -> BlobRemoving -> MetadataRestoring -> BlobRestoring
        -> DocsRestoring -> NotesRestoring -> PayloadCollected

Every step reports a StepResult (done / skipped / failed) instead of raising,
so optional resources that are missing degrade to "skipped" and real failures
are visible per notebook. What a failed notebook does to the rest of the
restore is decided by the RestoreFailurePolicy.

Per notebook, the row work (destroy, metadata, documents, notes) is one store
transaction. Blob files are staged next to the uploads root before the
transaction and swapped in after it commits, so a notebook that fails keeps
its previous rows and files.
"""

import json
import logging
import secrets
import shutil
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple

from ..storage.models import Document, Folder, Note, Workspace
from ..storage.workspace_store import (
    BLOB_SUBTREES,
    StoreError,
    WorkspaceNotFoundError,
    WorkspaceStore,
)
from .builder import (
    DOCUMENTS_META_FILENAME,
    FOLDERS_FILENAME,
    LEGACY_NOTES_FILENAME,
    METADATA_FILENAME,
    NOTEPAD_NOTES_FILENAME,
)
from .errors import ArchiveValidationError, RestoreAbortedError
from .extractor import ExtractedArchive

logger = logging.getLogger(__name__)

# Returned for notebooks whose archive has no notes.json, so the client can
# still clear whatever it cached for them
EMPTY_LEGACY_PAYLOAD = '{"notes":[]}'

# Errors a single step can fail with; anything else propagates unchanged
STEP_ERRORS = (OSError, ValueError, KeyError, TypeError, sqlite3.Error, StoreError)


class RestoreStep(Enum):
    """Restore steps, in execution order."""
    FOLDERS = "folders"
    DESTROY = "destroy"
    REMOVE_BLOBS = "remove_blobs"
    METADATA = "metadata"
    BLOBS = "blobs"
    DOCUMENTS = "documents"
    NOTES = "notes"
    PAYLOAD = "payload"


_STEP_ORDER = {step: index for index, step in enumerate(RestoreStep)}


class StepOutcome(Enum):
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


class RestoreFailurePolicy(Enum):
    """What a failing notebook does to the rest of the restore."""
    ABORT = "abort"          # stop the whole restore (default)
    CONTINUE = "continue"    # record the failure, restore the remaining notebooks

    @classmethod
    def from_value(cls, value: Any) -> "RestoreFailurePolicy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise ValueError(f"Invalid restore failure policy: {value!r}. Must be one of: {valid}")


@dataclass
class StepResult:
    """Outcome of one restore step."""
    step: RestoreStep
    outcome: StepOutcome
    detail: str = ""

    @property
    def failed(self) -> bool:
        return self.outcome is StepOutcome.FAILED

    @classmethod
    def done(cls, step: RestoreStep, detail: str = "") -> "StepResult":
        return cls(step, StepOutcome.DONE, detail)

    @classmethod
    def skipped(cls, step: RestoreStep, detail: str = "") -> "StepResult":
        return cls(step, StepOutcome.SKIPPED, detail)

    @classmethod
    def from_error(cls, step: RestoreStep, error: BaseException) -> "StepResult":
        return cls(step, StepOutcome.FAILED, f"{type(error).__name__}: {error}")

    def to_dict(self) -> Dict[str, Any]:
        return {"step": self.step.value, "outcome": self.outcome.value, "detail": self.detail}


@dataclass
class WorkspaceRestoreReport:
    """Every step result for one notebook."""
    workspace_id: str
    steps: List[StepResult] = field(default_factory=list)

    def record(self, result: StepResult) -> StepResult:
        # A later result for the same step (e.g. a failed commit) replaces it
        self.steps = [s for s in self.steps if s.step is not result.step]
        self.steps.append(result)
        self.steps.sort(key=lambda s: _STEP_ORDER[s.step])
        return result

    @property
    def failed_step(self) -> Optional[StepResult]:
        for result in self.steps:
            if result.failed:
                return result
        return None

    @property
    def succeeded(self) -> bool:
        return self.failed_step is None

    def result_for(self, step: RestoreStep) -> Optional[StepResult]:
        for result in self.steps:
            if result.step is step:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workspaceId": self.workspace_id,
            "status": "restored" if self.succeeded else "failed",
            "steps": [s.to_dict() for s in self.steps],
        }


@dataclass
class RestoredPayload:
    """Legacy notes payload handed back to the client for one notebook."""
    workspace_id: str
    payload: str

    def to_dict(self) -> Dict[str, Any]:
        return {"workspaceId": self.workspace_id, "payload": self.payload}


@dataclass
class RestoreResult:
    message: str
    restored_payloads: List[RestoredPayload] = field(default_factory=list)
    workspaces: List[WorkspaceRestoreReport] = field(default_factory=list)
    folders: Optional[StepResult] = None

    @property
    def succeeded(self) -> bool:
        return all(report.succeeded for report in self.workspaces)

    @property
    def failed_workspace_ids(self) -> List[str]:
        return [r.workspace_id for r in self.workspaces if not r.succeeded]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "message": self.message,
            "restoredPayloads": [p.to_dict() for p in self.restored_payloads],
            "workspaces": [w.to_dict() for w in self.workspaces],
            "folders": self.folders.to_dict() if self.folders else None,
        }


class WorkspaceLockRegistry:
    """
    One lock per notebook id, so two restores never interleave the
    destroy/recreate of the same notebook.

    Locks are reference counted and dropped when their last holder or waiter
    leaves, so the map only holds ids that are being restored.
    """

    def __init__(self):
        # workspace_id -> [lock, holders and waiters]
        self._locks: Dict[str, list] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, workspace_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(workspace_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[workspace_id]

    def is_held(self, workspace_id: str) -> bool:
        with self._guard:
            entry = self._locks.get(workspace_id)
            return entry is not None and entry[0].locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# Shared by every orchestrator in the process unless one is injected
default_workspace_locks = WorkspaceLockRegistry()


@dataclass
class _WorkspaceJob:
    """Everything read from the archive for one notebook before any mutation."""
    workspace: Workspace
    source_dir: Path
    documents: Optional[List[Document]] = None
    notes: Optional[List[Note]] = None
    payload: str = EMPTY_LEGACY_PAYLOAD
    staging_dir: Optional[Path] = None
    staged_subtrees: List[str] = field(default_factory=list)

    @property
    def workspace_id(self) -> str:
        return self.workspace.id


class _RollbackRequested(Exception):
    """Leaves the store transaction after a step reported failure."""
    pass


class RestoreOrchestrator:
    """
    Restore Orchestrator - extracted archive -> store

    Pattern: Folder pass once, then destroy-and-recreate each notebook in
    manifest order, preserving every original id
    Lifetime: One instance can run many restores; notebooks are serialized
    through a WorkspaceLockRegistry

    Example:
        with ArchiveExtractor().extract(path) as extracted:
            result = RestoreOrchestrator(store).restore(extracted)
    """

    def __init__(self,
                 store: WorkspaceStore,
                 policy: RestoreFailurePolicy = RestoreFailurePolicy.ABORT,
                 locks: Optional[WorkspaceLockRegistry] = None):
        self.store = store
        self.policy = RestoreFailurePolicy.from_value(policy)
        self.locks = locks if locks is not None else default_workspace_locks

    def restore(self, extracted: ExtractedArchive) -> RestoreResult:
        """
        Restore every notebook listed in the archive manifest.

        Returns:
            RestoreResult with one report per attempted notebook and the
            legacy payloads of the notebooks that were restored

        Raises:
            ArchiveValidationError: Structural problem found before any mutation
            RestoreAbortedError: A notebook failed under the ABORT policy
        """
        manifest = extracted.manifest
        workspaces = self._preflight(extracted)

        known_folders, folder_step = self._restore_folders(extracted.root)

        reports: List[WorkspaceRestoreReport] = []
        payloads: List[RestoredPayload] = []

        for workspace_id in manifest.workspace_ids:
            logger.info(f"Restoring notebook ID: {workspace_id}")
            job = _WorkspaceJob(
                workspace=workspaces[workspace_id],
                source_dir=extracted.workspace_dir(workspace_id),
            )
            with self.locks.hold(workspace_id):
                report = self._restore_workspace(job, known_folders)
            reports.append(report)

            failure = report.failed_step
            if failure is not None:
                logger.error(
                    f"Restore of notebook {workspace_id} failed at "
                    f"{failure.step.value}: {failure.detail}"
                )
                if self.policy is RestoreFailurePolicy.ABORT:
                    raise RestoreAbortedError(
                        f"Restore of notebook {workspace_id} failed at "
                        f"{failure.step.value}: {failure.detail}",
                        workspace_id=workspace_id,
                        reports=reports,
                        restored_payloads=payloads,
                    )
                continue

            payloads.append(RestoredPayload(workspace_id, job.payload))

        failed = [r.workspace_id for r in reports if not r.succeeded]
        if failed:
            message = (
                f"Backup restored with errors: {len(reports) - len(failed)} of "
                f"{len(reports)} notebooks restored; failed: {', '.join(failed)}"
            )
        else:
            message = "Backup restored successfully."
        logger.info(message)

        return RestoreResult(
            message=message,
            restored_payloads=payloads,
            workspaces=reports,
            folders=folder_step,
        )

    # ==================== Validation ====================

    def _preflight(self, extracted: ExtractedArchive) -> Dict[str, Workspace]:
        """
        Read every notebook's metadata.json before touching the store.

        Raises:
            ArchiveValidationError: Missing/unreadable metadata or id mismatch
        """
        workspaces: Dict[str, Workspace] = {}
        for workspace_id in extracted.manifest.workspace_ids:
            path = extracted.workspace_dir(workspace_id) / METADATA_FILENAME
            if not path.is_file():
                raise ArchiveValidationError(f"Missing {METADATA_FILENAME} for notebook {workspace_id}")
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                workspace = Workspace.from_dict(data)
            except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
                raise ArchiveValidationError(
                    f"Unreadable {METADATA_FILENAME} for notebook {workspace_id}: {e}"
                ) from e
            if workspace.id != workspace_id:
                raise ArchiveValidationError(
                    f"ID mismatch in {METADATA_FILENAME} for directory {workspace_id}"
                )
            workspaces[workspace_id] = workspace
        return workspaces

    # ==================== Folder pass ====================

    def _restore_folders(self, root: Path) -> Tuple[Set[str], StepResult]:
        """
        Create the archive's folders that the store lacks, keeping their ids.

        Returns:
            (ids of folders now present in the store, step result)
        """
        path = root / FOLDERS_FILENAME
        if not path.is_file():
            logger.warning(f"No {FOLDERS_FILENAME} found in backup. Folders will not be restored.")
            return set(), StepResult.skipped(RestoreStep.FOLDERS, f"{FOLDERS_FILENAME} not found")

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(data, list):
                raise ValueError("expected a JSON array")
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable {FOLDERS_FILENAME}: {e}")
            return set(), StepResult.skipped(RestoreStep.FOLDERS, f"unreadable {FOLDERS_FILENAME}: {e}")

        # Arena keyed by id; parents are resolved only after every folder exists
        arena: Dict[str, Folder] = {}
        for entry in data:
            try:
                folder = Folder.from_dict(entry)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed folder entry {entry!r}: {e}")
                continue
            arena[folder.id] = folder
        logger.info(f"Found {len(arena)} folders in backup, restoring them first...")

        known: Set[str] = set()
        created: List[Folder] = []
        failed = 0

        with self.store.transaction():
            for folder in arena.values():
                if self.store.folder_exists(folder.id):
                    logger.debug(f"Folder {folder.id} already exists, skipping creation.")
                    known.add(folder.id)
                    continue
                try:
                    self.store.insert_folder(replace(folder, parent_id=None))
                except sqlite3.Error as e:
                    logger.error(f"Error restoring folder {folder.id}: {e}")
                    failed += 1
                    continue
                known.add(folder.id)
                created.append(folder)
                logger.info(f"Restored folder: {folder.id} - \"{folder.name}\"")

            for folder in created:
                parent_id = folder.parent_id
                if parent_id is None:
                    continue
                if parent_id in known and parent_id != folder.id:
                    self.store.set_folder_parent(folder.id, parent_id)
                else:
                    logger.warning(
                        f"Folder {folder.id} references parent {parent_id} which "
                        f"doesn't exist in restored folders. Removing parent reference."
                    )

        existing = len(known) - len(created)
        detail = f"{len(created)} created, {existing} already present, {failed} failed"
        return known, StepResult.done(RestoreStep.FOLDERS, detail)

    # ==================== Per-notebook pass ====================

    def _attempt(self,
                 report: WorkspaceRestoreReport,
                 step: RestoreStep,
                 action: Callable[[_WorkspaceJob], StepResult],
                 job: _WorkspaceJob) -> StepResult:
        try:
            result = action(job)
        except STEP_ERRORS as e:
            result = StepResult.from_error(step, e)
        return report.record(result)

    def _restore_workspace(self,
                           job: _WorkspaceJob,
                           known_folders: Set[str]) -> WorkspaceRestoreReport:
        report = WorkspaceRestoreReport(job.workspace_id)

        # Read and stage everything first; a failure here leaves the store untouched
        for step, action in (
            (RestoreStep.DOCUMENTS, self._load_documents),
            (RestoreStep.NOTES, self._load_notes),
            (RestoreStep.PAYLOAD, self._collect_payload),
            (RestoreStep.BLOBS, self._stage_blob_tree),
        ):
            if self._attempt(report, step, action, job).failed:
                self._discard_staging(job)
                return report

        transactional = (
            (RestoreStep.DESTROY, self._destroy),
            (RestoreStep.METADATA, lambda j: self._recreate_metadata(j, known_folders)),
            (RestoreStep.DOCUMENTS, self._recreate_documents),
            (RestoreStep.NOTES, self._recreate_notes),
        )
        try:
            with self.store.transaction():
                for step, action in transactional:
                    if self._attempt(report, step, action, job).failed:
                        raise _RollbackRequested()
        except _RollbackRequested:
            self._discard_staging(job)
            return report
        except sqlite3.Error as e:
            # BEGIN or COMMIT failed; nothing of this notebook was written
            step = RestoreStep.DESTROY if report.result_for(RestoreStep.DESTROY) is None else RestoreStep.NOTES
            report.record(StepResult.from_error(step, e))
            self._discard_staging(job)
            return report

        logger.info(f"Restored database records for notebook {job.workspace_id}")

        if self._attempt(report, RestoreStep.REMOVE_BLOBS, self._remove_blob_tree, job).failed:
            self._discard_staging(job)
            return report
        self._attempt(report, RestoreStep.BLOBS, self._install_blob_tree, job)
        self._discard_staging(job)
        return report

    # -------------------- read phase --------------------

    def _read_json_list(self, path: Path) -> List[Dict[str, Any]]:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, list) or not all(isinstance(e, dict) for e in data):
            raise ValueError(f"{path.name}: expected a JSON array of objects")
        return data

    def _load_documents(self, job: _WorkspaceJob) -> StepResult:
        path = job.source_dir / DOCUMENTS_META_FILENAME
        if not path.is_file():
            logger.warning(
                f"Missing {DOCUMENTS_META_FILENAME} for notebook {job.workspace_id}, "
                f"skipping document DB restore."
            )
            return StepResult.skipped(RestoreStep.DOCUMENTS, f"{DOCUMENTS_META_FILENAME} not found")
        # workspace_id is forced to the notebook being restored, whatever the file says
        job.documents = [
            replace(Document.from_dict(entry), workspace_id=job.workspace_id)
            for entry in self._read_json_list(path)
        ]
        return StepResult.done(RestoreStep.DOCUMENTS, f"{len(job.documents)} documents read")

    def _load_notes(self, job: _WorkspaceJob) -> StepResult:
        path = job.source_dir / NOTEPAD_NOTES_FILENAME
        if not path.is_file():
            logger.warning(
                f"Missing {NOTEPAD_NOTES_FILENAME} for notebook {job.workspace_id}, "
                f"skipping notes DB restore."
            )
            return StepResult.skipped(RestoreStep.NOTES, f"{NOTEPAD_NOTES_FILENAME} not found")
        job.notes = [
            replace(Note.from_dict(entry), workspace_id=job.workspace_id)
            for entry in self._read_json_list(path)
        ]
        return StepResult.done(RestoreStep.NOTES, f"{len(job.notes)} notes read")

    def _collect_payload(self, job: _WorkspaceJob) -> StepResult:
        path = job.source_dir / LEGACY_NOTES_FILENAME
        if not path.is_file():
            logger.warning(
                f"Missing {LEGACY_NOTES_FILENAME} for notebook {job.workspace_id}. "
                f"Returning an empty payload."
            )
            job.payload = EMPTY_LEGACY_PAYLOAD
            return StepResult.skipped(RestoreStep.PAYLOAD, f"{LEGACY_NOTES_FILENAME} not found")
        job.payload = path.read_text(encoding="utf-8")
        return StepResult.done(RestoreStep.PAYLOAD, f"{len(job.payload)} characters")

    def _stage_blob_tree(self, job: _WorkspaceJob) -> StepResult:
        # Same filesystem as the uploads root, so installing is a rename
        uploads_dir = self.store.uploads_dir
        staging = uploads_dir / f".{job.workspace_id}.restore-{secrets.token_hex(4)}"
        staging.mkdir(parents=True)
        job.staging_dir = staging

        for name in BLOB_SUBTREES:
            source = job.source_dir / name
            if not source.is_dir():
                logger.info(f"No '{name}' directory found in backup for {job.workspace_id}, skipping.")
                continue
            shutil.copytree(source, staging / name)
            job.staged_subtrees.append(name)

        if not job.staged_subtrees:
            return StepResult.skipped(RestoreStep.BLOBS, "no blob sub-trees in backup")
        return StepResult.done(RestoreStep.BLOBS, f"staged {', '.join(job.staged_subtrees)}")

    def _discard_staging(self, job: _WorkspaceJob) -> None:
        staging = job.staging_dir
        job.staging_dir = None
        if staging is None or not staging.exists():
            return
        try:
            shutil.rmtree(staging)
        except OSError as e:
            logger.warning(f"Failed to remove staging directory {staging}: {e}")

    # -------------------- transactional phase --------------------

    def _destroy(self, job: _WorkspaceJob) -> StepResult:
        workspace_id = job.workspace_id
        logger.warning(
            f"Performing overwrite restore for notebook {workspace_id}. Existing data will be deleted."
        )
        notes = self.store.delete_notes(workspace_id)
        documents = self.store.delete_documents(workspace_id)
        try:
            self.store.delete_workspace(workspace_id)
        except WorkspaceNotFoundError:
            logger.info(f"Notebook {workspace_id} did not exist in DB. Proceeding with restore.")
            return StepResult.done(RestoreStep.DESTROY, "notebook did not exist")
        return StepResult.done(
            RestoreStep.DESTROY,
            f"deleted notebook, {documents} documents, {notes} notes",
        )

    def _recreate_metadata(self, job: _WorkspaceJob, known_folders: Set[str]) -> StepResult:
        workspace = job.workspace
        detail = "notebook recreated"
        if workspace.folder_id and workspace.folder_id not in known_folders:
            logger.warning(
                f"Notebook {workspace.id} references folder {workspace.folder_id} which "
                f"doesn't exist in restored folders. Removing folderId reference."
            )
            detail = f"notebook recreated, dangling folder {workspace.folder_id} removed"
            workspace = replace(workspace, folder_id=None)
        self.store.insert_workspace(workspace)
        return StepResult.done(RestoreStep.METADATA, detail)

    def _recreate_documents(self, job: _WorkspaceJob) -> StepResult:
        if job.documents is None:
            return StepResult.skipped(RestoreStep.DOCUMENTS, f"{DOCUMENTS_META_FILENAME} not found")
        count = self.store.insert_documents(job.documents)
        logger.info(f"Restored {count} document database records for {job.workspace_id}")
        return StepResult.done(RestoreStep.DOCUMENTS, f"{count} documents restored")

    def _recreate_notes(self, job: _WorkspaceJob) -> StepResult:
        if job.notes is None:
            return StepResult.skipped(RestoreStep.NOTES, f"{NOTEPAD_NOTES_FILENAME} not found")
        count = self.store.insert_notes(job.notes)
        logger.info(f"Restored {count} notepad notes records for {job.workspace_id}")
        return StepResult.done(RestoreStep.NOTES, f"{count} notes restored")

    # -------------------- after commit --------------------

    def _remove_blob_tree(self, job: _WorkspaceJob) -> StepResult:
        if self.store.remove_blob_tree(job.workspace_id):
            return StepResult.done(RestoreStep.REMOVE_BLOBS, "existing blob tree removed")
        return StepResult.skipped(RestoreStep.REMOVE_BLOBS, "no existing blob tree")

    def _install_blob_tree(self, job: _WorkspaceJob) -> StepResult:
        target = self.store.blob_root(job.workspace_id)
        job.staging_dir.rename(target)
        job.staging_dir = None
        if not job.staged_subtrees:
            return StepResult.skipped(RestoreStep.BLOBS, "no blob sub-trees in backup")
        logger.info(f"Restored {', '.join(job.staged_subtrees)} files to {target}")
        return StepResult.done(RestoreStep.BLOBS, f"restored {', '.join(job.staged_subtrees)}")
