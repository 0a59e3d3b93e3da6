from .errors import (
    ArchiveValidationError,
    BackupBuildError,
    BackupError,
    RestoreAbortedError,
)
from .temp_workspace import TempWorkspace
from .manifest import FORMAT_VERSION, Manifest
from .builder import ArchiveBuilder, BackupStream, WorkspaceBackupRequest
from .extractor import ArchiveExtractor, ExtractedArchive
from .restore import (
    EMPTY_LEGACY_PAYLOAD,
    RestoreFailurePolicy,
    RestoreOrchestrator,
    RestoreResult,
    RestoreStep,
    RestoredPayload,
    StepOutcome,
    StepResult,
    WorkspaceLockRegistry,
    WorkspaceRestoreReport,
)
from .service import BackupService

__all__ = [
    "ArchiveValidationError",
    "BackupBuildError",
    "BackupError",
    "RestoreAbortedError",
    "TempWorkspace",
    "FORMAT_VERSION",
    "Manifest",
    "ArchiveBuilder",
    "BackupStream",
    "WorkspaceBackupRequest",
    "ArchiveExtractor",
    "ExtractedArchive",
    "EMPTY_LEGACY_PAYLOAD",
    "RestoreFailurePolicy",
    "RestoreOrchestrator",
    "RestoreResult",
    "RestoreStep",
    "RestoredPayload",
    "StepOutcome",
    "StepResult",
    "WorkspaceLockRegistry",
    "WorkspaceRestoreReport",
    "BackupService",
]
