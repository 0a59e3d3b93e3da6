"""
Archive Extractor - unpack a backup and validate it before anything is restored

Extraction only writes into a fresh TempWorkspace, so it is harmless on bad
input; the checks here make sure the RestoreOrchestrator never starts on one.
"""

import logging
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .errors import ArchiveValidationError
from .manifest import Manifest, load_manifest
from .temp_workspace import TempWorkspace

logger = logging.getLogger(__name__)


@dataclass
class ExtractedArchive:
    """An unpacked archive and the TempWorkspace that holds it."""
    root: Path
    manifest: Manifest
    temp: TempWorkspace

    def workspace_dir(self, workspace_id: str) -> Path:
        return self.root / workspace_id

    def release(self) -> bool:
        return self.temp.release()

    def __enter__(self) -> "ExtractedArchive":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


class ArchiveExtractor:
    """
    Archive Extractor - zip file -> validated ExtractedArchive

    Checks, in order:
    - the file is a zip archive
    - no entry resolves outside the extraction directory
    - manifest.json exists and parses (legacy backup_manifest.json accepted)
    - the top-level notebook directories are exactly the manifest's ids
    """

    def __init__(self, temp_root: Optional[Path] = None):
        self.temp_root = temp_root

    def extract(self, archive_path: Union[str, Path]) -> ExtractedArchive:
        """
        Extract and validate an archive.

        Returns:
            ExtractedArchive; the caller releases it (use it as a context manager)

        Raises:
            ArchiveValidationError: If the archive or its manifest is invalid.
                The extraction directory is removed before this propagates.
            FileNotFoundError: If archive_path does not exist
        """
        archive_path = Path(archive_path)
        if not archive_path.is_file():
            raise FileNotFoundError(f"Backup archive not found: {archive_path}")

        temp = TempWorkspace("restore", self.temp_root)
        root = temp.acquire()
        try:
            self._unpack(archive_path, root)
            logger.info(f"Backup extracted to temporary directory: {root}")
            manifest = load_manifest(root)
            self._check_workspace_dirs(root, manifest)
        except BaseException:
            temp.release()
            raise

        logger.info(
            f"Backup manifest loaded. Version: {manifest.format_version}, "
            f"Notebooks: {', '.join(manifest.workspace_ids)}"
        )
        return ExtractedArchive(root=root, manifest=manifest, temp=temp)

    def _unpack(self, archive_path: Path, root: Path) -> None:
        try:
            zf = zipfile.ZipFile(archive_path)
        except zipfile.BadZipFile as e:
            raise ArchiveValidationError(f"Invalid backup file: not a zip archive ({e})") from e

        with zf:
            resolved_root = root.resolve()
            for member in zf.infolist():
                # Security: reject entries escaping the extraction directory
                target = (resolved_root / member.filename).resolve()
                if target != resolved_root and resolved_root not in target.parents:
                    raise ArchiveValidationError(
                        f"Malicious archive: path traversal detected in {member.filename}"
                    )
            # Corrupt member data surfaces from zlib, truncated members as EOFError
            try:
                zf.extractall(root)
            except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, EOFError) as e:
                raise ArchiveValidationError(f"Invalid backup file: {e}") from e

    def _check_workspace_dirs(self, root: Path, manifest: Manifest) -> None:
        present = {child.name for child in root.iterdir() if child.is_dir()}
        expected = set(manifest.workspace_ids)

        missing = sorted(expected - present)
        unexpected = sorted(present - expected)
        if missing or unexpected:
            details = []
            if missing:
                details.append(f"missing directories for {', '.join(missing)}")
            if unexpected:
                details.append(f"unlisted directories {', '.join(unexpected)}")
            raise ArchiveValidationError(
                f"Manifest does not match archive content: {'; '.join(details)}"
            )

