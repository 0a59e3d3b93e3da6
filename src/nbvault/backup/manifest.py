"""
Backup manifest: the top-level descriptor of an archive.

manifest.json = {formatVersion, createdAt, workspaceIds}

Archives written by older releases of the notebook application carry
backup_manifest.json = {backupVersion, createdAt, notebooks}; those are read
and normalized to the same Manifest.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from ..storage.workspace_store import validate_entity_id
from .errors import ArchiveValidationError

FORMAT_VERSION = "1.0"
SUPPORTED_MAJOR_VERSION = 1

MANIFEST_FILENAME = "manifest.json"
LEGACY_MANIFEST_FILENAME = "backup_manifest.json"


@dataclass
class Manifest:
    """Format version, creation time and the ordered notebook ids of an archive."""
    workspace_ids: List[str]
    format_version: str = FORMAT_VERSION
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "formatVersion": self.format_version,
            "createdAt": self.created_at.isoformat(),
            "workspaceIds": list(self.workspace_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Manifest":
        """
        Build and validate a Manifest from parsed JSON.

        Raises:
            ArchiveValidationError: If a field is missing or malformed
        """
        if not isinstance(data, dict):
            raise ArchiveValidationError("Invalid manifest: expected a JSON object")

        if "workspaceIds" not in data and "notebooks" in data:
            data = {
                "formatVersion": data.get("backupVersion", "1.0"),
                "createdAt": data.get("createdAt"),
                "workspaceIds": data.get("notebooks"),
            }

        version = data.get("formatVersion")
        if not isinstance(version, str) or not version:
            raise ArchiveValidationError("Invalid manifest: missing formatVersion")
        check_format_version(version)

        ids = data.get("workspaceIds")
        if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
            raise ArchiveValidationError(
                "Invalid manifest: workspaceIds must be an array of strings"
            )
        if len(set(ids)) != len(ids):
            raise ArchiveValidationError("Invalid manifest: duplicate workspace ids")
        for workspace_id in ids:
            try:
                validate_entity_id(workspace_id)
            except ValueError as e:
                raise ArchiveValidationError(f"Invalid manifest: {e}") from e

        created_raw = data.get("createdAt")
        try:
            created_at = _parse_created_at(created_raw)
        except (TypeError, ValueError) as e:
            raise ArchiveValidationError(
                f"Invalid manifest: bad createdAt {created_raw!r}"
            ) from e

        return cls(workspace_ids=ids, format_version=version, created_at=created_at)


def _parse_created_at(value: Any) -> datetime:
    if not isinstance(value, str):
        raise TypeError("createdAt must be a string")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def check_format_version(version: str) -> None:
    """
    Accept any minor revision of the supported major version.

    Raises:
        ArchiveValidationError: If the major version is unknown
    """
    major = version.split(".", 1)[0]
    if not major.isdigit() or int(major) != SUPPORTED_MAJOR_VERSION:
        raise ArchiveValidationError(
            f"Unsupported backup format version {version!r} "
            f"(supported: {SUPPORTED_MAJOR_VERSION}.x)"
        )


def write_manifest(root: Path, manifest: Manifest) -> Path:
    path = root / MANIFEST_FILENAME
    path.write_text(json.dumps(manifest.to_dict(), indent=2), encoding="utf-8")
    return path


def load_manifest(root: Path) -> Manifest:
    """
    Read and validate the manifest of an extracted archive.

    Raises:
        ArchiveValidationError: If no manifest exists or it cannot be parsed
    """
    path = root / MANIFEST_FILENAME
    if not path.is_file():
        path = root / LEGACY_MANIFEST_FILENAME
    if not path.is_file():
        raise ArchiveValidationError(
            f"Invalid backup file: {MANIFEST_FILENAME} not found"
        )

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ArchiveValidationError(f"Invalid backup file: unreadable manifest ({e})") from e

    return Manifest.from_dict(data)
