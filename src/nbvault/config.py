"""
Configuration for nbvault.

Settings live in <base_path>/config.yaml. Every section is a typed dataclass
with its defaults applied at construction, so a partial file (or none at all)
yields a complete configuration without merging dictionaries at runtime.

Base path priority: explicit argument (--data-dir) > NBVAULT_BASE_PATH > ~/.nbvault
NBVAULT_UPLOAD_PATH overrides storage.uploads_dir.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .backup.manifest import FORMAT_VERSION
from .backup.restore import RestoreFailurePolicy

DEFAULT_BASE_PATH = Path.home() / ".nbvault"
CONFIG_FILENAME = "config.yaml"

BASE_PATH_ENV = "NBVAULT_BASE_PATH"
UPLOAD_PATH_ENV = "NBVAULT_UPLOAD_PATH"

DEFAULT_CONFIG_TEMPLATE = """# nbvault configuration

storage:
  database_path: notebooks.sqlite   # relative paths resolve against the data dir
  uploads_dir: uploads

backup:
  # temp_dir: /var/tmp/nbvault      # default: system temp directory
  compression_level: 9             # 0-9, backups favor ratio over speed
  chunk_size: 65536

restore:
  failure_policy: abort            # abort | continue
  delete_uploaded_archive: true
"""


def get_base_path(explicit: Optional[Path] = None) -> Path:
    """Resolve the data directory: explicit > NBVAULT_BASE_PATH > default."""
    if explicit:
        return Path(explicit).expanduser()
    env_path = os.getenv(BASE_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_BASE_PATH


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "yes", "1", "on"):
        return True
    if isinstance(value, str) and value.lower() in ("false", "no", "0", "off"):
        return False
    raise ValueError(f"{key} must be a boolean, got {value!r}")


def _as_int(value: Any, key: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be an integer, got {value!r}")


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"{name} must be a mapping, got {section!r}")
    return section


def _resolve(base: Path, value: Any) -> Path:
    path = Path(str(value)).expanduser()
    return path if path.is_absolute() else base / path


@dataclass
class StorageConfig:
    database_path: Path = Path("notebooks.sqlite")
    uploads_dir: Path = Path("uploads")


@dataclass
class BackupConfig:
    temp_dir: Optional[Path] = None
    compression_level: int = 9
    chunk_size: int = 64 * 1024
    format_version: str = FORMAT_VERSION

    def __post_init__(self):
        if not 0 <= self.compression_level <= 9:
            raise ValueError("backup.compression_level must be between 0 and 9")
        if self.chunk_size <= 0:
            raise ValueError("backup.chunk_size must be positive")


@dataclass
class RestoreConfig:
    failure_policy: RestoreFailurePolicy = RestoreFailurePolicy.ABORT
    delete_uploaded_archive: bool = True


@dataclass
class NbVaultConfig:
    """Complete, typed configuration with absolute paths."""
    base_path: Path
    storage: StorageConfig = field(default_factory=StorageConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    restore: RestoreConfig = field(default_factory=RestoreConfig)

    @property
    def config_path(self) -> Path:
        return self.base_path / CONFIG_FILENAME

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], base_path: Path) -> "NbVaultConfig":
        """
        Build a config from parsed YAML. Unknown keys are ignored.

        Raises:
            ValueError: If a value has the wrong type or range
        """
        data = data or {}
        if not isinstance(data, dict):
            raise ValueError("config.yaml must contain a mapping")
        storage_data = _section(data, "storage")
        backup_data = _section(data, "backup")
        restore_data = _section(data, "restore")

        storage = StorageConfig(
            database_path=_resolve(base_path, storage_data.get("database_path", StorageConfig.database_path)),
            uploads_dir=_resolve(base_path, storage_data.get("uploads_dir", StorageConfig.uploads_dir)),
        )

        upload_override = os.getenv(UPLOAD_PATH_ENV)
        if upload_override:
            storage.uploads_dir = _resolve(base_path, upload_override)

        temp_dir = backup_data.get("temp_dir")
        backup = BackupConfig(
            temp_dir=_resolve(base_path, temp_dir) if temp_dir else None,
            compression_level=_as_int(
                backup_data.get("compression_level", BackupConfig.compression_level),
                "backup.compression_level",
            ),
            chunk_size=_as_int(backup_data.get("chunk_size", BackupConfig.chunk_size), "backup.chunk_size"),
            format_version=str(backup_data.get("format_version", FORMAT_VERSION)),
        )

        restore = RestoreConfig(
            failure_policy=RestoreFailurePolicy.from_value(
                restore_data.get("failure_policy", RestoreFailurePolicy.ABORT)
            ),
            delete_uploaded_archive=_as_bool(
                restore_data.get("delete_uploaded_archive", True),
                "restore.delete_uploaded_archive",
            ),
        )

        return cls(base_path=base_path, storage=storage, backup=backup, restore=restore)

    @classmethod
    def load(cls, base_path: Optional[Path] = None) -> "NbVaultConfig":
        """Load <base_path>/config.yaml; a missing file gives the defaults."""
        base = get_base_path(base_path)
        config_path = base / CONFIG_FILENAME
        data = None
        if config_path.exists():
            data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        return cls.from_dict(data, base)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "storage": {
                "database_path": str(self.storage.database_path),
                "uploads_dir": str(self.storage.uploads_dir),
            },
            "backup": {
                "temp_dir": str(self.backup.temp_dir) if self.backup.temp_dir else None,
                "compression_level": self.backup.compression_level,
                "chunk_size": self.backup.chunk_size,
                "format_version": self.backup.format_version,
            },
            "restore": {
                "failure_policy": self.restore.failure_policy.value,
                "delete_uploaded_archive": self.restore.delete_uploaded_archive,
            },
        }


def write_default_config(base_path: Path) -> Path:
    """Write config.yaml from the template unless one exists. Returns its path."""
    base_path.mkdir(parents=True, exist_ok=True)
    config_path = base_path / CONFIG_FILENAME
    if not config_path.exists():
        config_path.write_text(DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    return config_path
