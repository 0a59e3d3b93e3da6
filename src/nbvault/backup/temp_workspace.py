"""
Temporary working directories for backup and restore.

Every archive operation gets its own uniquely named directory under the temp
root. The directory is removed when the operation releases it, and any
directory still held when the interpreter exits is removed by an atexit hook.
Directories orphaned by a killed process are collected by sweep_stale().
"""

import atexit
import logging
import secrets
import shutil
import tempfile
import threading
import time
from pathlib import Path
from typing import Optional, Set, Union

logger = logging.getLogger(__name__)

DIR_PREFIX = "nbvault"

# Directories acquired by this process and not yet released
_live_dirs: Set[Path] = set()
_live_lock = threading.Lock()


def _remove_tree(path: Path) -> bool:
    """Remove a directory tree, logging instead of raising. Returns success."""
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return True
    except OSError as e:
        logger.warning(f"Failed to remove temporary directory {path}: {e}")
        return False
    return True


def _release_live_dirs() -> None:
    with _live_lock:
        pending = list(_live_dirs)
        _live_dirs.clear()
    for path in pending:
        logger.info(f"Removing temporary directory left at exit: {path}")
        _remove_tree(path)


atexit.register(_release_live_dirs)


def live_directories() -> Set[Path]:
    """Snapshot of directories currently held by this process."""
    with _live_lock:
        return set(_live_dirs)


class TempWorkspace:
    """
    TempWorkspace - one ephemeral directory per archive operation

    Pattern: acquire() / release(), or use as a context manager
    Lifetime: From acquire() until release(); release is idempotent and never
    raises, so it cannot mask the operation's own result

    Example:
        with TempWorkspace("restore") as work_dir:
            extract_into(work_dir)
    """

    def __init__(self, purpose: str = "backup", root: Optional[Union[str, Path]] = None):
        """
        Args:
            purpose: Short label embedded in the directory name (backup|restore)
            root: Parent directory (default: the system temp directory)
        """
        self.root = Path(root) if root else Path(tempfile.gettempdir())
        self.prefix = f"{DIR_PREFIX}-{purpose}-"
        self._path: Optional[Path] = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        if self._path is None:
            raise RuntimeError("TempWorkspace has not been acquired")
        return self._path

    @property
    def acquired(self) -> bool:
        return self._path is not None

    def acquire(self) -> Path:
        """
        Create the directory.

        Returns:
            Path to the new, empty directory

        Raises:
            RuntimeError: If already acquired
            OSError: If the directory cannot be created
        """
        with self._lock:
            if self._path is not None:
                raise RuntimeError(f"TempWorkspace already acquired: {self._path}")

            self.root.mkdir(parents=True, exist_ok=True)
            for _ in range(8):
                candidate = self.root / f"{self.prefix}{secrets.token_hex(8)}"
                try:
                    candidate.mkdir()
                except FileExistsError:
                    continue
                break
            else:
                raise OSError(f"Could not allocate a unique directory under {self.root}")

            self._path = candidate
            with _live_lock:
                _live_dirs.add(candidate)

        logger.debug(f"Acquired temporary directory {candidate}")
        return candidate

    def release(self) -> bool:
        """
        Remove the directory tree.

        Returns:
            True if the directory is gone (or was never acquired), False if
            removal failed. Failures are logged, never raised.
        """
        with self._lock:
            path = self._path
            self._path = None

        if path is None:
            return True

        with _live_lock:
            _live_dirs.discard(path)

        removed = _remove_tree(path)
        if removed:
            logger.debug(f"Released temporary directory {path}")
        return removed

    def __enter__(self) -> Path:
        return self.acquire()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False

    def __repr__(self) -> str:
        return f"TempWorkspace(prefix={self.prefix!r}, path={self._path})"

    @classmethod
    def sweep_stale(cls,
                    root: Optional[Union[str, Path]] = None,
                    older_than_hours: float = 24.0) -> int:
        """
        Delete abandoned directories left behind by processes that were killed.

        Only directories carrying our prefix, older than the threshold and not
        held by this process are removed.

        Returns:
            Number of deleted directories.
        """
        base = Path(root) if root else Path(tempfile.gettempdir())
        if not base.exists():
            return 0

        cutoff = time.time() - max(0.0, older_than_hours) * 3600.0
        held = live_directories()
        deleted = 0

        for child in base.iterdir():
            if not child.is_dir() or not child.name.startswith(f"{DIR_PREFIX}-"):
                continue
            if child in held:
                continue
            try:
                mtime = child.stat().st_mtime
            except OSError:
                continue
            if mtime > cutoff:
                continue
            if _remove_tree(child):
                deleted += 1
                logger.info(f"Swept stale temporary directory {child}")

        return deleted
