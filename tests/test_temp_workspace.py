"""
Tests for TempWorkspace.

Covers:
- Unique, prefixed directory per acquire
- Idempotent release and context-manager cleanup
- Live-directory registry
- Sweeping stale directories without touching held ones
"""

import os
import time

import pytest

from nbvault.backup.temp_workspace import TempWorkspace, live_directories


class TestAcquireRelease:

    def test_acquire_creates_prefixed_directory(self, temp_root):
        temp = TempWorkspace("backup", temp_root)
        path = temp.acquire()
        try:
            assert path.is_dir()
            assert path.parent == temp_root
            assert path.name.startswith("nbvault-backup-")
            assert temp.acquired
            assert temp.path == path
        finally:
            temp.release()

    def test_two_workspaces_never_share_a_directory(self, temp_root):
        first = TempWorkspace("restore", temp_root)
        second = TempWorkspace("restore", temp_root)
        try:
            assert first.acquire() != second.acquire()
        finally:
            first.release()
            second.release()

    def test_release_removes_tree_and_is_idempotent(self, temp_root):
        temp = TempWorkspace("backup", temp_root)
        path = temp.acquire()
        (path / "nested").mkdir()
        (path / "nested" / "file.txt").write_text("data")

        assert temp.release() is True
        assert not path.exists()
        assert temp.release() is True
        assert not temp.acquired

    def test_release_before_acquire_is_a_no_op(self, temp_root):
        assert TempWorkspace("backup", temp_root).release() is True

    def test_path_before_acquire_raises(self, temp_root):
        with pytest.raises(RuntimeError):
            TempWorkspace("backup", temp_root).path

    def test_double_acquire_raises(self, temp_root):
        temp = TempWorkspace("backup", temp_root)
        temp.acquire()
        try:
            with pytest.raises(RuntimeError):
                temp.acquire()
        finally:
            temp.release()

    def test_context_manager_cleans_up_on_error(self, temp_root):
        with pytest.raises(ValueError):
            with TempWorkspace("restore", temp_root) as path:
                (path / "partial.bin").write_bytes(b"\x00" * 10)
                raise ValueError("boom")
        assert list(temp_root.iterdir()) == []

    def test_live_directories_tracks_held_paths(self, temp_root):
        temp = TempWorkspace("backup", temp_root)
        path = temp.acquire()
        assert path in live_directories()
        temp.release()
        assert path not in live_directories()


class TestSweepStale:

    def _age(self, path, hours):
        old = time.time() - hours * 3600
        os.utime(path, (old, old))

    def test_sweep_removes_old_prefixed_directories(self, temp_root):
        stale = temp_root / "nbvault-backup-deadbeefdeadbeef"
        stale.mkdir()
        (stale / "backup.zip").write_bytes(b"zip")
        self._age(stale, 48)

        assert TempWorkspace.sweep_stale(temp_root, older_than_hours=24) == 1
        assert not stale.exists()

    def test_sweep_keeps_recent_and_foreign_directories(self, temp_root):
        recent = temp_root / "nbvault-restore-0123456789abcdef"
        recent.mkdir()
        foreign = temp_root / "other-app-dir"
        foreign.mkdir()
        self._age(foreign, 48)

        assert TempWorkspace.sweep_stale(temp_root, older_than_hours=24) == 0
        assert recent.exists()
        assert foreign.exists()

    def test_sweep_skips_directories_held_by_this_process(self, temp_root):
        temp = TempWorkspace("backup", temp_root)
        path = temp.acquire()
        try:
            self._age(path, 48)
            assert TempWorkspace.sweep_stale(temp_root, older_than_hours=1) == 0
            assert path.exists()
        finally:
            temp.release()

    def test_sweep_on_missing_root(self, tmp_path):
        assert TempWorkspace.sweep_stale(tmp_path / "does-not-exist") == 0
