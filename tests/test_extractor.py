"""Tests for ArchiveExtractor validation."""

import json
import zipfile

import pytest

from nbvault.backup import ArchiveExtractor, ArchiveValidationError


def write_zip(path, files):
    """files: {arcname: str | bytes}"""
    with zipfile.ZipFile(path, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return path


def manifest_json(*ids, version="1.0"):
    return json.dumps({
        "formatVersion": version,
        "createdAt": "2024-01-01T00:00:00Z",
        "workspaceIds": list(ids),
    })


class TestExtract:

    def test_valid_archive(self, tmp_path, temp_root):
        archive = write_zip(tmp_path / "ok.zip", {
            "manifest.json": manifest_json("ws1"),
            "ws1/metadata.json": json.dumps({"id": "ws1", "title": "T"}),
        })

        with ArchiveExtractor(temp_root).extract(archive) as extracted:
            assert extracted.manifest.workspace_ids == ["ws1"]
            assert (extracted.workspace_dir("ws1") / "metadata.json").is_file()
            assert extracted.root.parent == temp_root

        assert list(temp_root.iterdir()) == []

    def test_legacy_manifest(self, tmp_path, temp_root):
        archive = write_zip(tmp_path / "legacy.zip", {
            "backup_manifest.json": json.dumps({
                "backupVersion": "1.0",
                "createdAt": "2023-01-01T00:00:00.000Z",
                "notebooks": ["nb"],
            }),
            "nb/metadata.json": json.dumps({"id": "nb", "title": "Old"}),
        })

        with ArchiveExtractor(temp_root).extract(archive) as extracted:
            assert extracted.manifest.workspace_ids == ["nb"]

    def test_missing_file(self, tmp_path, temp_root):
        with pytest.raises(FileNotFoundError):
            ArchiveExtractor(temp_root).extract(tmp_path / "nope.zip")
        assert list(temp_root.iterdir()) == []


class TestRejection:

    def _assert_rejected(self, archive, temp_root, match=None):
        with pytest.raises(ArchiveValidationError, match=match):
            ArchiveExtractor(temp_root).extract(archive)
        assert list(temp_root.iterdir()) == []

    def test_not_a_zip(self, tmp_path, temp_root):
        archive = tmp_path / "bad.zip"
        archive.write_bytes(b"this is not a zip file")
        self._assert_rejected(archive, temp_root, "not a zip")

    def test_missing_manifest(self, tmp_path, temp_root):
        archive = write_zip(tmp_path / "m.zip", {"ws1/metadata.json": "{}"})
        self._assert_rejected(archive, temp_root, "manifest.json not found")

    def test_path_traversal(self, tmp_path, temp_root):
        archive = write_zip(tmp_path / "slip.zip", {
            "manifest.json": manifest_json("ws1"),
            "ws1/metadata.json": "{}",
            "../../escaped.txt": "gotcha",
        })
        self._assert_rejected(archive, temp_root, "path traversal")
        assert not (tmp_path / "escaped.txt").exists()

    def test_directory_missing_for_listed_id(self, tmp_path, temp_root):
        archive = write_zip(tmp_path / "d.zip", {
            "manifest.json": manifest_json("ws1", "ws2"),
            "ws1/metadata.json": "{}",
        })
        self._assert_rejected(archive, temp_root, "missing directories for ws2")

    def test_unlisted_directory(self, tmp_path, temp_root):
        archive = write_zip(tmp_path / "u.zip", {
            "manifest.json": manifest_json("ws1"),
            "ws1/metadata.json": "{}",
            "intruder/metadata.json": "{}",
        })
        self._assert_rejected(archive, temp_root, "unlisted directories intruder")

    def test_unsupported_version(self, tmp_path, temp_root):
        archive = write_zip(tmp_path / "v.zip", {
            "manifest.json": manifest_json("ws1", version="2.0"),
            "ws1/metadata.json": "{}",
        })
        self._assert_rejected(archive, temp_root, "Unsupported")

    def test_corrupted_member_data(self, tmp_path, temp_root):
        archive = tmp_path / "corrupt.zip"
        with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            zf.writestr("manifest.json", manifest_json("ws1"))
            zf.writestr("ws1/metadata.json", json.dumps({"id": "ws1", "title": "x" * 4000}))
            info = zf.getinfo("ws1/metadata.json")

        # Flip bytes inside the compressed data, leaving the central directory intact
        raw = bytearray(archive.read_bytes())
        header = info.header_offset
        name_len = int.from_bytes(raw[header + 26:header + 28], "little")
        extra_len = int.from_bytes(raw[header + 28:header + 30], "little")
        start = header + 30 + name_len + extra_len
        for i in range(start, start + min(20, info.compress_size)):
            raw[i] ^= 0xFF
        archive.write_bytes(bytes(raw))

        self._assert_rejected(archive, temp_root, "Invalid backup file")
