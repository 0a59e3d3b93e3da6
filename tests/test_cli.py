"""Tests for the nbvault command line interface."""

import json
import zipfile

import pytest
from click.testing import CliRunner

from nbvault.cli import cli
from nbvault.config import NbVaultConfig
from nbvault.storage import WorkspaceStore


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def data_dir(tmp_path, runner, monkeypatch):
    """Initialized data directory with one notebook, temp files kept under it."""
    monkeypatch.delenv("NBVAULT_UPLOAD_PATH", raising=False)
    base = tmp_path / "data"
    result = runner.invoke(cli, ["--data-dir", str(base), "init"])
    assert result.exit_code == 0, result.output

    result = runner.invoke(cli, ["--data-dir", str(base), "config", "set", "backup.temp_dir", "tmp"])
    assert result.exit_code == 0, result.output
    return base


@pytest.fixture
def notebook(data_dir):
    config = NbVaultConfig.load(data_dir)
    with WorkspaceStore(config.storage.database_path, config.storage.uploads_dir) as store:
        workspace = store.create_workspace("CLI notebook")
        store.add_document(workspace.id, "a.txt", b"hello")
        store.add_note(workspace.id, "Note", "text")
    return workspace


def invoke(runner, data_dir, *args, quiet=False):
    options = ["-q"] if quiet else []
    return runner.invoke(cli, [*options, "--data-dir", str(data_dir), *args])


class TestInit:

    def test_init_creates_layout(self, tmp_path, runner):
        base = tmp_path / "fresh"
        result = runner.invoke(cli, ["--data-dir", str(base), "init"])

        assert result.exit_code == 0
        assert (base / "config.yaml").exists()
        assert (base / "notebooks.sqlite").exists()
        assert (base / "uploads").is_dir()
        assert "nbvault initialized" in result.output

    def test_init_twice_keeps_config(self, data_dir, runner):
        result = invoke(runner, data_dir, "init")
        assert result.exit_code == 0
        assert "Config exists" in result.output

    def test_commands_require_init(self, tmp_path, runner):
        result = runner.invoke(cli, ["--data-dir", str(tmp_path / "none"), "backup", "create", "ws1"])
        assert result.exit_code == 1

    def test_verbose_and_quiet_are_exclusive(self, runner, tmp_path):
        result = runner.invoke(cli, ["-v", "-q", "--data-dir", str(tmp_path), "init"])
        assert result.exit_code != 0


class TestBackupCommands:

    def test_create_then_restore(self, data_dir, notebook, runner, tmp_path):
        notes_file = tmp_path / "legacy.json"
        notes_file.write_text('{"notes":[1]}')
        archive = tmp_path / "out.zip"

        result = invoke(runner, data_dir, "backup", "create", notebook.id,
                        "--notes-file", f"{notebook.id}={notes_file}", "-o", str(archive))
        assert result.exit_code == 0, result.output
        assert "Backup created" in result.output
        with zipfile.ZipFile(archive) as zf:
            assert zf.read(f"{notebook.id}/notes.json") == b'{"notes":[1]}'

        result = invoke(runner, data_dir, "backup", "restore", str(archive),
                        "--keep-archive", "--json-output", quiet=True)
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["message"] == "Backup restored successfully."
        assert data["restoredPayloads"] == [{"workspaceId": notebook.id, "payload": '{"notes":[1]}'}]
        assert archive.exists()
        assert list((data_dir / "tmp").iterdir()) == []

    def test_restore_deletes_archive_by_default(self, data_dir, notebook, runner, tmp_path):
        archive = tmp_path / "out.zip"
        invoke(runner, data_dir, "backup", "create", notebook.id, "-o", str(archive))

        result = invoke(runner, data_dir, "backup", "restore", str(archive))

        assert result.exit_code == 0, result.output
        assert "Backup restored successfully." in result.output
        assert not archive.exists()

    def test_create_unknown_notebook(self, data_dir, runner, tmp_path):
        result = invoke(runner, data_dir, "backup", "create", "missing", "-o", str(tmp_path / "x.zip"))
        assert result.exit_code == 1
        assert not (tmp_path / "x.zip").exists()

    def test_notes_file_must_be_id_equals_path(self, data_dir, notebook, runner):
        result = invoke(runner, data_dir, "backup", "create", notebook.id, "--notes-file", "nonsense")
        assert result.exit_code == 1

    def test_restore_invalid_archive_exit_code(self, data_dir, runner, tmp_path):
        archive = tmp_path / "bad.zip"
        archive.write_bytes(b"not a zip")

        result = invoke(runner, data_dir, "backup", "restore", str(archive))

        assert result.exit_code == 2

    def test_restore_corrupted_archive_exit_code(self, data_dir, runner, tmp_path):
        archive = tmp_path / "corrupt.zip"
        with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            zf.writestr("manifest.json", json.dumps({
                "formatVersion": "1.0", "createdAt": "2024-01-01T00:00:00Z", "workspaceIds": ["ws1"],
            }))
            zf.writestr("ws1/metadata.json", json.dumps({"id": "ws1", "title": "x" * 4000}))
            info = zf.getinfo("ws1/metadata.json")
        raw = bytearray(archive.read_bytes())
        start = info.header_offset + 30 + len(info.filename.encode()) + len(info.extra)
        for i in range(start, start + 20):
            raw[i] ^= 0xFF
        archive.write_bytes(bytes(raw))

        result = invoke(runner, data_dir, "backup", "restore", str(archive))

        assert result.exit_code == 2
        assert "Invalid backup file" in result.output

    def test_aborted_restore_reports_committed_payloads(self, data_dir, runner, tmp_path):
        archive = tmp_path / "abort.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("manifest.json", json.dumps({
                "formatVersion": "1.0", "createdAt": "2024-01-01T00:00:00Z", "workspaceIds": ["good", "bad"],
            }))
            zf.writestr("good/metadata.json", json.dumps({"id": "good", "title": "Good"}))
            zf.writestr("good/notes.json", '{"notes":["kept"]}')
            zf.writestr("bad/metadata.json", json.dumps({"id": "bad", "title": "Bad"}))
            zf.writestr("bad/documents_meta.json", json.dumps({"not": "a list"}))

        result = invoke(runner, data_dir, "backup", "restore", str(archive), "--json-output", quiet=True)

        assert result.exit_code == 1
        # stderr (log line, error line) is mixed into the output around the JSON
        output = result.output
        data = json.loads(output[output.index("{\n"):output.rindex("}") + 1])
        assert data["restoredPayloads"] == [{"workspaceId": "good", "payload": '{"notes":["kept"]}'}]
        assert [w["workspaceId"] for w in data["workspaces"]] == ["good", "bad"]

    def test_inspect(self, data_dir, notebook, runner, tmp_path):
        archive = tmp_path / "out.zip"
        invoke(runner, data_dir, "backup", "create", notebook.id, "-o", str(archive))

        result = invoke(runner, data_dir, "backup", "inspect", str(archive), "--json-output", quiet=True)

        assert result.exit_code == 0, result.output
        manifest = json.loads(result.output)
        assert manifest["workspaceIds"] == [notebook.id]
        assert manifest["formatVersion"] == "1.0"
        assert archive.exists()

    def test_sweep(self, data_dir, runner):
        result = invoke(runner, data_dir, "backup", "sweep", "--older-than", "0")
        assert result.exit_code == 0
        assert "Removed 0 stale temporary directories" in result.output


class TestConfigCommands:

    def test_set_and_get(self, data_dir, runner):
        result = invoke(runner, data_dir, "config", "set", "restore.failure_policy", "continue")
        assert result.exit_code == 0

        result = invoke(runner, data_dir, "config", "get", "restore.failure_policy")
        assert result.output.strip() == "continue"

    def test_set_rejects_invalid_values(self, data_dir, runner):
        result = invoke(runner, data_dir, "config", "set", "backup.compression_level", "42")
        assert result.exit_code == 1

        result = invoke(runner, data_dir, "config", "get", "backup.compression_level")
        assert result.output.strip() == "9"

    def test_set_rejects_scalar_section(self, data_dir, runner):
        before = (data_dir / "config.yaml").read_text()

        result = invoke(runner, data_dir, "config", "set", "storage", "oops")

        assert result.exit_code == 1
        assert "storage must be a mapping" in result.output
        assert (data_dir / "config.yaml").read_text() == before

    def test_get_unknown_key(self, data_dir, runner):
        result = invoke(runner, data_dir, "config", "get", "backup.nope")
        assert result.exit_code == 1

    def test_show(self, data_dir, runner):
        result = invoke(runner, data_dir, "config", "show")
        assert result.exit_code == 0
        assert "failure_policy" in result.output
