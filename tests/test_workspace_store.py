"""
Tests for WorkspaceStore.

Covers:
- Id-preserving inserts and round trips through the models
- Transactions: commit, rollback, nesting
- Blob trees and id validation
"""

import sqlite3
from datetime import datetime, timezone

import pytest

from nbvault.storage import Document, Folder, Note, Workspace, WorkspaceNotFoundError


class TestFoldersAndWorkspaces:

    def test_insert_folder_keeps_id(self, store):
        folder = Folder(id="f1", name="Projects")
        store.insert_folder(folder)

        assert store.folder_exists("f1")
        assert store.get_folder("f1") == folder

    @pytest.mark.parametrize("data", [
        {"id": 5, "name": "F"},
        {"id": "", "name": "F"},
        {"id": "f1", "name": "F", "parentId": 7},
    ])
    def test_folder_from_dict_rejects_bad_ids(self, data):
        with pytest.raises(ValueError):
            Folder.from_dict(data)

    def test_set_folder_parent(self, store):
        store.insert_folder(Folder(id="parent", name="P"))
        store.insert_folder(Folder(id="child", name="C"))

        assert store.set_folder_parent("child", "parent") is True
        assert store.get_folder("child").parent_id == "parent"

    def test_workspace_round_trip(self, store):
        created = datetime(2024, 3, 1, 8, 0, 0, 123456, tzinfo=timezone.utc)
        workspace = Workspace(id="ws1", title="T", description="d", is_pinned=True,
                              created_at=created)
        store.insert_workspace(workspace)

        assert store.get_workspace("ws1") == workspace
        assert store.list_workspaces() == [workspace]

    def test_delete_missing_workspace_raises(self, store):
        with pytest.raises(WorkspaceNotFoundError) as exc_info:
            store.delete_workspace("ghost")
        assert exc_info.value.workspace_id == "ghost"

    def test_deleting_a_folder_clears_references(self, store):
        folder = store.create_folder("F")
        workspace = store.create_workspace("W", folder_id=folder.id)
        store._execute("DELETE FROM folders WHERE id = ?", (folder.id,))

        assert store.get_workspace(workspace.id).folder_id is None

    @pytest.mark.parametrize("bad_id", ["", ".", "..", "a/b", "a\\b", "a\x00b"])
    def test_unsafe_ids_are_rejected(self, store, bad_id):
        with pytest.raises(ValueError):
            store.insert_workspace(Workspace(id=bad_id, title="x"))


class TestDocumentsAndNotes:

    def test_add_document_writes_blob(self, store):
        workspace = store.create_workspace("W")
        document = store.add_document(workspace.id, "report.pdf", b"pdf bytes",
                                      mime_type="application/pdf")

        blob = store.uploads_dir / document.file_path
        assert blob.read_bytes() == b"pdf bytes"
        assert blob.parent == store.blob_subtree(workspace.id, "documents")
        assert store.list_documents(workspace.id) == [document]

    def test_insert_documents_keeps_ids(self, store):
        store.insert_workspace(Workspace(id="ws1", title="W"))
        docs = [
            Document(id="d1", workspace_id="ws1", file_name="a.txt", size_bytes=1, status="COMPLETED"),
            Document(id="d2", workspace_id="ws1", file_name="b.txt", is_vectorized=True),
        ]

        assert store.insert_documents(docs) == 2
        assert {d.id for d in store.list_documents("ws1")} == {"d1", "d2"}
        assert store.insert_documents([]) == 0

    def test_add_note_mirrors_markdown(self, store):
        workspace = store.create_workspace("W")
        note = store.add_note(workspace.id, "Title", "Body")

        markdown = store.blob_subtree(workspace.id, "notes") / f"{note.id}.md"
        assert markdown.read_text() == "# Title\n\nBody\n"
        assert store.list_notes(workspace.id) == [note]

    def test_delete_counts(self, store):
        workspace = store.create_workspace("W")
        store.add_document(workspace.id, "a.txt", b"a")
        store.add_note(workspace.id, "n", "c", write_markdown=False)
        store.add_note(workspace.id, "m", "c", write_markdown=False)

        assert store.delete_notes(workspace.id) == 2
        assert store.delete_documents(workspace.id) == 1
        assert store.delete_notes(workspace.id) == 0

    def test_document_from_legacy_keys(self):
        document = Document.from_dict({
            "id": "d1", "notebookId": "nb", "fileName": "x", "fileSize": 12,
            "createdAt": "2024-01-01T00:00:00Z",
        })
        assert document.workspace_id == "nb"
        assert document.size_bytes == 12
        assert document.created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestTransactions:

    def test_commit(self, store):
        with store.transaction():
            store.insert_workspace(Workspace(id="ws1", title="W"))
            store.insert_notes([Note(id="n1", workspace_id="ws1", title="t")])

        assert store.get_workspace("ws1") is not None
        assert len(store.list_notes("ws1")) == 1

    def test_rollback_on_error(self, store):
        with pytest.raises(sqlite3.IntegrityError):
            with store.transaction():
                store.insert_workspace(Workspace(id="ws1", title="W"))
                store.insert_workspace(Workspace(id="ws1", title="duplicate"))

        assert store.get_workspace("ws1") is None

    def test_nested_transaction_joins_outer(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.insert_workspace(Workspace(id="ws1", title="W"))
                with store.transaction():
                    store.insert_workspace(Workspace(id="ws2", title="W"))
                raise RuntimeError("abort everything")

        assert store.list_workspaces() == []


class TestBlobTrees:

    def test_remove_blob_tree(self, store):
        workspace = store.create_workspace("W")
        store.add_document(workspace.id, "a.txt", b"a")

        assert store.remove_blob_tree(workspace.id) is True
        assert not store.blob_root(workspace.id).exists()
        assert store.remove_blob_tree(workspace.id) is False

    def test_unknown_subtree(self, store):
        with pytest.raises(ValueError):
            store.blob_subtree("ws1", "secrets")
