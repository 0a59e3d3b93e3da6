"""Pytest fixtures for nbvault tests"""
import sys
import json
from pathlib import Path

import pytest

# Ensure nbvault is importable without an install
_SRC = Path(__file__).resolve().parent.parent / "src"
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

from nbvault.storage import WorkspaceStore  # noqa: E402
from nbvault.backup import BackupService  # noqa: E402


@pytest.fixture
def temp_root(tmp_path):
    """Private temp root, so tests can assert nothing is left behind."""
    root = tmp_path / "tmp"
    root.mkdir()
    return root


@pytest.fixture
def store(tmp_path):
    store = WorkspaceStore(tmp_path / "db" / "notebooks.sqlite", tmp_path / "uploads")
    yield store
    store.close()


@pytest.fixture
def target_store(tmp_path):
    """A second, independent store to restore into."""
    store = WorkspaceStore(tmp_path / "target" / "notebooks.sqlite", tmp_path / "target-uploads")
    yield store
    store.close()


@pytest.fixture
def service(store, temp_root):
    return BackupService(store, temp_root=temp_root)


@pytest.fixture
def populated_store(store):
    """
    Store with:
        folder "Research" containing folder "Papers"
        ws1 "Alpha" in Papers: one document, two notes, a vectors file
        ws2 "Beta" at top level: one document, no notes, no vectors
    """
    research = store.create_folder("Research")
    papers = store.create_folder("Papers", parent_id=research.id)

    alpha = store.create_workspace("Alpha", folder_id=papers.id, description="first")
    store.add_document(alpha.id, "paper.pdf", b"%PDF-1.4 alpha", mime_type="application/pdf",
                       text_content="alpha text")
    store.add_note(alpha.id, "Summary", "Alpha summary")
    store.add_note(alpha.id, "Todo", "Read more")
    vectors = store.blob_subtree(alpha.id, "vectors")
    vectors.mkdir(parents=True)
    (vectors / "index.bin").write_bytes(bytes(range(256)))
    (vectors / "empty").mkdir()

    beta = store.create_workspace("Beta")
    store.add_document(beta.id, "data.csv", b"a,b\n1,2\n", mime_type="text/csv")

    return {
        "store": store,
        "alpha": alpha,
        "beta": beta,
        "research": research,
        "papers": papers,
    }


def legacy_payload(*titles):
    return json.dumps({"notes": [{"title": t} for t in titles]})


def blob_snapshot(root: Path):
    """{relative path: bytes or None for directories} for a whole tree."""
    if not root.exists():
        return {}
    return {
        p.relative_to(root).as_posix(): (p.read_bytes() if p.is_file() else None)
        for p in sorted(root.rglob("*"))
    }
