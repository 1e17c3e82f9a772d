from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from mdnotes.blocks import blocks_db
from mdnotes.blocks.blocks_integrity import check_page_tree
from mdnotes.blocks.blocks_models import Page
from mdnotes.notes_db import NotesDB


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Ensure tests never touch the real data directory."""
    data_dir = tmp_path / "mdnotes-data"
    monkeypatch.setenv("MDNOTES_DATA_DIR", str(data_dir))
    return data_dir


@pytest.fixture
def store(tmp_path: Path) -> Iterator[NotesDB]:
    """A fresh notes database in a temp file."""
    db = NotesDB(tmp_path / "notes.db")
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def page(store: NotesDB) -> Page:
    """A page holding only its initial empty block."""
    return blocks_db.create_page(store, "Test Page")


@pytest.fixture
def structural_issues():
    """Check a page, ignoring position gaps left by deferred normalization."""

    def _check(store: NotesDB, page_id: str) -> list:
        return [i for i in check_page_tree(store, page_id) if i.kind != "positions"]

    return _check
