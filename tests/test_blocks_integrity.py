"""Tests for blocks_integrity.py - tree checks and repair.

Run with: PYTHONPATH=src pytest tests/test_blocks_integrity.py -v
"""

from __future__ import annotations

import json

from mdnotes.blocks import blocks_db, blocks_tree
from mdnotes.blocks.blocks_integrity import Severity, check_database, check_page_tree, repair_page_tree
from mdnotes.blocks.blocks_models import Page
from mdnotes.notes_db import NotesDB


def _raw(store: NotesDB, sql: str, params: tuple = ()) -> None:
    with store.transaction() as conn:
        conn.execute(sql, params)


def _kinds(issues: list) -> set[str]:
    return {issue.kind for issue in issues}


def _two_level(store: NotesDB, page: Page) -> tuple[str, str]:
    """Root block A with child B."""
    a = blocks_db.get_page_blocks(store, page.id)[0]
    b = blocks_db.create_block(store, page_id=page.id, parent_id=a.id, content="B")
    return a.id, b.id


def test_fresh_page_is_clean(store: NotesDB, page: Page) -> None:
    """A new page has no issues."""
    assert check_page_tree(store, page.id) == []


def test_empty_page_reported(store: NotesDB, page: Page) -> None:
    """A page without blocks is reported as info only."""
    _raw(store, "DELETE FROM blocks WHERE page_id = ?", (page.id,))

    issues = check_page_tree(store, page.id)

    assert _kinds(issues) == {"empty_page"}
    assert issues[0].severity == Severity.INFO
    assert repair_page_tree(store, page.id) == issues


def test_missing_parent_detected_and_repaired(store: NotesDB, page: Page) -> None:
    """A block pointing at a missing parent moves to the root."""
    a, b = _two_level(store, page)
    _raw(store, "UPDATE blocks SET parent_id = 'block-gone' WHERE id = ?", (b,))

    issues = check_page_tree(store, page.id)
    assert "missing_parent" in _kinds(issues)
    assert any(i.severity == Severity.CRITICAL for i in issues)

    repair_page_tree(store, page.id)

    assert check_page_tree(store, page.id) == []
    repaired = blocks_db.require_block(store, b)
    assert repaired.parent_id is None
    assert repaired.position == 1
    assert blocks_db.require_block(store, a).child_ids == []


def test_unlisted_child_relinked(store: NotesDB, page: Page) -> None:
    """child_ids is rebuilt from parent_id."""
    a, b = _two_level(store, page)
    _raw(store, "UPDATE blocks SET child_ids = '[]' WHERE id = ?", (a,))

    assert _kinds(check_page_tree(store, page.id)) == {"unlisted_child"}

    repair_page_tree(store, page.id)

    assert blocks_db.require_block(store, a).child_ids == [b]
    assert check_page_tree(store, page.id) == []


def test_dangling_and_duplicate_child_ids(store: NotesDB, page: Page) -> None:
    """Unknown and repeated ids in child_ids are cleaned up."""
    a, b = _two_level(store, page)
    _raw(
        store,
        "UPDATE blocks SET child_ids = ? WHERE id = ?",
        (json.dumps([b, "block-ghost", b]), a),
    )

    assert _kinds(check_page_tree(store, page.id)) == {"dangling_child", "duplicate_child"}

    repair_page_tree(store, page.id)

    assert blocks_db.require_block(store, a).child_ids == [b]
    assert check_page_tree(store, page.id) == []


def test_cycle_broken(store: NotesDB, page: Page) -> None:
    """A parent cycle is cut and the tree becomes sound."""
    a = blocks_db.get_page_blocks(store, page.id)[0].id
    b = blocks_db.create_block(store, page_id=page.id, content="B").id
    _raw(store, "UPDATE blocks SET parent_id = ?, child_ids = ? WHERE id = ?", (b, json.dumps([b]), a))
    _raw(store, "UPDATE blocks SET parent_id = ?, child_ids = ? WHERE id = ?", (a, json.dumps([a]), b))

    issues = check_page_tree(store, page.id)
    assert [i.block_id for i in issues if i.kind == "cycle"] == sorted([a, b])

    repair_page_tree(store, page.id)

    assert check_page_tree(store, page.id) == []
    roots = blocks_db.get_page_blocks(store, page.id)
    assert [r.id for r in roots] == [a]
    assert roots[0].child_ids == [b]


def test_position_gaps_are_info(store: NotesDB, page: Page) -> None:
    """Gaps left by indenting are reported as info and renumbered by repair."""
    a = blocks_db.get_page_blocks(store, page.id)[0]
    b = blocks_db.create_block(store, page_id=page.id, content="B")
    c = blocks_db.create_block(store, page_id=page.id, content="C")
    blocks_tree.indent_block(store, b.id)

    issues = check_page_tree(store, page.id)
    assert _kinds(issues) == {"positions"}
    assert issues[0].severity == Severity.INFO

    repair_page_tree(store, page.id)

    assert check_page_tree(store, page.id) == []
    assert [x.id for x in blocks_db.get_page_blocks(store, page.id)] == [a.id, c.id]
    assert blocks_db.require_block(store, c.id).position == 1


def test_check_database_clean(store: NotesDB, page: Page) -> None:
    """A healthy database passes SQLite's own checks."""
    assert check_database(store) == []


def test_issue_to_dict(store: NotesDB, page: Page) -> None:
    """Issues serialize with a string severity."""
    a, _ = _two_level(store, page)
    _raw(store, "UPDATE blocks SET child_ids = '[]' WHERE id = ?", (a,))

    data = check_page_tree(store, page.id)[0].to_dict()

    assert data["kind"] == "unlisted_child"
    assert data["severity"] == "warning"
