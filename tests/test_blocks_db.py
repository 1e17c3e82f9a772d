"""Tests for blocks_db.py - Page and block CRUD.

Tests:
- Page creation, lookup, update and deletion
- Block creation with parent/child bookkeeping
- Block updates and properties
- Cascade delete
"""

from __future__ import annotations

import pytest

from mdnotes.blocks import blocks_db
from mdnotes.blocks.blocks_models import BlockType, Page
from mdnotes.errors import InvalidOperationError, NotFoundError, ValidationError
from mdnotes.notes_db import NotesDB
from mdnotes.settings import settings


# =============================================================================
# Page Tests
# =============================================================================


class TestPages:
    """Test page CRUD."""

    def test_create_page_has_initial_block(self, store: NotesDB) -> None:
        """A new page starts with one empty root text block."""
        page = blocks_db.create_page(store, "Notes")

        blocks = blocks_db.get_page_blocks(store, page.id)
        assert len(blocks) == 1
        assert blocks[0].type == BlockType.TEXT
        assert blocks[0].content == ""
        assert blocks[0].parent_id is None
        assert blocks[0].position == 0

    def test_create_page_ids_and_defaults(self, store: NotesDB) -> None:
        """Pages get prefixed ids and default title/icon."""
        page = blocks_db.create_page(store)

        assert page.id.startswith("page-")
        assert page.title == settings.default_page_title
        assert page.icon == settings.default_page_icon
        assert page.is_favorite is False
        assert page.created_at == page.updated_at

    def test_create_page_unknown_parent(self, store: NotesDB) -> None:
        """Nesting under a missing page fails."""
        with pytest.raises(NotFoundError):
            blocks_db.create_page(store, "Child", parent_id="page-missing")

    def test_get_page(self, store: NotesDB, page: Page) -> None:
        """get_page returns the stored page or None."""
        loaded = blocks_db.get_page(store, page.id)

        assert loaded == page
        assert blocks_db.get_page(store, "page-missing") is None

    def test_require_page_raises(self, store: NotesDB) -> None:
        """require_page raises NotFoundError for unknown ids."""
        with pytest.raises(NotFoundError) as exc_info:
            blocks_db.require_page(store, "page-missing")

        assert exc_info.value.resource_type == "page"

    def test_list_pages(self, store: NotesDB) -> None:
        """list_pages returns all pages, or only favorites."""
        first = blocks_db.create_page(store, "First")
        second = blocks_db.create_page(store, "Second")
        blocks_db.set_favorite(store, second.id)

        assert {p.id for p in blocks_db.list_pages(store)} == {first.id, second.id}
        assert [p.id for p in blocks_db.list_pages(store, favorites_only=True)] == [second.id]

    def test_list_child_pages(self, store: NotesDB) -> None:
        """Child pages are listed under their parent."""
        parent = blocks_db.create_page(store, "Parent")
        child = blocks_db.create_page(store, "Child", parent_id=parent.id)

        assert [p.id for p in blocks_db.list_child_pages(store, parent.id)] == [child.id]
        assert [p.id for p in blocks_db.list_child_pages(store, None)] == [parent.id]

    def test_update_page_fields(self, store: NotesDB, page: Page) -> None:
        """Only the given fields change."""
        updated = blocks_db.update_page(store, page.id, title="Renamed", cover_image="cover.png")

        assert updated.title == "Renamed"
        assert updated.cover_image == "cover.png"
        assert updated.icon == page.icon

    def test_update_page_parent(self, store: NotesDB, page: Page) -> None:
        """A page can be moved under another page and back to the top."""
        other = blocks_db.create_page(store, "Other")

        moved = blocks_db.update_page(store, page.id, parent_id=other.id)
        assert moved.parent_id == other.id

        top = blocks_db.update_page(store, page.id, parent_id=None)
        assert top.parent_id is None

    def test_update_page_parent_cycle(self, store: NotesDB) -> None:
        """A page cannot be nested under its own subpage."""
        parent = blocks_db.create_page(store, "Parent")
        child = blocks_db.create_page(store, "Child", parent_id=parent.id)

        with pytest.raises(InvalidOperationError):
            blocks_db.update_page(store, parent.id, parent_id=child.id)
        with pytest.raises(InvalidOperationError):
            blocks_db.update_page(store, parent.id, parent_id=parent.id)

    def test_update_missing_page(self, store: NotesDB) -> None:
        """Updating an unknown page raises NotFoundError."""
        with pytest.raises(NotFoundError):
            blocks_db.update_page(store, "page-missing", title="X")

    def test_delete_page_cascades_blocks(self, store: NotesDB, page: Page) -> None:
        """Deleting a page deletes all of its blocks."""
        root = blocks_db.create_block(store, page_id=page.id, content="root")
        blocks_db.create_block(store, page_id=page.id, parent_id=root.id, content="child")

        assert blocks_db.delete_page(store, page.id) is True

        assert blocks_db.get_page(store, page.id) is None
        assert blocks_db.get_all_page_blocks(store, page.id) == []
        assert blocks_db.get_block(store, root.id) is None

    def test_delete_page_not_found(self, store: NotesDB) -> None:
        """Deleting an unknown page returns False."""
        assert blocks_db.delete_page(store, "page-missing") is False

    def test_delete_page_keeps_subpages(self, store: NotesDB) -> None:
        """Subpages survive their parent and move to the top level."""
        parent = blocks_db.create_page(store, "Parent")
        child = blocks_db.create_page(store, "Child", parent_id=parent.id)

        blocks_db.delete_page(store, parent.id)

        survivor = blocks_db.get_page(store, child.id)
        assert survivor is not None
        assert survivor.parent_id is None


# =============================================================================
# Block Creation Tests
# =============================================================================


class TestCreateBlock:
    """Test block creation."""

    def test_appends_after_last_sibling(self, store: NotesDB, page: Page) -> None:
        """Without a position the block goes after the last sibling."""
        block = blocks_db.create_block(store, page_id=page.id, type="h1", content="Title")

        assert block.id.startswith("block-")
        assert block.position == 1
        assert block.type == BlockType.H1
        assert [b.content for b in blocks_db.get_page_blocks(store, page.id)] == ["", "Title"]

    def test_explicit_position_does_not_shift_siblings(self, store: NotesDB, page: Page) -> None:
        """The store never renumbers existing siblings."""
        first = blocks_db.get_page_blocks(store, page.id)[0]
        blocks_db.create_block(store, page_id=page.id, content="also zero", position=0)

        assert blocks_db.require_block(store, first.id).position == 0

    def test_child_registered_with_parent(self, store: NotesDB, page: Page) -> None:
        """Creating under a parent adds the id to the parent's child_ids."""
        parent = blocks_db.create_block(store, page_id=page.id, type="bullet", content="parent")
        c1 = blocks_db.create_block(store, page_id=page.id, parent_id=parent.id, content="one")
        c2 = blocks_db.create_block(store, page_id=page.id, parent_id=parent.id, content="two")

        assert blocks_db.require_block(store, parent.id).child_ids == [c1.id, c2.id]
        assert (c1.position, c2.position) == (0, 1)

    def test_child_inserted_at_position(self, store: NotesDB, page: Page) -> None:
        """An explicit position decides where the id goes in child_ids."""
        parent = blocks_db.create_block(store, page_id=page.id, content="parent")
        c1 = blocks_db.create_block(store, page_id=page.id, parent_id=parent.id, content="one")
        c2 = blocks_db.create_block(store, page_id=page.id, parent_id=parent.id, content="two")
        c0 = blocks_db.create_block(
            store, page_id=page.id, parent_id=parent.id, content="zero", position=0
        )

        assert blocks_db.require_block(store, parent.id).child_ids == [c0.id, c1.id, c2.id]
        children = blocks_db.get_child_blocks(store, parent.id)
        assert [c.id for c in children] == [c0.id, c1.id, c2.id]

    def test_with_properties(self, store: NotesDB, page: Page) -> None:
        """Properties are stored and loaded back."""
        block = blocks_db.create_block(
            store, page_id=page.id, type=BlockType.TODO, content="task", properties={"checked": True}
        )

        loaded = blocks_db.require_block(store, block.id)
        assert loaded.properties == {"checked": True}
        assert loaded.checked is True

    def test_unknown_type(self, store: NotesDB, page: Page) -> None:
        """Unknown block types are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            blocks_db.create_block(store, page_id=page.id, type="h7")

        assert exc_info.value.field == "type"

    def test_negative_position(self, store: NotesDB, page: Page) -> None:
        """Negative positions are rejected."""
        with pytest.raises(ValidationError):
            blocks_db.create_block(store, page_id=page.id, position=-1)

    def test_unknown_page(self, store: NotesDB) -> None:
        """Creating on a missing page fails."""
        with pytest.raises(NotFoundError):
            blocks_db.create_block(store, page_id="page-missing")

    def test_unknown_parent(self, store: NotesDB, page: Page) -> None:
        """Creating under a missing parent fails and writes nothing."""
        with pytest.raises(NotFoundError):
            blocks_db.create_block(store, page_id=page.id, parent_id="block-missing")

        assert len(blocks_db.get_all_page_blocks(store, page.id)) == 1

    def test_parent_on_other_page(self, store: NotesDB, page: Page) -> None:
        """A block cannot be nested under a block of another page."""
        other = blocks_db.create_page(store, "Other")
        foreign = blocks_db.get_page_blocks(store, other.id)[0]

        with pytest.raises(InvalidOperationError):
            blocks_db.create_block(store, page_id=page.id, parent_id=foreign.id)


# =============================================================================
# Block Query and Update Tests
# =============================================================================


class TestQueryAndUpdate:
    """Test block queries and updates."""

    def test_get_block_missing(self, store: NotesDB) -> None:
        """get_block returns None, require_block raises."""
        assert blocks_db.get_block(store, "block-missing") is None
        with pytest.raises(NotFoundError):
            blocks_db.require_block(store, "block-missing")

    def test_get_all_page_blocks(self, store: NotesDB, page: Page) -> None:
        """All blocks of the page are returned, nested ones included."""
        root = blocks_db.create_block(store, page_id=page.id, content="root")
        blocks_db.create_block(store, page_id=page.id, parent_id=root.id, content="child")

        assert len(blocks_db.get_page_blocks(store, page.id)) == 2
        assert len(blocks_db.get_all_page_blocks(store, page.id)) == 3

    def test_update_content_stamps_updated_at(
        self, store: NotesDB, page: Page, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Updates set updated_at to the current time."""
        block = blocks_db.get_page_blocks(store, page.id)[0]
        monkeypatch.setattr(blocks_db, "_now_iso", lambda: "2030-01-01T00:00:00+00:00")

        updated = blocks_db.update_block_content(store, block.id, "changed")

        assert updated.content == "changed"
        assert updated.updated_at == "2030-01-01T00:00:00+00:00"
        assert updated.created_at == block.created_at

    def test_update_type(self, store: NotesDB, page: Page) -> None:
        """The type can change while content is kept."""
        block = blocks_db.create_block(store, page_id=page.id, content="heading")

        updated = blocks_db.update_block_type(store, block.id, "h2")

        assert updated.type == BlockType.H2
        assert updated.content == "heading"

    def test_update_type_invalid(self, store: NotesDB, page: Page) -> None:
        """An unknown type is rejected."""
        block = blocks_db.get_page_blocks(store, page.id)[0]

        with pytest.raises(ValidationError):
            blocks_db.update_block_type(store, block.id, "table")

    def test_update_missing_block(self, store: NotesDB) -> None:
        """Updating an unknown block raises NotFoundError."""
        with pytest.raises(NotFoundError):
            blocks_db.update_block(store, "block-missing", content="x")

    def test_update_merges_properties(self, store: NotesDB, page: Page) -> None:
        """New properties are merged with the existing ones."""
        block = blocks_db.create_block(
            store, page_id=page.id, type="code", properties={"language": "python"}
        )

        updated = blocks_db.update_block(store, block.id, properties={"wrap": False})

        assert updated.properties == {"language": "python", "wrap": False}

    def test_block_property_helpers(self, store: NotesDB, page: Page) -> None:
        """set_block_property / get_block_property round a single key."""
        block = blocks_db.create_block(store, page_id=page.id, type="todo", content="task")

        assert blocks_db.get_block_property(store, block.id, "checked", False) is False
        blocks_db.set_block_property(store, block.id, "checked", True)
        assert blocks_db.get_block_property(store, block.id, "checked") is True


# =============================================================================
# Delete Tests
# =============================================================================


class TestDeleteBlock:
    """Test block deletion."""

    def test_cascade_two_levels(self, store: NotesDB, page: Page) -> None:
        """Deleting a block removes its children and grandchildren."""
        a = blocks_db.create_block(store, page_id=page.id, content="a")
        b = blocks_db.create_block(store, page_id=page.id, parent_id=a.id, content="b")
        c = blocks_db.create_block(
            store, page_id=page.id, parent_id=b.id, content="c", properties={"k": 1}
        )

        assert blocks_db.delete_block(store, a.id) is True

        for block_id in (a.id, b.id, c.id):
            assert blocks_db.get_block(store, block_id) is None
        with store.reader() as conn:
            assert conn.execute("SELECT COUNT(*) FROM block_properties").fetchone()[0] == 0

    def test_removed_from_parent_child_ids(self, store: NotesDB, page: Page) -> None:
        """No dangling reference is left in the former parent."""
        a = blocks_db.create_block(store, page_id=page.id, content="a")
        b = blocks_db.create_block(store, page_id=page.id, parent_id=a.id, content="b")
        blocks_db.create_block(store, page_id=page.id, parent_id=b.id, content="c")
        keep = blocks_db.create_block(store, page_id=page.id, parent_id=a.id, content="keep")

        blocks_db.delete_block(store, b.id)

        assert blocks_db.require_block(store, a.id).child_ids == [keep.id]
        assert len(blocks_db.get_all_page_blocks(store, page.id)) == 3

    def test_delete_missing(self, store: NotesDB) -> None:
        """Deleting an unknown block returns False."""
        assert blocks_db.delete_block(store, "block-missing") is False
