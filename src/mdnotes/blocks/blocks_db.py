"""Database operations for pages and blocks.

This module provides the record-level CRUD for the block-based content
system. Every function takes the ``NotesDB`` to operate on as its first
argument; there is no module-level database.

The store does not renumber siblings. Callers that insert at an explicit
position are responsible for restoring a dense ``0..n-1`` sequence (see
``blocks_tree.reorder_blocks`` and ``blocks_tree.update_block_positions``).
It does keep ``child_ids`` and ``parent_id`` in agreement: creating a block
under a parent inserts it into the parent's ``child_ids`` and deleting a
block removes it from there.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from ..errors import InvalidOperationError, NotFoundError, ValidationError
from ..notes_db import NotesDB
from ..settings import settings
from .blocks_models import Block, BlockType, Page

logger = logging.getLogger(__name__)

_UNSET: Any = object()

_BLOCK_COLUMNS = "id, page_id, type, content, parent_id, child_ids, position, created_at, updated_at"

_PAGE_COLUMNS = "page_id, title, icon, cover_image, is_favorite, parent_page_id, created_at, updated_at"

# Siblings sharing a position: the most recently placed one comes first.
_SIBLING_ORDER = "ORDER BY position, placed_seq DESC"


def _now_iso() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


def _new_id(prefix: str) -> str:
    """Generate a new unique ID with prefix."""
    return f"{prefix}-{uuid4().hex[:12]}"


def _coerce_type(value: BlockType | str) -> BlockType:
    try:
        return BlockType.parse(value)
    except ValueError as e:
        raise ValidationError(
            f"Unknown block type: {value}",
            field="type",
            value=value,
            constraint="one of " + ", ".join(t.value for t in BlockType),
        ) from e


# =============================================================================
# Row Helpers
# =============================================================================


def _encode_value(value: Any) -> str:
    return json.dumps(value)


def _decode_value(raw: str | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return raw


def _load_properties(conn: sqlite3.Connection, block_id: str) -> dict[str, Any]:
    cursor = conn.execute(
        "SELECT key, value FROM block_properties WHERE block_id = ?",
        (block_id,)
    )
    return {row["key"]: _decode_value(row["value"]) for row in cursor}


def _write_properties(conn: sqlite3.Connection, block_id: str, properties: dict[str, Any]) -> None:
    for key, value in properties.items():
        conn.execute("""
            INSERT INTO block_properties (block_id, key, value)
            VALUES (?, ?, ?)
            ON CONFLICT (block_id, key) DO UPDATE SET value = excluded.value
        """, (block_id, key, _encode_value(value)))


def _decode_child_ids(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Unreadable child_ids value %r, treating as empty", raw)
        return []
    return [str(v) for v in value] if isinstance(value, list) else []


def _row_to_block(conn: sqlite3.Connection, row: sqlite3.Row) -> Block:
    return Block(
        id=row["id"],
        page_id=row["page_id"],
        type=BlockType(row["type"]),
        content=row["content"],
        properties=_load_properties(conn, row["id"]),
        parent_id=row["parent_id"],
        child_ids=_decode_child_ids(row["child_ids"]),
        position=row["position"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_page(row: sqlite3.Row) -> Page:
    return Page(
        id=row["page_id"],
        title=row["title"],
        icon=row["icon"],
        cover_image=row["cover_image"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        is_favorite=bool(row["is_favorite"]),
        parent_id=row["parent_page_id"],
    )


def _fetch_block(conn: sqlite3.Connection, block_id: str) -> Block | None:
    row = conn.execute(
        f"SELECT {_BLOCK_COLUMNS} FROM blocks WHERE id = ?", (block_id,)
    ).fetchone()
    return _row_to_block(conn, row) if row else None


def _fetch_page(conn: sqlite3.Connection, page_id: str) -> Page | None:
    row = conn.execute(
        f"SELECT {_PAGE_COLUMNS} FROM pages WHERE page_id = ?", (page_id,)
    ).fetchone()
    return _row_to_page(row) if row else None


def _require_block(conn: sqlite3.Connection, block_id: str) -> Block:
    block = _fetch_block(conn, block_id)
    if block is None:
        raise NotFoundError(
            f"Block not found: {block_id}", resource_type="block", resource_id=block_id
        )
    return block


def _require_page(conn: sqlite3.Connection, page_id: str) -> Page:
    page = _fetch_page(conn, page_id)
    if page is None:
        raise NotFoundError(
            f"Page not found: {page_id}", resource_type="page", resource_id=page_id
        )
    return page


def _sibling_blocks(
    conn: sqlite3.Connection, page_id: str, parent_id: str | None
) -> list[Block]:
    cursor = conn.execute(
        f"SELECT {_BLOCK_COLUMNS} FROM blocks WHERE page_id = ? AND parent_id IS ? {_SIBLING_ORDER}",
        (page_id, parent_id),
    )
    return [_row_to_block(conn, row) for row in cursor.fetchall()]


def _next_seq(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT COALESCE(MAX(placed_seq), 0) + 1 FROM blocks").fetchone()[0]


def _next_position(conn: sqlite3.Connection, page_id: str, parent_id: str | None) -> int:
    return conn.execute(
        "SELECT COALESCE(MAX(position), -1) + 1 FROM blocks WHERE page_id = ? AND parent_id IS ?",
        (page_id, parent_id),
    ).fetchone()[0]


# =============================================================================
# Tree Bookkeeping (shared with blocks_tree and page_snapshot)
# =============================================================================


def _insert_block_row(
    conn: sqlite3.Connection,
    *,
    block_id: str,
    page_id: str,
    type: BlockType,
    content: str,
    parent_id: str | None,
    position: int,
    created_at: str,
    updated_at: str,
    child_ids: list[str] | None = None,
    properties: dict[str, Any] | None = None,
) -> None:
    conn.execute("""
        INSERT INTO blocks (id, page_id, type, content, parent_id, child_ids, position, placed_seq, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        block_id,
        page_id,
        type.value,
        content,
        parent_id,
        json.dumps(child_ids or []),
        position,
        _next_seq(conn),
        created_at,
        updated_at,
    ))
    if properties:
        _write_properties(conn, block_id, properties)


def _set_child_ids(conn: sqlite3.Connection, block_id: str, child_ids: list[str], now: str) -> None:
    conn.execute(
        "UPDATE blocks SET child_ids = ?, updated_at = ? WHERE id = ?",
        (json.dumps(child_ids), now, block_id),
    )


def _child_insert_index(conn: sqlite3.Connection, child_ids: list[str], position: int) -> int:
    """Index in child_ids before the first child ranked at or after position."""
    for index, child_id in enumerate(child_ids):
        row = conn.execute("SELECT position FROM blocks WHERE id = ?", (child_id,)).fetchone()
        if row is not None and row["position"] >= position:
            return index
    return len(child_ids)


def _attach_child(
    conn: sqlite3.Connection, parent_id: str, child_id: str, position: int, now: str
) -> list[str]:
    """Insert child_id into the parent's child_ids at the slot matching position."""
    parent = _require_block(conn, parent_id)
    child_ids = [c for c in parent.child_ids if c != child_id]
    child_ids.insert(_child_insert_index(conn, child_ids, position), child_id)
    _set_child_ids(conn, parent_id, child_ids, now)
    return child_ids


def _detach_child(conn: sqlite3.Connection, parent_id: str, child_id: str, now: str) -> None:
    """Remove every occurrence of child_id from the parent's child_ids."""
    parent = _fetch_block(conn, parent_id)
    if parent is None:
        return
    if child_id in parent.child_ids:
        _set_child_ids(conn, parent_id, [c for c in parent.child_ids if c != child_id], now)


def _place_block(
    conn: sqlite3.Connection, block_id: str, parent_id: str | None, position: int, now: str
) -> None:
    """Move a block to a parent and rank, marking it as the newest placement."""
    conn.execute(
        "UPDATE blocks SET parent_id = ?, position = ?, placed_seq = ?, updated_at = ? WHERE id = ?",
        (parent_id, position, _next_seq(conn), now, block_id),
    )


def _delete_subtree(conn: sqlite3.Connection, block_id: str, visited: set[str]) -> int:
    """Depth-first delete of a block and its descendants. Returns rows deleted."""
    if block_id in visited:
        return 0
    visited.add(block_id)

    row = conn.execute("SELECT child_ids FROM blocks WHERE id = ?", (block_id,)).fetchone()
    if row is None:
        return 0

    # child_ids is authoritative, but stray rows pointing here must go too.
    child_ids = _decode_child_ids(row["child_ids"])
    strays = [
        r["id"] for r in conn.execute("SELECT id FROM blocks WHERE parent_id = ?", (block_id,))
        if r["id"] not in child_ids
    ]

    deleted = 0
    for child_id in child_ids + strays:
        deleted += _delete_subtree(conn, child_id, visited)

    conn.execute("DELETE FROM blocks WHERE id = ?", (block_id,))
    return deleted + 1


# =============================================================================
# Page CRUD Operations
# =============================================================================


def create_page(
    store: NotesDB,
    title: str | None = None,
    parent_id: str | None = None,
    *,
    icon: str | None = None,
    cover_image: str | None = None,
) -> Page:
    """Create a page together with its initial empty text block.

    Args:
        store: The notes database.
        title: Page title (defaults to ``settings.default_page_title``).
        parent_id: Parent page for nested pages.
        icon: Page icon (defaults to ``settings.default_page_icon``).
        cover_image: Optional cover image reference.

    Returns:
        The created Page.

    Raises:
        NotFoundError: If parent_id does not name an existing page.
    """
    page_id = _new_id("page")
    now = _now_iso()
    page = Page(
        id=page_id,
        title=title if title is not None else settings.default_page_title,
        icon=icon if icon is not None else settings.default_page_icon,
        cover_image=cover_image,
        created_at=now,
        updated_at=now,
        is_favorite=False,
        parent_id=parent_id,
    )

    with store.transaction() as conn:
        if parent_id is not None:
            _require_page(conn, parent_id)
        _insert_page_row(conn, page)
        _insert_block_row(
            conn,
            block_id=_new_id("block"),
            page_id=page_id,
            type=BlockType.TEXT,
            content="",
            parent_id=None,
            position=0,
            created_at=now,
            updated_at=now,
        )

    logger.info("Created page %s (%r)", page_id, page.title)
    return page


def _insert_page_row(conn: sqlite3.Connection, page: Page) -> None:
    conn.execute(f"""
        INSERT INTO pages ({_PAGE_COLUMNS})
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        page.id,
        page.title,
        page.icon,
        page.cover_image,
        1 if page.is_favorite else 0,
        page.parent_id,
        page.created_at,
        page.updated_at,
    ))


def get_page(store: NotesDB, page_id: str) -> Page | None:
    """Get a page by ID, or None if it does not exist."""
    with store.reader() as conn:
        return _fetch_page(conn, page_id)


def require_page(store: NotesDB, page_id: str) -> Page:
    """Get a page by ID.

    Raises:
        NotFoundError: If the page does not exist.
    """
    with store.reader() as conn:
        return _require_page(conn, page_id)


def list_pages(store: NotesDB, *, favorites_only: bool = False) -> list[Page]:
    """List all pages, oldest first."""
    where = "WHERE is_favorite = 1" if favorites_only else ""
    with store.reader() as conn:
        cursor = conn.execute(
            f"SELECT {_PAGE_COLUMNS} FROM pages {where} ORDER BY created_at, page_id"
        )
        return [_row_to_page(row) for row in cursor.fetchall()]


def list_child_pages(store: NotesDB, parent_id: str | None) -> list[Page]:
    """List the pages nested directly under parent_id (None for top level)."""
    with store.reader() as conn:
        cursor = conn.execute(
            f"SELECT {_PAGE_COLUMNS} FROM pages WHERE parent_page_id IS ? ORDER BY created_at, page_id",
            (parent_id,),
        )
        return [_row_to_page(row) for row in cursor.fetchall()]


def update_page(
    store: NotesDB,
    page_id: str,
    *,
    title: str | None = None,
    icon: str | None = None,
    cover_image: str | None = None,
    is_favorite: bool | None = None,
    parent_id: str | None = _UNSET,
) -> Page:
    """Update page metadata.

    Only the given fields change. ``parent_id=None`` moves the page to the
    top level; leaving it out keeps the current parent.

    Raises:
        NotFoundError: If the page or the new parent page does not exist.
        InvalidOperationError: If the move would nest a page under itself.
    """
    now = _now_iso()

    with store.transaction() as conn:
        _require_page(conn, page_id)

        # SAFETY: updates list MUST only contain hardcoded "column = ?" strings.
        updates = ["updated_at = ?"]
        params: list[Any] = [now]

        if title is not None:
            updates.append("title = ?")
            params.append(title)
        if icon is not None:
            updates.append("icon = ?")
            params.append(icon)
        if cover_image is not None:
            updates.append("cover_image = ?")
            params.append(cover_image)
        if is_favorite is not None:
            updates.append("is_favorite = ?")
            params.append(1 if is_favorite else 0)
        if parent_id is not _UNSET:
            if parent_id is not None:
                _check_page_parent(conn, page_id, parent_id)
            updates.append("parent_page_id = ?")
            params.append(parent_id)

        params.append(page_id)
        conn.execute(f"UPDATE pages SET {', '.join(updates)} WHERE page_id = ?", params)
        return _require_page(conn, page_id)


def _check_page_parent(conn: sqlite3.Connection, page_id: str, parent_id: str) -> None:
    current: str | None = parent_id
    seen: set[str] = set()
    while current is not None and current not in seen:
        if current == page_id:
            raise InvalidOperationError(
                "Cannot nest a page under itself or its own subpage",
                operation="update_page",
                reason="cycle",
            )
        seen.add(current)
        current = _require_page(conn, current).parent_id


def set_favorite(store: NotesDB, page_id: str, favorite: bool = True) -> Page:
    """Mark or unmark a page as favorite."""
    return update_page(store, page_id, is_favorite=favorite)


def delete_page(store: NotesDB, page_id: str) -> bool:
    """Delete a page and all of its blocks.

    Subpages are kept and move to the top level.

    Returns:
        True if deleted, False if not found.
    """
    with store.transaction() as conn:
        if _fetch_page(conn, page_id) is None:
            return False
        cursor = conn.execute("DELETE FROM blocks WHERE page_id = ?", (page_id,))
        conn.execute("DELETE FROM pages WHERE page_id = ?", (page_id,))

    logger.info("Deleted page %s with %d blocks", page_id, cursor.rowcount)
    return True


# =============================================================================
# Block CRUD Operations
# =============================================================================


def create_block(
    store: NotesDB,
    *,
    page_id: str,
    type: BlockType | str = BlockType.TEXT,
    content: str = "",
    parent_id: str | None = None,
    position: int | None = None,
    properties: dict[str, Any] | None = None,
) -> Block:
    """Create a new block.

    Args:
        store: The notes database.
        page_id: Page this block belongs to.
        type: Block type (e.g., 'text', 'h1').
        content: Plain text content.
        parent_id: Parent block ID for nesting (None for a root block).
        position: Rank among siblings (appended after the last one if None).
            Existing siblings are not shifted.
        properties: Type-specific properties.

    Returns:
        The created Block.

    Raises:
        NotFoundError: If the page or parent block does not exist.
        InvalidOperationError: If the parent block belongs to another page.
        ValidationError: If the type is unknown or position is negative.
    """
    block_type = _coerce_type(type)
    if position is not None and position < 0:
        raise ValidationError("Position must not be negative", field="position", value=position)

    block_id = _new_id("block")
    now = _now_iso()

    with store.transaction() as conn:
        _require_page(conn, page_id)
        if parent_id is not None:
            parent = _require_block(conn, parent_id)
            if parent.page_id != page_id:
                raise InvalidOperationError(
                    f"Parent block {parent_id} belongs to another page",
                    operation="create_block",
                    reason="cross_page_parent",
                )

        if position is None:
            position = _next_position(conn, page_id, parent_id)

        _insert_block_row(
            conn,
            block_id=block_id,
            page_id=page_id,
            type=block_type,
            content=content,
            parent_id=parent_id,
            position=position,
            created_at=now,
            updated_at=now,
            properties=properties,
        )
        if parent_id is not None:
            _attach_child(conn, parent_id, block_id, position, now)

    logger.debug("Created %s block %s on page %s at %s", block_type.value, block_id, page_id, position)
    return Block(
        id=block_id,
        page_id=page_id,
        type=block_type,
        content=content,
        properties=dict(properties or {}),
        parent_id=parent_id,
        position=position,
        created_at=now,
        updated_at=now,
    )


def get_block(store: NotesDB, block_id: str) -> Block | None:
    """Get a block by ID, or None if it does not exist."""
    with store.reader() as conn:
        return _fetch_block(conn, block_id)


def require_block(store: NotesDB, block_id: str) -> Block:
    """Get a block by ID.

    Raises:
        NotFoundError: If the block does not exist.
    """
    with store.reader() as conn:
        return _require_block(conn, block_id)


def get_page_blocks(store: NotesDB, page_id: str) -> list[Block]:
    """Get the root-level blocks of a page ordered by position."""
    with store.reader() as conn:
        return _sibling_blocks(conn, page_id, None)


def get_all_page_blocks(store: NotesDB, page_id: str) -> list[Block]:
    """Get every block of a page ordered by position.

    Blocks under different parents are interleaved; use
    ``blocks_tree.get_page_tree`` for document order.
    """
    with store.reader() as conn:
        cursor = conn.execute(
            f"SELECT {_BLOCK_COLUMNS} FROM blocks WHERE page_id = ? {_SIBLING_ORDER}",
            (page_id,),
        )
        return [_row_to_block(conn, row) for row in cursor.fetchall()]


def get_child_blocks(store: NotesDB, parent_id: str) -> list[Block]:
    """Get the direct children of a block ordered by position."""
    with store.reader() as conn:
        cursor = conn.execute(
            f"SELECT {_BLOCK_COLUMNS} FROM blocks WHERE parent_id = ? {_SIBLING_ORDER}",
            (parent_id,),
        )
        return [_row_to_block(conn, row) for row in cursor.fetchall()]


def update_block(
    store: NotesDB,
    block_id: str,
    *,
    content: str | None = None,
    type: BlockType | str | None = None,
    properties: dict[str, Any] | None = None,
    position: int | None = None,
) -> Block:
    """Update a block.

    Args:
        store: The notes database.
        block_id: The block to update.
        content: New text content.
        type: New block type.
        properties: Properties to update (merged with existing).
        position: New rank among siblings (siblings are not shifted).

    Returns:
        Updated Block.

    Raises:
        NotFoundError: If the block does not exist.
        ValidationError: If the type is unknown.
    """
    block_type = _coerce_type(type) if type is not None else None
    now = _now_iso()

    with store.transaction() as conn:
        _require_block(conn, block_id)

        # SAFETY: updates list MUST only contain hardcoded "column = ?" strings.
        # Never add user-controlled column names here.
        updates = ["updated_at = ?"]
        params: list[Any] = [now]

        if content is not None:
            updates.append("content = ?")
            params.append(content)
        if block_type is not None:
            updates.append("type = ?")
            params.append(block_type.value)
        if position is not None:
            updates.append("position = ?")
            params.append(position)

        _ALLOWED_COLUMNS = {"updated_at", "content", "type", "position"}
        assert all(u.split(" = ?")[0] in _ALLOWED_COLUMNS for u in updates), (
            f"SQL injection guard: unexpected column in updates: {updates}"
        )

        params.append(block_id)
        conn.execute(f"UPDATE blocks SET {', '.join(updates)} WHERE id = ?", params)

        if properties:
            _write_properties(conn, block_id, properties)

        return _require_block(conn, block_id)


def update_block_content(store: NotesDB, block_id: str, content: str) -> Block:
    """Replace a block's text content."""
    return update_block(store, block_id, content=content)


def update_block_type(store: NotesDB, block_id: str, type: BlockType | str) -> Block:
    """Change a block's type, keeping its content."""
    return update_block(store, block_id, type=type)


def get_block_property(store: NotesDB, block_id: str, key: str, default: Any = None) -> Any:
    """Get a single block property."""
    with store.reader() as conn:
        row = conn.execute(
            "SELECT value FROM block_properties WHERE block_id = ? AND key = ?",
            (block_id, key)
        ).fetchone()
        return _decode_value(row["value"]) if row else default


def set_block_property(store: NotesDB, block_id: str, key: str, value: Any) -> None:
    """Set a block property (e.g. ``checked`` on a todo)."""
    now = _now_iso()
    with store.transaction() as conn:
        _require_block(conn, block_id)
        _write_properties(conn, block_id, {key: value})
        conn.execute("UPDATE blocks SET updated_at = ? WHERE id = ?", (now, block_id))


def delete_block(store: NotesDB, block_id: str) -> bool:
    """Delete a block and all of its descendants.

    The block is also removed from its former parent's ``child_ids``.

    Returns:
        True if deleted, False if not found.
    """
    now = _now_iso()

    with store.transaction() as conn:
        block = _fetch_block(conn, block_id)
        if block is None:
            return False

        deleted = _delete_subtree(conn, block_id, set())
        if block.parent_id is not None:
            _detach_child(conn, block.parent_id, block_id, now)

    logger.debug("Deleted block %s (%d records)", block_id, deleted)
    return True
