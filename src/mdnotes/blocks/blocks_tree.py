"""Tree operations for block hierarchy.

This module turns editor intents into store mutations:
- Indenting and outdenting blocks (Tab / Shift+Tab)
- Creating and splitting blocks (Enter)
- Deleting with merge into the previous block (Backspace)
- Reordering siblings and renumbering positions
- Read-only projections: ancestors, descendants, siblings, trees

Positions are normalized lazily. ``indent_block``, ``outdent_block`` and
``create_block_below`` leave the sibling group they touched as it is, so a
group can briefly hold gaps or two blocks at the same position. Among
siblings at the same position the most recently placed one sorts first.
``reorder_blocks`` and ``update_block_positions`` restore ``0..n-1``.

Every operation runs in a single store transaction.
"""

from __future__ import annotations

import logging
import sqlite3

from ..errors import InvalidOperationError
from ..notes_db import NotesDB
from .blocks_db import (
    _detach_child,
    _fetch_block,
    _next_position,
    _now_iso,
    _place_block,
    _require_block,
    _require_page,
    _set_child_ids,
    _sibling_blocks,
    create_block,
    delete_block,
    get_all_page_blocks,
    update_block_content,
)
from .blocks_models import Block, BlockType

logger = logging.getLogger(__name__)


# =============================================================================
# Sibling Order
# =============================================================================


def _group_order(conn: sqlite3.Connection, page_id: str, parent_id: str | None) -> list[Block]:
    """Blocks of one sibling group in document order.

    Under a parent the parent's child_ids decides; children missing from it
    follow in position order. Root groups are ordered by position.
    """
    siblings = _sibling_blocks(conn, page_id, parent_id)
    if parent_id is None:
        return siblings

    parent = _fetch_block(conn, parent_id)
    if parent is None:
        return siblings

    by_id = {s.id: s for s in siblings}
    ordered: list[Block] = []
    for child_id in parent.child_ids:
        child = by_id.pop(child_id, None)
        if child is not None:
            ordered.append(child)
    ordered.extend(s for s in siblings if s.id in by_id)
    return ordered


def _previous_in(group: list[Block], block_id: str) -> Block | None:
    for index, sibling in enumerate(group):
        if sibling.id == block_id:
            return group[index - 1] if index > 0 else None
    return None


def _renumber(conn: sqlite3.Connection, block_ids: list[str], now: str) -> None:
    for index, block_id in enumerate(block_ids):
        conn.execute(
            "UPDATE blocks SET position = ?, updated_at = ? WHERE id = ? AND position != ?",
            (index, now, block_id, index),
        )


# =============================================================================
# Indent / Outdent
# =============================================================================


def indent_block(store: NotesDB, block_id: str) -> bool:
    """Make a block the last child of its previous sibling.

    Args:
        store: The notes database.
        block_id: The block to indent.

    Returns:
        True if the block moved, False if it has no previous sibling.

    Raises:
        NotFoundError: If the block does not exist.
    """
    now = _now_iso()

    with store.transaction() as conn:
        block = _require_block(conn, block_id)
        previous = _previous_in(_group_order(conn, block.page_id, block.parent_id), block_id)
        if previous is None:
            return False

        if block.parent_id is not None:
            _detach_child(conn, block.parent_id, block_id, now)

        child_ids = [c for c in previous.child_ids if c != block_id]
        position = len(child_ids)
        if child_ids:
            last = _fetch_block(conn, child_ids[-1])
            # Stay last even when the new parent's children have gaps.
            if last is not None and last.position >= position:
                position = last.position + 1
        child_ids.append(block_id)

        _set_child_ids(conn, previous.id, child_ids, now)
        _place_block(conn, block_id, previous.id, position, now)

    logger.debug("Indented block %s under %s at %d", block_id, previous.id, position)
    return True


def outdent_block(store: NotesDB, block_id: str) -> bool:
    """Move a block up one level, directly after its former parent.

    Siblings that followed the block stay with the former parent, and
    siblings after the former parent are not shifted.

    Returns:
        True if the block moved, False if it is already at the root.

    Raises:
        NotFoundError: If the block does not exist.
    """
    now = _now_iso()

    with store.transaction() as conn:
        block = _require_block(conn, block_id)
        if block.parent_id is None:
            return False

        parent = _fetch_block(conn, block.parent_id)
        if parent is None:
            logger.warning("Block %s has missing parent %s; moving to root", block_id, block.parent_id)
            _place_block(conn, block_id, None, _next_position(conn, block.page_id, None), now)
            return True

        _detach_child(conn, parent.id, block_id, now)

        new_parent_id = parent.parent_id
        position = parent.position + 1
        if new_parent_id is not None:
            grandparent = _require_block(conn, new_parent_id)
            child_ids = [c for c in grandparent.child_ids if c != block_id]
            index = child_ids.index(parent.id) + 1 if parent.id in child_ids else len(child_ids)
            child_ids.insert(index, block_id)
            _set_child_ids(conn, new_parent_id, child_ids, now)

        _place_block(conn, block_id, new_parent_id, position, now)

    logger.debug("Outdented block %s to parent %s at %d", block_id, new_parent_id, position)
    return True


# =============================================================================
# Ordering
# =============================================================================


def reorder_blocks(
    store: NotesDB,
    page_id: str,
    parent_id: str | None,
    ordered_ids: list[str],
) -> list[Block]:
    """Assign positions 0..n-1 to one sibling group in the given order.

    Siblings left out of ordered_ids keep their relative order after the
    listed ones. Under a parent, the parent's child_ids is rewritten to the
    same order.

    Returns:
        The whole sibling group in its new order.

    Raises:
        NotFoundError: If the page, the parent or one of the ids does not exist.
        InvalidOperationError: If the ids are repeated or not all siblings in
            the (page_id, parent_id) group.
    """
    if len(set(ordered_ids)) != len(ordered_ids):
        raise InvalidOperationError(
            "Block ids must not repeat",
            operation="reorder_blocks",
            reason="duplicate_ids",
        )

    now = _now_iso()

    with store.transaction() as conn:
        _require_page(conn, page_id)
        if parent_id is not None:
            _require_block(conn, parent_id)

        for block_id in ordered_ids:
            block = _require_block(conn, block_id)
            if block.page_id != page_id or block.parent_id != parent_id:
                raise InvalidOperationError(
                    f"Block {block_id} is not in the sibling group being reordered",
                    operation="reorder_blocks",
                    reason="not_siblings",
                )

        listed = set(ordered_ids)
        final_ids = list(ordered_ids) + [
            b.id for b in _group_order(conn, page_id, parent_id) if b.id not in listed
        ]

        _renumber(conn, final_ids, now)
        if parent_id is not None:
            _set_child_ids(conn, parent_id, final_ids, now)

        return [_require_block(conn, block_id) for block_id in final_ids]


def update_block_positions(
    store: NotesDB, page_id: str, parent_id: str | None = None
) -> list[Block]:
    """Renumber a sibling group to 0..n-1, keeping its current order."""
    with store.transaction() as conn:
        current = [b.id for b in _group_order(conn, page_id, parent_id)]
        return reorder_blocks(store, page_id, parent_id, current)


# =============================================================================
# Editing Intents
# =============================================================================


def create_block_below(
    store: NotesDB,
    block_id: str,
    content: str = "",
    type: BlockType | str = BlockType.TEXT,
) -> Block:
    """Create a block directly after another one, under the same parent.

    The new block takes ``position + 1`` without shifting later siblings;
    call ``update_block_positions`` to renumber the group. When a later
    sibling shares the reference block's rank (left behind by an outdent),
    ``position + 1`` would land after it, so the group is renumbered here
    with the new block seated right after the reference block.

    Raises:
        NotFoundError: If the reference block does not exist.
    """
    with store.transaction() as conn:
        block = _require_block(conn, block_id)
        group = [b.id for b in _group_order(conn, block.page_id, block.parent_id)]

        created = create_block(
            store,
            page_id=block.page_id,
            type=type,
            content=content,
            parent_id=block.parent_id,
            position=block.position + 1,
        )

        index = group.index(block_id) + 1
        intended = group[:index] + [created.id] + group[index:]
        current = [b.id for b in _group_order(conn, block.page_id, block.parent_id)]
        if current != intended:
            logger.debug("Renumbering siblings of %s to seat %s after it", block_id, created.id)
            reorder_blocks(store, block.page_id, block.parent_id, intended)
            created = _require_block(conn, created.id)
        return created


def split_block(store: NotesDB, block_id: str, offset: int) -> Block:
    """Split a block at a text offset, as pressing Enter mid-line does.

    The block keeps the text before the offset; a new text block below it
    gets the rest. The sibling group is renumbered afterwards.

    Returns:
        The new block.
    """
    with store.transaction() as conn:
        block = _require_block(conn, block_id)
        offset = max(0, min(offset, len(block.content)))

        update_block_content(store, block_id, block.content[:offset])
        created = create_block_below(store, block_id, block.content[offset:])
        update_block_positions(store, block.page_id, block.parent_id)
        return _require_block(conn, created.id)


def delete_and_merge(store: NotesDB, block_id: str) -> str | None:
    """Delete a block, appending its content to the block before it.

    The block before it is the previous sibling or, for a first child, the
    parent. The deleted block's descendants are deleted with it.

    Returns:
        The merged content of the block before it, or None if there was no
        block before it (the block is deleted anyway).

    Raises:
        NotFoundError: If the block does not exist.
    """
    merged: str | None = None

    with store.transaction() as conn:
        block = _require_block(conn, block_id)
        target = _previous_in(_group_order(conn, block.page_id, block.parent_id), block_id)
        if target is None and block.parent_id is not None:
            target = _fetch_block(conn, block.parent_id)

        if target is not None:
            merged = update_block_content(store, target.id, target.content + block.content).content
        delete_block(store, block_id)

    logger.debug("Deleted block %s, merged into %s", block_id, target.id if target else None)
    return merged


def ensure_root_block(store: NotesDB, page_id: str) -> Block | None:
    """Give an emptied page back its initial empty text block.

    Returns:
        The created block, or None if the page already has root blocks.

    Raises:
        NotFoundError: If the page does not exist.
    """
    with store.transaction() as conn:
        _require_page(conn, page_id)
        if _sibling_blocks(conn, page_id, None):
            return None
        logger.info("Page %s had no blocks; creating an empty one", page_id)
        return create_block(store, page_id=page_id, type=BlockType.TEXT, content="", position=0)


# =============================================================================
# Ancestor/Descendant Operations
# =============================================================================


def get_siblings(store: NotesDB, block_id: str, include_self: bool = False) -> list[Block]:
    """Get siblings of a block (blocks with the same page and parent).

    Args:
        store: The notes database.
        block_id: The block ID.
        include_self: Whether to include the block itself.

    Returns:
        List of sibling blocks in document order.
    """
    with store.reader() as conn:
        block = _fetch_block(conn, block_id)
        if block is None:
            return []
        siblings = _group_order(conn, block.page_id, block.parent_id)

    if not include_self:
        siblings = [s for s in siblings if s.id != block_id]
    return siblings


def get_ancestors(store: NotesDB, block_id: str) -> list[Block]:
    """Get all ancestors of a block, from immediate parent to root.

    Args:
        store: The notes database.
        block_id: The block ID.

    Returns:
        List of ancestor blocks, starting with immediate parent.
    """
    ancestors: list[Block] = []
    seen = {block_id}

    with store.reader() as conn:
        block = _fetch_block(conn, block_id)
        while block is not None and block.parent_id is not None:
            if block.parent_id in seen:
                logger.warning("Cycle in parent chain of block %s", block_id)
                break
            parent = _fetch_block(conn, block.parent_id)
            if parent is None:
                break
            ancestors.append(parent)
            seen.add(parent.id)
            block = parent

    return ancestors


def get_descendants(store: NotesDB, block_id: str) -> list[Block]:
    """Get all descendants of a block in depth-first document order."""
    descendants: list[Block] = []
    with store.reader() as conn:
        block = _fetch_block(conn, block_id)
        if block is not None:
            _collect_descendants(conn, block, descendants, {block_id})
    return descendants


def _collect_descendants(
    conn: sqlite3.Connection, block: Block, result: list[Block], seen: set[str]
) -> None:
    """Recursively collect descendants."""
    for child in _group_order(conn, block.page_id, block.id):
        if child.id in seen:
            continue
        seen.add(child.id)
        result.append(child)
        _collect_descendants(conn, child, result, seen)


def get_block_depth(store: NotesDB, block_id: str) -> int:
    """Get the nesting depth of a block (0 for root blocks)."""
    return len(get_ancestors(store, block_id))


# =============================================================================
# Tree Projections
# =============================================================================


def build_tree(blocks: list[Block]) -> list[Block]:
    """Build a tree structure from a flat list of blocks.

    Children follow their parent's child_ids; children a parent does not
    list come after, by position. Blocks whose parent is not in the list
    become roots. Blocks caught in a parent cycle are left out.

    Args:
        blocks: List of blocks (children field will be populated).

    Returns:
        List of root blocks with children populated.
    """
    blocks_by_id = {b.id: b for b in blocks}
    root_blocks = []

    # Clear existing children
    for block in blocks:
        block.children = []

    by_parent: dict[str, list[Block]] = {}
    for block in blocks:
        if block.parent_id and block.parent_id in blocks_by_id:
            by_parent.setdefault(block.parent_id, []).append(block)
        else:
            root_blocks.append(block)

    for parent_id, children in by_parent.items():
        parent = blocks_by_id[parent_id]
        rank: dict[str, int] = {}
        for i, child_id in enumerate(parent.child_ids):
            rank.setdefault(child_id, i)
        listed = sorted((c for c in children if c.id in rank), key=lambda c: rank[c.id])
        unlisted = sorted((c for c in children if c.id not in rank), key=lambda c: c.position)
        parent.children = listed + unlisted

    return sorted(root_blocks, key=lambda b: b.position)


def flatten_tree(root_blocks: list[Block]) -> list[Block]:
    """Flatten a tree of blocks to a depth-first list.

    Args:
        root_blocks: List of root-level blocks with children loaded.

    Returns:
        Flat list of all blocks in depth-first order.
    """
    result: list[Block] = []
    for block in root_blocks:
        _flatten_recursive(block, result)
    return result


def _flatten_recursive(block: Block, result: list[Block]) -> None:
    """Recursively flatten a block tree."""
    result.append(block)
    for child in block.children:
        _flatten_recursive(child, result)


def get_page_tree(store: NotesDB, page_id: str) -> list[Block]:
    """Load a page's blocks as a tree of root blocks with children populated.

    Raises:
        NotFoundError: If the page does not exist.
    """
    with store.reader() as conn:
        _require_page(conn, page_id)
    return build_tree(get_all_page_blocks(store, page_id))


def iter_page_blocks(store: NotesDB, page_id: str) -> list[tuple[Block, int]]:
    """Every block of a page in document order, paired with its depth."""
    result: list[tuple[Block, int]] = []

    def walk(block: Block, depth: int) -> None:
        result.append((block, depth))
        for child in block.children:
            walk(child, depth + 1)

    for root in get_page_tree(store, page_id):
        walk(root, 0)
    return result

