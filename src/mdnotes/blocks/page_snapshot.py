"""Whole-page export and import.

A snapshot is a plain dict ``{"page": {...}, "blocks": [...]}`` holding the
page record and every block record, blocks in document order. Snapshots
written by the browser editor (camelCase keys, integer ids) are
accepted too.

Importing never reuses ids: the page and every block get fresh ids, and
each parent_id / child_ids reference is rewritten through an old-id to
new-id map. The snapshot is validated before anything is written, so a
snapshot with unresolvable references is rejected as a whole.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ..errors import MalformedImportError, NotFoundError
from ..notes_db import NotesDB
from ..settings import settings
from .blocks_db import (
    _UNSET,
    _fetch_page,
    _insert_block_row,
    _insert_page_row,
    _new_id,
    _now_iso,
    _require_page,
)
from .blocks_models import Block, Page
from .blocks_tree import iter_page_blocks

logger = logging.getLogger(__name__)


# =============================================================================
# Export
# =============================================================================


def export_page(store: NotesDB, page_id: str) -> dict[str, Any]:
    """Export a page and all of its blocks.

    Raises:
        NotFoundError: If the page does not exist.
    """
    with store.reader() as conn:
        page = _require_page(conn, page_id)

    blocks = [block for block, _depth in iter_page_blocks(store, page_id)]
    return {
        "page": page.to_dict(),
        "blocks": [block.to_dict() for block in blocks],
    }


def save_snapshot(path: Path | str, snapshot: dict[str, Any]) -> Path:
    """Write a snapshot to a UTF-8 JSON file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(snapshot, indent=2, ensure_ascii=False), encoding="utf-8")
    return path


def load_snapshot(path: Path | str) -> dict[str, Any]:
    """Read a snapshot from a JSON file.

    Raises:
        NotFoundError: If the file does not exist.
        MalformedImportError: If the file is not a JSON object.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise NotFoundError(
            f"Snapshot file not found: {path}", resource_type="file", resource_id=str(path)
        ) from e
    except json.JSONDecodeError as e:
        raise MalformedImportError(f"Snapshot is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedImportError("Snapshot must be a JSON object")
    return data


# =============================================================================
# Validation
# =============================================================================


def validate_snapshot(snapshot: Any) -> tuple[Page, list[Block]]:
    """Check that a snapshot can be imported as a whole.

    Returns:
        The page and its blocks, parsed.

    Raises:
        MalformedImportError: On a missing page, unknown block types,
            duplicate ids, references to blocks outside the snapshot, or a
            cycle in the parent chain.
    """
    if not isinstance(snapshot, dict):
        raise MalformedImportError("Snapshot must be a mapping with 'page' and 'blocks'")

    page_data = snapshot.get("page")
    raw_blocks = snapshot.get("blocks", [])
    if not isinstance(page_data, dict):
        raise MalformedImportError("Snapshot has no page record")
    if not isinstance(raw_blocks, list):
        raise MalformedImportError("Snapshot blocks must be a list")

    page = Page.from_dict(page_data)

    blocks: list[Block] = []
    for index, raw in enumerate(raw_blocks):
        if not isinstance(raw, dict):
            raise MalformedImportError(f"Block #{index} is not a mapping")
        try:
            block = Block.from_dict(raw)
        except (TypeError, ValueError) as e:
            raise MalformedImportError(
                f"Block #{index} is invalid: {e}", block_id=str(raw.get("id"))
            ) from e
        if not block.id:
            raise MalformedImportError(f"Block #{index} has no id")
        blocks.append(block)

    by_id: dict[str, Block] = {}
    for block in blocks:
        if block.id in by_id:
            raise MalformedImportError(f"Duplicate block id: {block.id}", block_id=block.id)
        by_id[block.id] = block

    for block in blocks:
        if block.parent_id is not None and block.parent_id not in by_id:
            raise MalformedImportError(
                f"Block {block.id} references unknown parent {block.parent_id}",
                block_id=block.id,
                reference=block.parent_id,
            )
        for child_id in block.child_ids:
            if child_id not in by_id:
                raise MalformedImportError(
                    f"Block {block.id} lists unknown child {child_id}",
                    block_id=block.id,
                    reference=child_id,
                )

    _depths(blocks, by_id)
    return page, blocks


def _depths(blocks: list[Block], by_id: dict[str, Block]) -> dict[str, int]:
    """Depth of every block; raises on a parent cycle."""
    depths: dict[str, int] = {}
    for block in blocks:
        chain: list[str] = []
        current: Block | None = block
        while current is not None and current.id not in depths:
            if current.id in chain:
                raise MalformedImportError(
                    f"Cycle in parent chain at block {current.id}",
                    block_id=current.id,
                    reference="cycle",
                )
            chain.append(current.id)
            current = by_id[current.parent_id] if current.parent_id is not None else None

        depth = depths[current.id] + 1 if current is not None else 0
        for block_id in reversed(chain):
            depths[block_id] = depth
            depth += 1
    return depths


def _child_order(blocks: list[Block], by_id: dict[str, Block]) -> dict[str | None, list[str]]:
    """Children of each parent (None for root) in their final order."""
    grouped: dict[str | None, list[Block]] = {}
    for block in blocks:
        grouped.setdefault(block.parent_id, []).append(block)

    def by_position(parent_id: str | None) -> list[str]:
        # sorted() is stable, so snapshot order breaks position ties.
        return [c.id for c in sorted(grouped.get(parent_id, []), key=lambda c: c.position)]

    order: dict[str | None, list[str]] = {None: by_position(None)}
    for parent in blocks:
        listed: list[str] = []
        for child_id in parent.child_ids:
            if by_id[child_id].parent_id != parent.id:
                logger.warning(
                    "Snapshot block %s lists %s, whose parent is %s; ignoring",
                    parent.id, child_id, by_id[child_id].parent_id,
                )
            elif child_id not in listed:
                listed.append(child_id)
        order[parent.id] = listed + [c for c in by_position(parent.id) if c not in listed]
    return order


# =============================================================================
# Import
# =============================================================================


def import_page(
    store: NotesDB,
    snapshot: dict[str, Any],
    *,
    parent_id: str | None = _UNSET,
) -> Page:
    """Import a snapshot as a new page.

    Args:
        store: The notes database.
        snapshot: Dict produced by export_page (or the browser editor).
        parent_id: Parent page for the new page. By default the snapshot's
            parent is kept when that page exists here, else the page goes
            to the top level.

    Returns:
        The new Page.

    Raises:
        MalformedImportError: If the snapshot cannot be imported as a whole.
        NotFoundError: If an explicit parent_id does not exist.
    """
    page_data, blocks = validate_snapshot(snapshot)
    by_id = {b.id: b for b in blocks}
    depths = _depths(blocks, by_id)
    order = _child_order(blocks, by_id)
    positions = {
        block_id: index for group in order.values() for index, block_id in enumerate(group)
    }

    now = _now_iso()

    with store.transaction() as conn:
        if parent_id is _UNSET:
            parent_id = page_data.parent_id
            if parent_id is not None and _fetch_page(conn, parent_id) is None:
                parent_id = None
        elif parent_id is not None:
            _require_page(conn, parent_id)

        page = Page(
            id=_new_id("page"),
            title=page_data.title or settings.default_page_title,
            icon=page_data.icon,
            cover_image=page_data.cover_image,
            created_at=page_data.created_at or now,
            updated_at=page_data.updated_at or now,
            is_favorite=page_data.is_favorite,
            parent_id=parent_id,
        )
        _insert_page_row(conn, page)

        id_map: dict[str, str] = {}
        ordered = sorted(blocks, key=lambda b: depths[b.id])
        for block in ordered:
            id_map[block.id] = _new_id("block")

        for block in ordered:
            _insert_block_row(
                conn,
                block_id=id_map[block.id],
                page_id=page.id,
                type=block.type,
                content=block.content,
                parent_id=id_map[block.parent_id] if block.parent_id is not None else None,
                position=positions[block.id],
                created_at=block.created_at or now,
                updated_at=block.updated_at or now,
                child_ids=[id_map[c] for c in order.get(block.id, [])],
                properties=block.properties,
            )

    logger.info("Imported page %s (%r) with %d blocks", page.id, page.title, len(blocks))
    return page
