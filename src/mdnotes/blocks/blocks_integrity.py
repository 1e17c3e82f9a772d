"""Block tree integrity: is a page's tree structurally sound?

``check_page_tree`` reports, without changing anything:
- blocks whose parent is missing or on another page
- parent/child disagreements between parent_id and child_ids
- cycles in the parent chain
- sibling groups whose positions are not 0..n-1

``repair_page_tree`` fixes all of these in one transaction. ``check_database``
runs SQLite's own integrity and foreign key checks.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..notes_db import NotesDB
from .blocks_db import _now_iso, _require_page, get_all_page_blocks
from .blocks_models import Block

logger = logging.getLogger(__name__)


class Severity(Enum):
    """How bad an issue is."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class TreeIssue:
    """One problem found in a page's block tree."""

    kind: str
    severity: Severity
    title: str
    block_id: str | None = None
    details: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "severity": self.severity.value,
            "title": self.title,
            "block_id": self.block_id,
            "details": self.details,
        }


def _load(store: NotesDB, page_id: str) -> list[Block]:
    with store.reader() as conn:
        _require_page(conn, page_id)
    return get_all_page_blocks(store, page_id)


def _cycle_members(parents: dict[str, str | None]) -> set[str]:
    """Ids whose parent chain loops back on itself."""
    members: set[str] = set()
    settled: set[str] = set()
    for start in parents:
        path: list[str] = []
        current: str | None = start
        while current is not None and current in parents and current not in settled:
            if current in path:
                members.update(path[path.index(current):])
                break
            path.append(current)
            current = parents[current]
        settled.update(path)
    return members


def check_page_tree(store: NotesDB, page_id: str) -> list[TreeIssue]:
    """Check a page's block tree.

    Returns:
        Issues found; empty if the tree is sound.

    Raises:
        NotFoundError: If the page does not exist.
    """
    blocks = _load(store, page_id)
    by_id = {b.id: b for b in blocks}
    issues: list[TreeIssue] = []

    if not blocks:
        issues.append(TreeIssue(
            kind="empty_page",
            severity=Severity.INFO,
            title="Page has no blocks",
        ))
        return issues

    for block in blocks:
        if block.parent_id is None:
            continue
        parent = by_id.get(block.parent_id)
        if parent is None:
            issues.append(TreeIssue(
                kind="missing_parent",
                severity=Severity.CRITICAL,
                title="Parent block does not exist on this page",
                block_id=block.id,
                details=f"parent_id={block.parent_id}",
            ))
            continue
        count = parent.child_ids.count(block.id)
        if count == 0:
            issues.append(TreeIssue(
                kind="unlisted_child",
                severity=Severity.WARNING,
                title="Block is missing from its parent's child_ids",
                block_id=block.id,
                details=f"parent_id={parent.id}",
            ))
        elif count > 1:
            issues.append(TreeIssue(
                kind="duplicate_child",
                severity=Severity.WARNING,
                title="Block is listed more than once by its parent",
                block_id=block.id,
                details=f"parent_id={parent.id} count={count}",
            ))

    for block in blocks:
        for child_id in dict.fromkeys(block.child_ids):
            child = by_id.get(child_id)
            if child is None:
                issues.append(TreeIssue(
                    kind="dangling_child",
                    severity=Severity.CRITICAL,
                    title="child_ids references a block that does not exist",
                    block_id=block.id,
                    details=f"child_id={child_id}",
                ))
            elif child.parent_id != block.id:
                issues.append(TreeIssue(
                    kind="foreign_child",
                    severity=Severity.CRITICAL,
                    title="child_ids lists a block that belongs to another parent",
                    block_id=block.id,
                    details=f"child_id={child_id} parent_id={child.parent_id}",
                ))

    for block_id in sorted(_cycle_members({b.id: b.parent_id for b in blocks})):
        issues.append(TreeIssue(
            kind="cycle",
            severity=Severity.CRITICAL,
            title="Block is part of a parent cycle",
            block_id=block_id,
        ))

    groups: dict[str | None, list[int]] = {}
    for block in blocks:
        groups.setdefault(block.parent_id, []).append(block.position)
    for parent_id, positions in groups.items():
        if sorted(positions) != list(range(len(positions))):
            issues.append(TreeIssue(
                kind="positions",
                severity=Severity.INFO,
                title="Sibling positions are not 0..n-1",
                block_id=parent_id,
                details=f"positions={sorted(positions)}",
            ))

    return issues


def repair_page_tree(store: NotesDB, page_id: str) -> list[TreeIssue]:
    """Repair a page's block tree.

    Blocks with a missing parent and blocks that close a parent cycle move
    to the end of the root level. child_ids is rebuilt from parent_id,
    keeping the listed order, and every sibling group is renumbered.

    Returns:
        The issues that were found before repairing.
    """
    now = _now_iso()

    with store.transaction() as conn:
        issues = check_page_tree(store, page_id)
        if not any(issue.kind != "empty_page" for issue in issues):
            return issues

        blocks = _load(store, page_id)
        by_id = {b.id: b for b in blocks}
        parents = {b.id: (b.parent_id if b.parent_id in by_id else None) for b in blocks}
        rerooted = [b.id for b in blocks if b.parent_id is not None and parents[b.id] is None]

        # Cut each cycle at one member.
        while True:
            members = _cycle_members(parents)
            if not members:
                break
            cut = next(b.id for b in blocks if b.id in members)
            parents[cut] = None
            rerooted.append(cut)

        children: dict[str | None, list[str]] = {}
        for block in blocks:
            if block.id not in rerooted:
                children.setdefault(parents[block.id], []).append(block.id)
        children.setdefault(None, []).extend(rerooted)

        for parent_id, group in children.items():
            if parent_id is None:
                continue
            listed = [c for c in dict.fromkeys(by_id[parent_id].child_ids) if c in group]
            children[parent_id] = listed + [c for c in group if c not in listed]

        for block in blocks:
            child_ids = children.get(block.id, [])
            parent_id = parents[block.id]
            position = children[parent_id].index(block.id)
            if (
                child_ids != block.child_ids
                or parent_id != block.parent_id
                or position != block.position
            ):
                conn.execute(
                    "UPDATE blocks SET parent_id = ?, child_ids = ?, position = ?, updated_at = ? WHERE id = ?",
                    (parent_id, json.dumps(child_ids), position, now, block.id),
                )

    logger.warning("Repaired %d issue(s) on page %s", len(issues), page_id)
    return issues


def check_database(store: NotesDB) -> list[TreeIssue]:
    """Run SQLite integrity and foreign key checks on the whole database."""
    issues: list[TreeIssue] = []

    with store.reader() as conn:
        integrity_result = conn.execute("PRAGMA integrity_check").fetchone()
        if integrity_result and integrity_result[0] != "ok":
            issues.append(TreeIssue(
                kind="integrity",
                severity=Severity.CRITICAL,
                title="Database integrity check failed",
                details=f"PRAGMA integrity_check: {integrity_result[0]}",
            ))
            return issues

        fk_violations = conn.execute("PRAGMA foreign_key_check").fetchall()
        if fk_violations:
            tables = {v[0] for v in fk_violations}
            issues.append(TreeIssue(
                kind="foreign_keys",
                severity=Severity.CRITICAL,
                title=f"Foreign key violations in {len(tables)} table(s)",
                details=(
                    f"Tables with FK violations: {', '.join(sorted(tables))}. "
                    f"Total violations: {len(fk_violations)}"
                ),
            ))

    return issues
