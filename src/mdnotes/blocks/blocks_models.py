"""Data models for the block-based content system.

Pages and blocks are plain records. The ``children`` list on a Block is
only filled in by read-only tree projections (see ``blocks_tree.build_tree``)
and never read from or written to dicts; ``child_ids`` is what the store
persists.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class BlockType(str, Enum):
    """Supported block types."""

    TEXT = "text"
    H1 = "h1"
    H2 = "h2"
    H3 = "h3"
    TODO = "todo"
    BULLET = "bullet"
    NUMBERED = "numbered"
    QUOTE = "quote"
    CODE = "code"
    TOGGLE = "toggle"

    @classmethod
    def parse(cls, value: BlockType | str) -> BlockType:
        """Coerce a string to a BlockType, raising ValueError if unknown."""
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First present key wins; accepts both snake_case and camelCase exports."""
    for key in keys:
        if key in data:
            return data[key]
    return default


def _as_id(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


@dataclass
class Page:
    """One document: a titled tree of blocks."""

    id: str
    title: str
    icon: str | None = None
    cover_image: str | None = None
    created_at: str = ""
    updated_at: str = ""
    is_favorite: bool = False
    parent_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "title": self.title,
            "icon": self.icon,
            "cover_image": self.cover_image,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "is_favorite": self.is_favorite,
            "parent_id": self.parent_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Page:
        """Create from dictionary."""
        return cls(
            id=_as_id(data.get("id")) or "",
            title=str(data.get("title") or ""),
            icon=data.get("icon"),
            cover_image=_pick(data, "cover_image", "coverImage"),
            created_at=str(_pick(data, "created_at", "createdAt", default="")),
            updated_at=str(_pick(data, "updated_at", "updatedAt", default="")),
            is_favorite=bool(_pick(data, "is_favorite", "isFavorite", default=False)),
            parent_id=_as_id(_pick(data, "parent_id", "parentId")),
        )


@dataclass
class Block:
    """A content block.

    Blocks form a tree: ``parent_id`` points up, ``child_ids`` lists the
    direct children in document order, and ``position`` ranks the block
    among the siblings that share its page and parent.
    """

    id: str
    page_id: str
    type: BlockType = BlockType.TEXT
    content: str = ""

    # Type-specific properties (e.g., checked for todo, language for code)
    properties: dict[str, Any] = field(default_factory=dict)

    # Hierarchy
    parent_id: str | None = None
    child_ids: list[str] = field(default_factory=list)
    position: int = 0

    # Timestamps
    created_at: str = ""
    updated_at: str = ""

    # Children (loaded separately for tree projections)
    children: list[Block] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "page_id": self.page_id,
            "type": self.type.value if isinstance(self.type, BlockType) else self.type,
            "content": self.content,
            "properties": dict(self.properties),
            "parent_id": self.parent_id,
            "child_ids": list(self.child_ids),
            "position": self.position,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Block:
        """Create from dictionary."""
        return cls(
            id=_as_id(data.get("id")) or "",
            page_id=_as_id(_pick(data, "page_id", "pageId")) or "",
            type=BlockType.parse(data.get("type") or BlockType.TEXT),
            content=str(data.get("content") or ""),
            properties=dict(data.get("properties") or {}),
            parent_id=_as_id(_pick(data, "parent_id", "parentId")),
            child_ids=[str(c) for c in (_pick(data, "child_ids", "childIds") or [])],
            position=int(data.get("position") or 0),
            created_at=str(_pick(data, "created_at", "createdAt", default="")),
            updated_at=str(_pick(data, "updated_at", "updatedAt", default="")),
        )

    def plain_text(self) -> str:
        """Get the block's text content."""
        return self.content

    @property
    def checked(self) -> bool:
        """Whether a todo block is ticked."""
        return bool(self.properties.get("checked", False))
