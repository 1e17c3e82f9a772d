"""Parse Markdown into blocks.

The importer is line-oriented. Each non-blank line is trimmed and matched
against literal prefixes, first match wins:

    "# "  "## "  "### "        headings
    "- [ ] "  "- [x] "         todo; "x" or "X" marks it checked, and an
                               empty todo ("- [ ]" once trimmed) has no
                               trailing space
    "- "  "* "                 bullet
    "1. " (any digits)         numbered
    "> "                       quote
    "```"                      code
    anything else              text

Blocks are created flat at the root of the page; indentation is not read
as nesting. Inline markup is kept verbatim in the content.

Code fences: by default an opening fence swallows every line up to the
closing fence (or the end of the input) into one code block, with the info
string kept as ``properties["language"]``. With ``fenced_code=False`` every
line starting with three backticks becomes its own code block and the lines
between fences are classified like any other line.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from ..notes_db import NotesDB
from ..settings import settings
from .blocks_db import _next_position, _require_page, create_block, create_page
from .blocks_models import Block, BlockType, Page
from .blocks_tree import ensure_root_block

logger = logging.getLogger(__name__)

FENCE = "```"

_TODO_RE = re.compile(r"^- \[([ xX])\](?: |$)")
_NUMBERED_RE = re.compile(r"^\d+\. ")

_PREFIXES: list[tuple[str, BlockType]] = [
    ("# ", BlockType.H1),
    ("## ", BlockType.H2),
    ("### ", BlockType.H3),
]


def classify_line(line: str) -> tuple[BlockType, str, dict[str, Any]]:
    """Classify one line of Markdown.

    Args:
        line: A single line; surrounding whitespace is ignored.

    Returns:
        Tuple of (block type, content with the prefix stripped, properties).
    """
    trimmed = line.strip()

    for prefix, block_type in _PREFIXES:
        if trimmed.startswith(prefix):
            return block_type, trimmed[len(prefix):], {}

    match = _TODO_RE.match(trimmed)
    if match:
        return BlockType.TODO, trimmed[match.end():], {"checked": match.group(1) in "xX"}

    if trimmed.startswith("- ") or trimmed.startswith("* "):
        return BlockType.BULLET, trimmed[2:], {}

    match = _NUMBERED_RE.match(trimmed)
    if match:
        return BlockType.NUMBERED, trimmed[match.end():], {}

    if trimmed.startswith("> "):
        return BlockType.QUOTE, trimmed[2:], {}

    if trimmed.startswith(FENCE):
        return BlockType.CODE, trimmed[len(FENCE):], {}

    return BlockType.TEXT, trimmed, {}


def _is_closing_fence(line: str) -> bool:
    stripped = line.strip()
    return stripped.startswith(FENCE) and not stripped.strip("`")


def parse_markdown(markdown: str, *, fenced_code: bool | None = None) -> list[dict[str, Any]]:
    """Parse Markdown text into block data structures.

    Args:
        markdown: The Markdown text to parse.
        fenced_code: Treat fenced regions as single code blocks (defaults to
            ``settings.fenced_code``).

    Returns:
        List of block data dictionaries with type, content, properties and
        position, ready for create_block().
    """
    if fenced_code is None:
        fenced_code = settings.fenced_code

    lines = markdown.splitlines()
    blocks: list[dict[str, Any]] = []
    i = 0

    while i < len(lines):
        line = lines[i]
        i += 1
        if not line.strip():
            continue

        block_type, content, properties = classify_line(line)

        if block_type == BlockType.CODE and fenced_code:
            body: list[str] = []
            while i < len(lines) and not _is_closing_fence(lines[i]):
                body.append(lines[i])
                i += 1
            i += 1  # closing fence
            language = content.strip()
            content = "\n".join(body)
            properties = {"language": language} if language else {}

        blocks.append({
            "type": block_type,
            "content": content,
            "properties": properties,
            "position": len(blocks),
        })

    return blocks


def markdown_to_blocks(
    store: NotesDB,
    page_id: str,
    markdown: str,
    *,
    replace: bool = False,
    fenced_code: bool | None = None,
) -> list[Block]:
    """Import Markdown text into a page as root-level blocks.

    Args:
        store: The notes database.
        page_id: The page to import into.
        markdown: The Markdown text.
        replace: Delete the page's existing blocks first. Otherwise the new
            blocks follow the existing root blocks.
        fenced_code: Code fence handling (see module docstring).

    Returns:
        The created blocks in order.

    Raises:
        NotFoundError: If the page does not exist.
    """
    parsed = parse_markdown(markdown, fenced_code=fenced_code)

    with store.transaction() as conn:
        _require_page(conn, page_id)
        if replace:
            conn.execute("DELETE FROM blocks WHERE page_id = ?", (page_id,))
        offset = _next_position(conn, page_id, None)

        created = [
            create_block(
                store,
                page_id=page_id,
                type=data["type"],
                content=data["content"],
                position=offset + data["position"],
                properties=data["properties"],
            )
            for data in parsed
        ]

    logger.info("Imported %d blocks into page %s", len(created), page_id)
    return created


def create_page_from_markdown(
    store: NotesDB,
    title: str,
    markdown: str,
    *,
    parent_id: str | None = None,
    fenced_code: bool | None = None,
) -> Page:
    """Create a page whose blocks are exactly the imported Markdown.

    A document with no content lines still gets the initial empty block.
    """
    with store.transaction():
        page = create_page(store, title, parent_id)
        markdown_to_blocks(store, page.id, markdown, replace=True, fenced_code=fenced_code)
        ensure_root_block(store, page.id)
    return page
