"""Render blocks to Markdown.

This module converts a page's blocks back to Markdown text for export.
Blocks are written in document order, one line per block (code fences
excepted), with nested blocks indented two spaces per level. Toggle blocks
have no Markdown form and are written as plain text.
"""

from __future__ import annotations

from ..notes_db import NotesDB
from ..settings import settings
from .blocks_models import Block, BlockType
from .blocks_tree import iter_page_blocks
from .markdown_parser import FENCE

_PREFIXES: dict[BlockType, str] = {
    BlockType.H1: "# ",
    BlockType.H2: "## ",
    BlockType.H3: "### ",
    BlockType.BULLET: "- ",
    BlockType.NUMBERED: "1. ",
    BlockType.QUOTE: "> ",
}


def render_block_line(block: Block, depth: int = 0, *, fenced_code: bool | None = None) -> str:
    """Render a single block to Markdown.

    Args:
        block: The block to render.
        depth: Nesting depth, used for indentation.
        fenced_code: Write code blocks as fenced regions (defaults to
            ``settings.fenced_code``); otherwise as a single backtick line.

    Returns:
        Markdown text without a trailing newline.
    """
    if fenced_code is None:
        fenced_code = settings.fenced_code

    indent = "  " * depth
    block_type = block.type if isinstance(block.type, BlockType) else BlockType(block.type)

    if block_type == BlockType.CODE:
        if not fenced_code:
            return f"{indent}{FENCE}{block.content}"
        language = block.properties.get("language") or ""
        lines = [f"{FENCE}{language}", *block.content.split("\n"), FENCE]
        return "\n".join(f"{indent}{line}" for line in lines)

    if block_type == BlockType.TODO:
        mark = "x" if block.checked else " "
        return f"{indent}- [{mark}] {block.content}"

    return f"{indent}{_PREFIXES.get(block_type, '')}{block.content}"


def render_markdown(
    blocks: list[tuple[Block, int]] | list[Block],
    *,
    fenced_code: bool | None = None,
) -> str:
    """Render blocks to Markdown.

    Args:
        blocks: Blocks in output order, either bare (rendered at depth 0)
            or paired with their depth.
        fenced_code: Code block handling (see render_block_line).

    Returns:
        Markdown text, lines joined by newlines.
    """
    lines = []
    for item in blocks:
        block, depth = item if isinstance(item, tuple) else (item, 0)
        lines.append(render_block_line(block, depth, fenced_code=fenced_code))
    return "\n".join(lines)


def blocks_to_markdown(store: NotesDB, page_id: str, *, fenced_code: bool | None = None) -> str:
    """Export a page as Markdown.

    Raises:
        NotFoundError: If the page does not exist.
    """
    return render_markdown(iter_page_blocks(store, page_id), fenced_code=fenced_code)
