"""Block-based document model for mdnotes.

Key components:
- blocks_models: Page, Block, BlockType dataclasses
- blocks_db: CRUD operations for pages and blocks
- blocks_tree: Tree operations (indent, outdent, reorder, merge, projections)
- markdown_parser: Markdown -> Blocks conversion
- markdown_renderer: Blocks -> Markdown export
- page_snapshot: Whole-page export and import
- blocks_integrity: Tree consistency checks and repair
"""

from .blocks_models import Block, BlockType, Page
from .blocks_db import (
    create_block,
    create_page,
    delete_block,
    delete_page,
    get_all_page_blocks,
    get_block,
    get_child_blocks,
    get_page,
    get_page_blocks,
    list_pages,
    update_block,
    update_block_content,
    update_block_type,
    update_page,
)
from .blocks_tree import (
    build_tree,
    create_block_below,
    delete_and_merge,
    flatten_tree,
    get_ancestors,
    get_descendants,
    get_siblings,
    indent_block,
    outdent_block,
    reorder_blocks,
    split_block,
    update_block_positions,
)
from .markdown_parser import create_page_from_markdown, markdown_to_blocks, parse_markdown
from .markdown_renderer import blocks_to_markdown, render_markdown
from .page_snapshot import export_page, import_page

__all__ = [
    "Block",
    "BlockType",
    "Page",
    "create_block",
    "create_page",
    "delete_block",
    "delete_page",
    "get_all_page_blocks",
    "get_block",
    "get_child_blocks",
    "get_page",
    "get_page_blocks",
    "list_pages",
    "update_block",
    "update_block_content",
    "update_block_type",
    "update_page",
    "build_tree",
    "create_block_below",
    "delete_and_merge",
    "flatten_tree",
    "get_ancestors",
    "get_descendants",
    "get_siblings",
    "indent_block",
    "outdent_block",
    "reorder_blocks",
    "split_block",
    "update_block_positions",
    "create_page_from_markdown",
    "markdown_to_blocks",
    "parse_markdown",
    "blocks_to_markdown",
    "render_markdown",
    "export_page",
    "import_page",
]
