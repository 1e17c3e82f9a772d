"""Command line interface for mdnotes.

Usage:
    mdnotes [--db PATH] COMMAND [args...]

Commands:
    pages                     List pages
    create-page TITLE         Create a new page
    blocks PAGE_ID            Show the block tree of a page
    import-md PAGE_ID FILE    Import Markdown into a page
    export-md PAGE_ID         Export a page as Markdown
    export-json PAGE_ID       Export a page snapshot as JSON
    import-json FILE          Import a page snapshot
    indent BLOCK_ID           Indent a block under its previous sibling
    outdent BLOCK_ID          Outdent a block one level
    check PAGE_ID             Check a page's block tree
    repair PAGE_ID            Repair a page's block tree
    delete-page PAGE_ID       Delete a page and its blocks

Environment Variables:
    MDNOTES_DATA_DIR          Data directory (database and log file)
    MDNOTES_LOG_LEVEL         Logging level (default: INFO)
    MDNOTES_FENCED_CODE       Treat ``` fences as one code block (default: true)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Callable

from . import __version__
from .blocks import blocks_db, blocks_integrity, blocks_tree, markdown_parser, markdown_renderer, page_snapshot
from .blocks.blocks_models import Block
from .errors import MdNotesError, NotFoundError, error_response, get_exit_code
from .logging_setup import configure_logging
from .notes_db import NotesDB
from .settings import settings

logger = logging.getLogger(__name__)


def _read_text(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _write_text(text: str, output: str | None) -> None:
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
        print(f"Wrote {output}")
    else:
        print(text)


# =============================================================================
# Commands
# =============================================================================


def cmd_pages(store: NotesDB, args: argparse.Namespace) -> int:
    """List pages."""
    pages = blocks_db.list_pages(store, favorites_only=args.favorites)

    print(f"\n{'ID':<20} {'Title':<40} {'Icon':<6} {'Parent'}")
    print("-" * 80)
    for page in pages:
        icon = page.icon or "-"
        title = ("* " if page.is_favorite else "") + page.title
        print(f"{page.id:<20} {title:<40} {icon:<6} {page.parent_id or '-'}")

    print(f"\nTotal: {len(pages)} pages")
    return 0


def cmd_create_page(store: NotesDB, args: argparse.Namespace) -> int:
    """Create a new page, optionally filled from a Markdown file."""
    if args.markdown:
        page = markdown_parser.create_page_from_markdown(
            store,
            args.title,
            _read_text(args.markdown),
            parent_id=args.parent,
            fenced_code=args.fenced_code,
        )
    else:
        page = blocks_db.create_page(store, args.title, args.parent, icon=args.icon)

    print(f"Created page: {page.id}")
    print(f"Title: {page.title}")
    return 0


def cmd_blocks(store: NotesDB, args: argparse.Namespace) -> int:
    """Show the block tree of a page."""
    roots = blocks_tree.get_page_tree(store, args.page_id)

    def print_block(block: Block, indent: int = 0) -> None:
        prefix = "  " * indent
        text = block.plain_text()[:50] + ("..." if len(block.plain_text()) > 50 else "")
        print(f"{prefix}[{block.position}] {block.type.value}: {text or '(empty)'}  ({block.id})")
        for child in block.children:
            print_block(child, indent + 1)

    print(f"\nBlocks in page {args.page_id}:")
    print("-" * 60)
    for block in roots:
        print_block(block)

    print(f"\nTotal: {len(roots)} root blocks")
    return 0


def cmd_import_md(store: NotesDB, args: argparse.Namespace) -> int:
    """Import Markdown into a page."""
    blocks = markdown_parser.markdown_to_blocks(
        store,
        args.page_id,
        _read_text(args.file),
        replace=args.replace,
        fenced_code=args.fenced_code,
    )
    print(f"Imported {len(blocks)} blocks into {args.page_id}")
    return 0


def cmd_export_md(store: NotesDB, args: argparse.Namespace) -> int:
    """Export a page as Markdown."""
    text = markdown_renderer.blocks_to_markdown(store, args.page_id, fenced_code=args.fenced_code)
    _write_text(text, args.output)
    return 0


def cmd_export_json(store: NotesDB, args: argparse.Namespace) -> int:
    """Export a page snapshot."""
    snapshot = page_snapshot.export_page(store, args.page_id)
    if args.output:
        page_snapshot.save_snapshot(args.output, snapshot)
        print(f"Wrote {args.output}")
    else:
        print(json.dumps(snapshot, indent=2, ensure_ascii=False))
    return 0


def cmd_import_json(store: NotesDB, args: argparse.Namespace) -> int:
    """Import a page snapshot as a new page."""
    snapshot = page_snapshot.load_snapshot(args.file)
    if args.parent is not None:
        page = page_snapshot.import_page(store, snapshot, parent_id=args.parent)
    else:
        page = page_snapshot.import_page(store, snapshot)
    print(f"Imported page: {page.id}")
    print(f"Title: {page.title}")
    return 0


def cmd_indent(store: NotesDB, args: argparse.Namespace) -> int:
    """Indent a block."""
    if blocks_tree.indent_block(store, args.block_id):
        print(f"Indented {args.block_id}")
    else:
        print(f"Cannot indent {args.block_id}: no previous sibling")
    return 0


def cmd_outdent(store: NotesDB, args: argparse.Namespace) -> int:
    """Outdent a block."""
    if blocks_tree.outdent_block(store, args.block_id):
        print(f"Outdented {args.block_id}")
    else:
        print(f"Cannot outdent {args.block_id}: already at the top level")
    return 0


def _print_issues(issues: list[blocks_integrity.TreeIssue]) -> None:
    for issue in issues:
        where = f" [{issue.block_id}]" if issue.block_id else ""
        details = f" ({issue.details})" if issue.details else ""
        print(f"{issue.severity.value.upper():<9} {issue.kind}{where}: {issue.title}{details}")


def cmd_check(store: NotesDB, args: argparse.Namespace) -> int:
    """Check a page's block tree. Exits 1 if anything critical is found."""
    issues = blocks_integrity.check_page_tree(store, args.page_id)
    if args.database:
        issues.extend(blocks_integrity.check_database(store))

    if not issues:
        print(f"Page {args.page_id}: OK")
        return 0

    _print_issues(issues)
    critical = any(i.severity == blocks_integrity.Severity.CRITICAL for i in issues)
    return 1 if critical else 0


def cmd_repair(store: NotesDB, args: argparse.Namespace) -> int:
    """Repair a page's block tree."""
    issues = blocks_integrity.repair_page_tree(store, args.page_id)
    _print_issues(issues)
    print(f"Page {args.page_id}: {len(issues)} issue(s) handled")
    return 0


def cmd_delete_page(store: NotesDB, args: argparse.Namespace) -> int:
    """Delete a page."""
    if not blocks_db.delete_page(store, args.page_id):
        raise NotFoundError(
            f"Page not found: {args.page_id}", resource_type="page", resource_id=args.page_id
        )
    print(f"Deleted page: {args.page_id}")
    return 0


# =============================================================================
# Parser
# =============================================================================


def _add_fenced_code(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--fenced-code",
        action=argparse.BooleanOptionalAction,
        default=None,
        help=f"Treat ``` fences as one code block (default: {settings.fenced_code})",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="mdnotes",
        description="Block-based notes with Markdown import/export",
    )
    parser.add_argument(
        "--db",
        default=None,
        help=f"Database file (default: {settings.db_path})",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=settings.log_level,
        help=f"Logging level (default: {settings.log_level})",
    )
    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    def add(name: str, func: Callable[[NotesDB, argparse.Namespace], int], help: str) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help)
        p.set_defaults(func=func)
        return p

    p = add("pages", cmd_pages, "List pages")
    p.add_argument("--favorites", action="store_true", help="Only favorite pages")

    p = add("create-page", cmd_create_page, "Create a new page")
    p.add_argument("title")
    p.add_argument("--parent", help="Parent page ID")
    p.add_argument("--icon", help="Page icon")
    p.add_argument("--markdown", metavar="FILE", help="Fill the page from a Markdown file ('-' for stdin)")
    _add_fenced_code(p)

    p = add("blocks", cmd_blocks, "Show the block tree of a page")
    p.add_argument("page_id")

    p = add("import-md", cmd_import_md, "Import Markdown into a page")
    p.add_argument("page_id")
    p.add_argument("file", help="Markdown file ('-' for stdin)")
    p.add_argument("--replace", action="store_true", help="Delete the page's blocks first")
    _add_fenced_code(p)

    p = add("export-md", cmd_export_md, "Export a page as Markdown")
    p.add_argument("page_id")
    p.add_argument("--output", "-o", help="Output file (default: stdout)")
    _add_fenced_code(p)

    p = add("export-json", cmd_export_json, "Export a page snapshot as JSON")
    p.add_argument("page_id")
    p.add_argument("--output", "-o", help="Output file (default: stdout)")

    p = add("import-json", cmd_import_json, "Import a page snapshot")
    p.add_argument("file")
    p.add_argument("--parent", help="Parent page ID for the imported page")

    p = add("indent", cmd_indent, "Indent a block under its previous sibling")
    p.add_argument("block_id")

    p = add("outdent", cmd_outdent, "Outdent a block one level")
    p.add_argument("block_id")

    p = add("check", cmd_check, "Check a page's block tree")
    p.add_argument("page_id")
    p.add_argument("--database", action="store_true", help="Also run SQLite integrity checks")

    p = add("repair", cmd_repair, "Repair a page's block tree")
    p.add_argument("page_id")

    p = add("delete-page", cmd_delete_page, "Delete a page and its blocks")
    p.add_argument("page_id")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    configure_logging(level=args.log_level)

    store = NotesDB(args.db)
    try:
        return args.func(store, args)
    except MdNotesError as e:
        logger.debug("Command %s failed: %s", args.command, e)
        response = error_response(e)
        print(f"Error ({response.error_type}): {response.message}", file=sys.stderr)
        return get_exit_code(e)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
