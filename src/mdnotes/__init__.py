"""mdnotes: a block-based notes engine on SQLite.

Pages are trees of typed content blocks. The store lives in
``mdnotes.notes_db``; page and block operations, tree editing and the
Markdown codec live in ``mdnotes.blocks``.
"""

__version__ = "0.1.0"
