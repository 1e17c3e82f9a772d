"""Run the mdnotes CLI: ``python -m mdnotes``."""

from __future__ import annotations

import sys

from .notes_cli import main

if __name__ == "__main__":
    sys.exit(main())
