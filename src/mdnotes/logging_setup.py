"""Logging configuration for mdnotes.

Console output plus a size-capped rotating log file in the data directory.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .settings import settings

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_configured = False


def configure_logging(
    *,
    level: str | None = None,
    log_path: Path | None = None,
    console: bool = True,
) -> None:
    """Install handlers on the ``mdnotes`` logger.

    Safe to call more than once; only the first call installs handlers.

    Args:
        level: Log level name. Defaults to ``settings.log_level``.
        log_path: Rotating log file. Defaults to ``settings.log_path``.
        console: Whether to also log to stderr.
    """
    global _configured
    if _configured:
        return

    root = logging.getLogger("mdnotes")
    root.setLevel((level or settings.log_level).upper())
    formatter = logging.Formatter(_FORMAT)

    path = log_path or settings.log_path
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    except OSError as e:
        # A read-only data dir must not stop the CLI from working.
        logging.getLogger(__name__).warning("File logging disabled (%s): %s", path, e)

    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(logging.WARNING)
        root.addHandler(stream_handler)

    _configured = True
