from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    val = raw.strip().lower()
    if val in {"1", "true", "yes", "y", "on"}:
        return True
    if val in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclass(frozen=True)
class Settings:
    """Static settings for the notes engine.

    Everything is local: a data directory holding the SQLite database and
    the rotating log file.
    """

    root_dir: Path = Path(__file__).resolve().parents[2]
    data_dir: Path = Path(os.environ.get("MDNOTES_DATA_DIR", str(root_dir / ".mdnotes-data")))
    log_level: str = os.environ.get("MDNOTES_LOG_LEVEL", "INFO")
    log_max_bytes: int = int(os.environ.get("MDNOTES_LOG_MAX_BYTES", str(1_000_000)))
    log_backup_count: int = int(os.environ.get("MDNOTES_LOG_BACKUP_COUNT", "3"))

    # =========================================================================
    # Markdown codec
    # =========================================================================
    # When enabled, an opening ``` fence swallows every line up to the closing
    # fence and the body becomes a single code block. When disabled, the
    # legacy line-granular rule applies: only the fence line itself becomes a
    # code block and the body lines are classified on their own.
    # =========================================================================
    fenced_code: bool = _env_bool("MDNOTES_FENCED_CODE", True)

    default_page_title: str = os.environ.get("MDNOTES_DEFAULT_PAGE_TITLE", "Untitled")
    default_page_icon: str = os.environ.get("MDNOTES_DEFAULT_PAGE_ICON", "\U0001F4C4")

    @property
    def db_path(self) -> Path:
        return self.data_dir / "notes" / "notes.db"

    @property
    def log_path(self) -> Path:
        return self.data_dir / "mdnotes.log"


settings = Settings()
