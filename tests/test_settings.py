"""Tests for settings and logging setup."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from mdnotes import logging_setup
from mdnotes.notes_db import default_db_path
from mdnotes.settings import Settings, _env_bool


class TestEnvBool:
    @pytest.mark.parametrize("raw", ["1", "true", "YES", " on ", "y"])
    def test_truthy(self, monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
        monkeypatch.setenv("MDNOTES_TEST_FLAG", raw)
        assert _env_bool("MDNOTES_TEST_FLAG") is True

    @pytest.mark.parametrize("raw", ["0", "false", "No", "off"])
    def test_falsy(self, monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
        monkeypatch.setenv("MDNOTES_TEST_FLAG", raw)
        assert _env_bool("MDNOTES_TEST_FLAG", True) is False

    def test_unset_and_garbage_use_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MDNOTES_TEST_FLAG", raising=False)
        assert _env_bool("MDNOTES_TEST_FLAG", True) is True

        monkeypatch.setenv("MDNOTES_TEST_FLAG", "maybe")
        assert _env_bool("MDNOTES_TEST_FLAG", False) is False


class TestSettings:
    def test_paths_follow_data_dir(self, tmp_path: Path) -> None:
        s = Settings(data_dir=tmp_path)
        assert s.db_path == tmp_path / "notes" / "notes.db"
        assert s.log_path == tmp_path / "mdnotes.log"

    def test_settings_are_frozen(self) -> None:
        s = Settings()
        with pytest.raises(AttributeError):
            s.fenced_code = False  # type: ignore[misc]

    def test_default_db_path_reads_environment(self, isolated_data_dir: Path) -> None:
        assert default_db_path() == isolated_data_dir / "notes" / "notes.db"


class TestConfigureLogging:
    @pytest.fixture
    def fresh_logger(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr(logging_setup, "_configured", False)
        logger = logging.getLogger("mdnotes")
        saved_handlers, saved_level = list(logger.handlers), logger.level
        yield logger
        for handler in logger.handlers:
            if handler not in saved_handlers:
                handler.close()
        logger.handlers = saved_handlers
        logger.setLevel(saved_level)

    def test_installs_file_handler_once(self, fresh_logger: logging.Logger, tmp_path: Path) -> None:
        log_path = tmp_path / "logs" / "mdnotes.log"

        logging_setup.configure_logging(level="debug", log_path=log_path, console=False)
        logging_setup.configure_logging(level="debug", log_path=log_path, console=False)

        file_handlers = [h for h in fresh_logger.handlers if isinstance(h, RotatingFileHandler)]
        assert len(file_handlers) == 1
        assert fresh_logger.level == logging.DEBUG

        logging.getLogger("mdnotes.blocks.blocks_db").info("hello log")
        file_handlers[0].flush()
        assert "hello log" in log_path.read_text(encoding="utf-8")

    def test_console_handler_warns_only(self, fresh_logger: logging.Logger, tmp_path: Path) -> None:
        logging_setup.configure_logging(log_path=tmp_path / "x.log", console=True)

        stream_handlers = [
            h for h in fresh_logger.handlers
            if type(h) is logging.StreamHandler
        ]
        assert len(stream_handlers) == 1
        assert stream_handlers[0].level == logging.WARNING
