"""Tests for logging setup."""

import logging

import pytest

from ratifact.log_config import MemoryLogHandler, get_memory_handler, setup_logging


@pytest.fixture
def clean_root():
    """Restore the root logger after a test installs handlers."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    for handler in handlers:
        root.removeHandler(handler)
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TestMemoryLogHandler:
    def test_keeps_latest(self):
        handler = MemoryLogHandler(capacity=2)
        logger = logging.getLogger("ratifact.test.memory")
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        try:
            for i in range(3):
                logger.info("line %d", i)
        finally:
            logger.removeHandler(handler)

        assert handler.lines() == ["line 1", "line 2"]
        assert handler.lines(1) == ["line 2"]

    def test_clear(self):
        handler = MemoryLogHandler()
        handler.emit(logging.makeLogRecord({"msg": "hello"}))
        handler.clear()
        assert handler.lines() == []


class TestSetupLogging:
    def test_installs_memory_and_file(self, clean_root, tmp_path):
        log_file = tmp_path / "logs" / "ratifact.log"

        memory = setup_logging(log_file=log_file)
        logging.getLogger("ratifact.test").info("scan started")

        assert get_memory_handler() is memory
        assert any("scan started" in line for line in memory.lines())
        assert log_file.exists()
        assert clean_root.level == logging.INFO

    def test_idempotent(self, clean_root, tmp_path):
        first = setup_logging(log_file=tmp_path / "a.log")
        second = setup_logging(debug=True, log_file=tmp_path / "a.log")

        assert first is second
        assert clean_root.level == logging.DEBUG
        assert len([h for h in clean_root.handlers if isinstance(h, MemoryLogHandler)]) == 1

    def test_console_handler_only_for_warnings(self, clean_root, tmp_path):
        setup_logging(log_file=tmp_path / "a.log", console=True)
        streams = [
            h
            for h in clean_root.handlers
            if type(h) is logging.StreamHandler
        ]
        assert len(streams) == 1
        assert streams[0].level == logging.WARNING

    def test_no_console_by_default(self, clean_root, tmp_path):
        setup_logging(log_file=tmp_path / "a.log")
        assert not [h for h in clean_root.handlers if type(h) is logging.StreamHandler]

    def test_unwritable_log_file(self, clean_root, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")

        memory = setup_logging(log_file=blocker / "ratifact.log")

        assert any("Cannot open log file" in line for line in memory.lines())

    def test_quiets_watchdog(self, clean_root, tmp_path):
        setup_logging(log_file=tmp_path / "a.log")
        assert logging.getLogger("watchdog").level == logging.WARNING
