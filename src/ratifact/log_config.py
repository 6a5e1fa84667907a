"""Centralized logging: rotating log file plus an in-memory ring buffer.

The terminal belongs to the interactive display, so while the TUI runs
nothing is logged to it. The MemoryLogHandler keeps the most recent records
for the log popup. Call setup_logging() once at startup.
"""

import logging
import threading
from collections import deque
from logging.handlers import RotatingFileHandler
from pathlib import Path

from ratifact.config import config_dir

DEFAULT_LOG_FILE = "ratifact.log"
_RING_SIZE = 500


class MemoryLogHandler(logging.Handler):
    """Keeps the last formatted records in memory for display."""

    def __init__(self, capacity: int = _RING_SIZE):
        super().__init__()
        self._records: deque[str] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def emit(self, record: logging.LogRecord):
        try:
            line = self.format(record)
            with self._lock:
                self._records.append(line)
        except Exception:
            self.handleError(record)

    def lines(self, limit: int | None = None) -> list[str]:
        with self._lock:
            records = list(self._records)
        return records[-limit:] if limit else records

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


def get_memory_handler() -> MemoryLogHandler | None:
    """The installed MemoryLogHandler, if setup_logging() has run."""
    for handler in logging.getLogger().handlers:
        if isinstance(handler, MemoryLogHandler):
            return handler
    return None


def setup_logging(
    debug: bool = False,
    log_file: Path | None = None,
    console: bool = False,
) -> MemoryLogHandler:
    """
    Configure the root logger.

    Safe to call multiple times: a second call only adjusts the level.

    Args:
        debug: Log at DEBUG instead of INFO
        log_file: Log file path (defaults to the config directory)
        console: Also log to stderr (CLI commands only, never the TUI)

    Returns:
        The MemoryLogHandler backing the log popup
    """
    level = logging.DEBUG if debug else logging.INFO
    root = logging.getLogger()
    root.setLevel(level)

    existing = get_memory_handler()
    if existing is not None:
        return existing

    fmt = logging.Formatter(
        "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )

    memory = MemoryLogHandler()
    memory.setFormatter(fmt)
    root.addHandler(memory)

    log_path = log_file or config_dir() / DEFAULT_LOG_FILE
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_path, maxBytes=1_000_000, backupCount=3)
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)
    except OSError as e:
        root.warning("Cannot open log file %s: %s", log_path, e)

    if console:
        stream = logging.StreamHandler()
        stream.setLevel(logging.WARNING)
        stream.setFormatter(fmt)
        root.addHandler(stream)

    # Suppress noisy third-party loggers
    logging.getLogger("watchdog").setLevel(logging.WARNING)

    return memory
