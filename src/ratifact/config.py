"""Bootstrap configuration for ratifact.

The config file only says where things live and how the background machinery
is tuned. The retention policy itself is stored in the database and validated
by the safety engine before use.
"""

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

CONFIG_ENV = "RATIFACT_CONFIG"
DB_ENV = "RATIFACT_DB"
DEBUG_ENV = "RATIFACT_DEBUG"


def config_dir() -> Path:
    """Directory holding the config file, database and log."""
    base = os.environ.get("XDG_CONFIG_HOME") or os.path.expanduser("~/.config")
    return Path(base) / "ratifact"


def default_config_path() -> Path:
    return Path(os.environ[CONFIG_ENV]) if os.environ.get(CONFIG_ENV) else config_dir() / "config.json"


class AppConfig(BaseModel):
    """Process configuration loaded at startup."""

    database_path: str = Field(
        default_factory=lambda: str(config_dir() / "ratifact.db"),
        description="SQLite database file",
    )
    scan_paths: list[str] = Field(
        default_factory=lambda: ["~"],
        description="Roots scanned when the stored policy names none",
    )
    debug_logs_enabled: bool = Field(False, description="Log at DEBUG level")
    debounce_seconds: float = Field(1.0, gt=0, description="Quiet period before a coalesced rescan")
    poll_interval_seconds: float = Field(
        300.0, gt=0, description="Rescan interval when filesystem notifications are unavailable"
    )
    retention_interval_seconds: float = Field(
        3600.0, gt=0, description="Interval of the automatic removal cycle"
    )
    max_depth: int = Field(15, gt=0, description="Maximum traversal depth below a scan root")
    max_workers: int = Field(4, gt=0, description="Concurrent background jobs")


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(path: Path | None = None) -> AppConfig:
    """
    Load the config file and apply environment overrides.

    A missing file yields the defaults; an unreadable or invalid one is
    logged and ignored.

    Args:
        path: Config file (defaults to $RATIFACT_CONFIG or the config directory)

    Returns:
        AppConfig
    """
    path = path or default_config_path()
    data: dict = {}
    if path.exists():
        try:
            data = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable config %s: %s", path, e)
            data = {}

    try:
        config = AppConfig.model_validate(data)
    except ValidationError as e:
        logger.warning("Ignoring invalid config %s: %s", path, e)
        config = AppConfig()

    if os.environ.get(DB_ENV):
        config.database_path = os.environ[DB_ENV]
    if os.environ.get(DEBUG_ENV):
        config.debug_logs_enabled = _truthy(os.environ[DEBUG_ENV])
    return config


def save_config(config: AppConfig, path: Path | None = None) -> Path:
    """Write config as JSON and return the path written."""
    path = path or default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(config.model_dump_json(indent=2))
    return path
