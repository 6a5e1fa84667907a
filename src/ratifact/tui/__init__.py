"""Interactive terminal UI for ratifact."""

from ratifact.config import AppConfig
from ratifact.log_config import get_memory_handler
from ratifact.session import SessionController
from ratifact.store import ArtifactStore


def run_tui(config: AppConfig) -> None:
    """Run the interactive TUI.

    Args:
        config: Loaded application config
    """
    from ratifact.tui.app import RatifactApp

    store = ArtifactStore(config.database_path)
    try:
        controller = SessionController(store, config)
        app = RatifactApp(controller, log_handler=get_memory_handler())
        app.run()
    finally:
        store.close()
