"""Main TUI application for ratifact."""

from textual.app import App
from textual.binding import Binding
from textual.screen import Screen

from ratifact.log_config import MemoryLogHandler
from ratifact.models import Modal, Snapshot
from ratifact.session import SessionController
from ratifact.tui.screens import (
    ConfirmScreen,
    CredentialScreen,
    FatalScreen,
    MainScreen,
    SettingsScreen,
)

CONFIRM_MODALS = (
    Modal.CONFIRM_DELETE,
    Modal.CONFIRM_BULK_DELETE,
    Modal.CONFIRM_AUTO_REMOVAL_ENABLE,
    Modal.CONFIRM_EXCLUDE,
)


class RatifactApp(App):
    """Interactive build artifact browser."""

    TITLE = "ratifact"
    SUB_TITLE = "Build Artifact Tracker"

    CSS_PATH = "styles.tcss"

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("?", "help", "Help"),
        Binding("r", "refresh", "Refresh"),
    ]

    def __init__(
        self,
        controller: SessionController,
        log_handler: MemoryLogHandler | None = None,
        poll_interval: float = 0.5,
        start_controller: bool = True,
    ):
        super().__init__()
        self.controller = controller
        self.log_handler = log_handler
        self.poll_interval = poll_interval
        self.start_controller = start_controller
        self.main_screen = MainScreen()
        self._modal_shown = Modal.NONE
        self._modal_screen: Screen | None = None
        self._fatal_shown = False

    def on_mount(self) -> None:
        """Called when the app is mounted."""
        self.push_screen(self.main_screen)
        if self.start_controller:
            self.controller.start()
        self.set_interval(self.poll_interval, self._tick)
        self.refresh_snapshot()

    def on_unmount(self) -> None:
        self.controller.shutdown()

    def _tick(self) -> None:
        self.controller.poll()
        self.refresh_snapshot()

    def refresh_snapshot(self) -> None:
        """Redraw everything from a fresh controller snapshot."""
        snapshot = self.controller.snapshot()
        self.main_screen.update_snapshot(snapshot)
        self._sync_modal(snapshot)
        self._sync_fatal(snapshot)

    def _sync_modal(self, snapshot: Snapshot) -> None:
        if snapshot.modal == self._modal_shown:
            return

        if self._modal_screen is not None and self.screen is self._modal_screen:
            self.pop_screen()
        self._modal_screen = None
        self._modal_shown = snapshot.modal

        if snapshot.modal in CONFIRM_MODALS:
            screen = ConfirmScreen(snapshot.modal, snapshot.modal_message, snapshot.pending_targets)
        elif snapshot.modal == Modal.SETTINGS_EDIT:
            screen = SettingsScreen(snapshot)
        elif snapshot.modal == Modal.CREDENTIAL_PROMPT:
            screen = CredentialScreen(snapshot.modal_message)
        else:
            return
        self._modal_screen = screen
        self.push_screen(screen)

    def _sync_fatal(self, snapshot: Snapshot) -> None:
        if snapshot.fatal_error and not self._fatal_shown:
            self._fatal_shown = True
            self.push_screen(FatalScreen(snapshot.fatal_error))
        elif not snapshot.fatal_error:
            self._fatal_shown = False

    def action_refresh(self) -> None:
        """Rescan all scan paths."""
        self.controller.request_scan()
        self.refresh_snapshot()

    def action_help(self) -> None:
        """Show help information."""
        self.notify(
            "Space select, d delete, D delete all, x exclude, b rebuild, "
            "a auto removal, o settings, h history, l logs",
            title="Help",
            timeout=5,
        )
