"""TUI screens for ratifact."""

from datetime import datetime

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen, Screen
from textual.widgets import Button, DataTable, Footer, Header, Input, Label, Static

from ratifact.display import history_label
from ratifact.errors import RatifactError
from ratifact.models import ArtifactStatus, HistoryEvent, Modal, Snapshot
from ratifact.tui.widgets import JobsPanel, NoticeBar, ProjectSizePanel, SummaryPanel, age_cell


class MainScreen(Screen):
    """Artifact browser with jobs and status panels."""

    BINDINGS = [
        Binding("space", "toggle_select", "Select"),
        Binding("d", "delete", "Delete"),
        Binding("D", "clear_all", "Delete All"),
        Binding("x", "exclude", "Exclude"),
        Binding("b", "rebuild", "Rebuild"),
        Binding("s", "scan", "Scan"),
        Binding("a", "toggle_auto", "Auto Removal"),
        Binding("o", "settings", "Settings"),
        Binding("h", "history", "History"),
        Binding("l", "logs", "Logs"),
    ]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.selected: set[str] = set()
        self._rows: list[str] = []

    def compose(self) -> ComposeResult:
        yield Header()

        with Container(id="main-container"):
            yield SummaryPanel(id="summary")
            with Horizontal(id="browser"):
                yield DataTable(id="artifact-table")
                with Vertical(id="sizes-box"):
                    yield Static("[bold]Size by project[/bold]")
                    yield ProjectSizePanel(id="sizes")
            yield Static("[bold]Jobs[/bold]", id="jobs-header")
            yield JobsPanel(id="jobs")
            yield NoticeBar(id="notice")

        yield Footer()

    def on_mount(self) -> None:
        table = self.query_one("#artifact-table", DataTable)
        table.cursor_type = "row"
        table.add_columns("", "Path", "Language", "Size", "Age", "Status")

    @property
    def controller(self):
        return self.app.controller

    def update_snapshot(self, snapshot: Snapshot) -> None:
        """Redraw from a controller snapshot."""
        if not self.is_mounted:
            return
        self.query_one("#summary", SummaryPanel).update_snapshot(snapshot)
        self.query_one("#jobs", JobsPanel).update_snapshot(snapshot)
        self.query_one("#notice", NoticeBar).update_snapshot(snapshot)
        self.query_one("#sizes", ProjectSizePanel).update_snapshot(snapshot)

        artifacts = snapshot.visible_artifacts
        paths = [a.path for a in artifacts]
        self.selected &= set(paths)

        table = self.query_one("#artifact-table", DataTable)
        cursor = table.cursor_row
        table.clear()
        now = datetime.now()
        for artifact in artifacts:
            checkbox = "[green]X[/green]" if artifact.path in self.selected else "[ ]"
            status = (
                "[yellow]deleting[/yellow]"
                if artifact.status == ArtifactStatus.PENDING_DELETE
                else ""
            )
            table.add_row(
                checkbox,
                artifact.path,
                artifact.language,
                artifact.size_human,
                age_cell(artifact.age_days(now), snapshot.policy.retention_days),
                status,
                key=artifact.path,
            )
        self._rows = paths
        if paths and cursor is not None:
            table.move_cursor(row=min(cursor, len(paths) - 1))

    def _current_path(self) -> str | None:
        table = self.query_one("#artifact-table", DataTable)
        if table.cursor_row is None or not self._rows or table.cursor_row >= len(self._rows):
            return None
        return self._rows[table.cursor_row]

    def action_toggle_select(self) -> None:
        path = self._current_path()
        if path is None:
            return
        if path in self.selected:
            self.selected.remove(path)
        else:
            self.selected.add(path)
        self.app.refresh_snapshot()

    def action_delete(self) -> None:
        targets = sorted(self.selected) or [p for p in [self._current_path()] if p]
        if not targets:
            self.notify("No artifact selected", severity="warning")
            return
        self.controller.select_delete(targets)
        self.selected.clear()
        self.app.refresh_snapshot()

    def action_clear_all(self) -> None:
        self.controller.select_clear_all()
        self.app.refresh_snapshot()

    def action_exclude(self) -> None:
        path = self._current_path()
        if path is None:
            return
        self.controller.select_exclude(path)
        self.app.refresh_snapshot()

    def action_rebuild(self) -> None:
        path = self._current_path()
        if path is None:
            return
        try:
            handle = self.controller.request_rebuild(path)
        except RatifactError as e:
            self.notify(str(e), severity="warning")
            return
        self.notify(f"Rebuilding {handle.targets[0]}", timeout=3)

    def action_scan(self) -> None:
        self.controller.request_scan()
        self.notify("Scanning...", timeout=2)
        self.app.refresh_snapshot()

    def action_toggle_auto(self) -> None:
        self.controller.toggle_auto_removal()
        self.app.refresh_snapshot()

    def action_settings(self) -> None:
        self.controller.open_settings()
        self.app.refresh_snapshot()

    def action_history(self) -> None:
        self.app.push_screen(HistoryScreen(self.controller.history()))

    def action_logs(self) -> None:
        self.app.push_screen(LogScreen())


class ConfirmScreen(ModalScreen):
    """Yes/no confirmation for delete, exclude and auto removal."""

    BINDINGS = [
        Binding("y", "confirm", "Yes"),
        Binding("n", "cancel", "No"),
        Binding("escape", "cancel", "Cancel"),
    ]

    def __init__(self, modal: Modal, message: str, targets: list[str]):
        super().__init__()
        self.modal = modal
        self.message = message
        self.targets = targets

    def compose(self) -> ComposeResult:
        with Vertical(id="dialog"):
            yield Label(self.message, id="dialog-title")
            with VerticalScroll(id="dialog-targets"):
                shown = self.targets[:50]
                lines = "\n".join(f"• {t}" for t in shown)
                if len(self.targets) > len(shown):
                    lines += f"\n[dim]...and {len(self.targets) - len(shown)} more[/dim]"
                yield Static(lines or "[dim]Nothing would be removed right now.[/dim]")
            with Horizontal(id="dialog-buttons"):
                yield Button("Yes", variant="error", id="btn-yes")
                yield Button("No", variant="default", id="btn-no")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "btn-yes":
            self.action_confirm()
        else:
            self.action_cancel()

    def action_confirm(self) -> None:
        self.app.controller.confirm()
        self.app.refresh_snapshot()

    def action_cancel(self) -> None:
        self.app.controller.dismiss()
        self.app.refresh_snapshot()


class SettingsScreen(ModalScreen):
    """Edit retention days, scan paths, and review exclusions."""

    BINDINGS = [
        Binding("escape", "cancel", "Cancel"),
        Binding("ctrl+s", "save", "Save"),
    ]

    def __init__(self, snapshot: Snapshot):
        super().__init__()
        self.snapshot = snapshot

    def compose(self) -> ComposeResult:
        policy = self.snapshot.policy
        with Vertical(id="dialog"):
            yield Label("[bold]Settings[/bold]", id="dialog-title")
            yield Label("Retention days")
            yield Input(str(policy.retention_days), id="input-days")
            yield Label("Scan paths (comma separated)")
            yield Input(", ".join(policy.scan_paths), id="input-paths")
            yield Label(
                "Automatic removal: "
                + ("[red]on[/red]" if policy.auto_removal_enabled else "[dim]off[/dim]")
                + "  [dim](toggle with 'a' on the main screen)[/dim]"
            )
            yield Label("Excluded paths [dim](select and press Delete to remove)[/dim]")
            table = DataTable(id="exclusion-table")
            table.cursor_type = "row"
            yield table
            yield Static("", id="settings-error")
            with Horizontal(id="dialog-buttons"):
                yield Button("Save", variant="primary", id="btn-save")
                yield Button("Cancel", variant="default", id="btn-cancel")

    def on_mount(self) -> None:
        table = self.query_one("#exclusion-table", DataTable)
        table.add_columns("Path", "Added")
        for entry in self.snapshot.exclusions:
            table.add_row(entry.path, entry.created_at.strftime("%Y-%m-%d"), key=entry.path)

    def key_delete(self) -> None:
        table = self.query_one("#exclusion-table", DataTable)
        if not table.has_focus or table.row_count == 0:
            return
        path = str(table.coordinate_to_cell_key(table.cursor_coordinate).row_key.value)
        self.app.controller.remove_exclusion(path)
        table.remove_row(path)
        self.notify(f"Removed exclusion {path}, rescanning", timeout=3)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "btn-save":
            self.action_save()
        else:
            self.action_cancel()

    def action_save(self) -> None:
        days_text = self.query_one("#input-days", Input).value.strip()
        paths_text = self.query_one("#input-paths", Input).value
        error = self.query_one("#settings-error", Static)

        if not days_text.isdigit():
            error.update("[red]Retention days must be a positive number[/red]")
            return

        values = {
            "retention_days": int(days_text),
            "scan_paths": [p.strip() for p in paths_text.split(",") if p.strip()],
        }
        if self.app.controller.confirm(values) is None:
            error.update(f"[red]{self.app.controller.modal_message}[/red]")
            return
        self.app.refresh_snapshot()

    def action_cancel(self) -> None:
        self.app.controller.dismiss()
        self.app.refresh_snapshot()


class CredentialScreen(ModalScreen):
    """Masked password prompt for elevated deletion."""

    BINDINGS = [Binding("escape", "cancel", "Cancel")]

    def __init__(self, message: str):
        super().__init__()
        self.message = message

    def compose(self) -> ComposeResult:
        with Vertical(id="dialog"):
            yield Label(self.message, id="dialog-title")
            yield Input(password=True, placeholder="Password", id="input-secret")

    def on_input_submitted(self, event: Input.Submitted) -> None:
        secret = event.value
        event.input.value = ""
        self.app.controller.supply_credential(secret)
        self.app.refresh_snapshot()

    def action_cancel(self) -> None:
        self.app.controller.dismiss()
        self.app.refresh_snapshot()


class FatalScreen(ModalScreen):
    """Store failure that must be acknowledged."""

    BINDINGS = [Binding("enter", "acknowledge", "Acknowledge")]

    def __init__(self, message: str):
        super().__init__()
        self.message = message

    def compose(self) -> ComposeResult:
        with Vertical(id="dialog"):
            yield Label("[bold red]Database unavailable[/bold red]", id="dialog-title")
            yield Static(self.message)
            yield Static("[dim]Press Enter to acknowledge[/dim]")

    def action_acknowledge(self) -> None:
        self.app.controller.acknowledge_fatal()
        self.app.pop_screen()


class HistoryScreen(ModalScreen):
    """Recent scans, deletions and rebuilds."""

    BINDINGS = [
        Binding("escape", "close", "Close"),
        Binding("h", "close", "Close"),
    ]

    def __init__(self, events: list[HistoryEvent]):
        super().__init__()
        self.events = events

    def compose(self) -> ComposeResult:
        with Vertical(id="log-dialog"):
            yield Label("[bold]History[/bold]", id="dialog-title")
            table = DataTable(id="history-table")
            table.cursor_type = "row"
            yield table

    def on_mount(self) -> None:
        table = self.query_one("#history-table", DataTable)
        table.add_columns("When", "Event", "Path", "Detail")
        for event in self.events:
            table.add_row(
                event.created_at.strftime("%Y-%m-%d %H:%M"),
                history_label(event.kind),
                event.path,
                event.detail,
            )
        if not self.events:
            self.notify("No history yet", timeout=3)

    def action_close(self) -> None:
        self.app.pop_screen()


class LogScreen(ModalScreen):
    """Recent log records."""

    BINDINGS = [
        Binding("escape", "close", "Close"),
        Binding("l", "close", "Close"),
    ]

    def compose(self) -> ComposeResult:
        handler = self.app.log_handler
        lines = handler.lines(200) if handler else []
        with Vertical(id="log-dialog"):
            yield Label("[bold]Logs[/bold]", id="dialog-title")
            with VerticalScroll(id="log-body"):
                yield Static("\n".join(lines) or "No log records", markup=False)

    def on_mount(self) -> None:
        self.query_one("#log-body", VerticalScroll).scroll_end(animate=False)

    def action_close(self) -> None:
        self.app.pop_screen()
