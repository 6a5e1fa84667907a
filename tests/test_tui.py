"""Tests for the TUI wiring."""

import asyncio
from datetime import datetime

import pytest

from ratifact.config import AppConfig
from ratifact.models import Artifact, Modal
from ratifact.session import SessionController
from ratifact.tui.app import RatifactApp
from ratifact.tui.screens import ConfirmScreen, HistoryScreen, MainScreen, SettingsScreen
from ratifact.tui.widgets import age_cell, project_sizes


@pytest.fixture
def controller(store, tmp_path):
    c = SessionController(store, AppConfig(database_path=":memory:", scan_paths=[str(tmp_path)]))
    yield c
    c.shutdown()


class TestAgeCell:
    def test_fresh(self):
        assert age_cell(3, 30) == "3d"

    def test_stale(self):
        assert age_cell(45, 30) == "[red]45d[/red]"


def _artifact(path, project_root, size):
    return Artifact(
        path=path, project_root=project_root, size_bytes=size, last_modified=datetime.now()
    )


class TestProjectSizes:
    def test_sums_per_project_largest_first(self):
        artifacts = [
            _artifact("/w/web/node_modules", "/w/web", 300),
            _artifact("/w/web/dist", "/w/web", 50),
            _artifact("/w/cli/target", "/w/cli", 500),
        ]
        assert project_sizes(artifacts) == [("/w/cli", 500), ("/w/web", 350)]

    def test_limit(self):
        artifacts = [_artifact(f"/w/p{i}/target", f"/w/p{i}", i) for i in range(10)]
        rows = project_sizes(artifacts, limit=3)
        assert [size for _, size in rows] == [9, 8, 7]


class TestApp:
    def test_settings_popup_follows_controller(self, controller):
        async def scenario():
            app = RatifactApp(controller, start_controller=False, poll_interval=0.05)
            async with app.run_test() as pilot:
                assert isinstance(app.screen, MainScreen)

                await pilot.press("o")
                await pilot.pause(0.2)
                assert controller.modal == Modal.SETTINGS_EDIT
                assert isinstance(app.screen, SettingsScreen)

                app.screen.action_cancel()
                await pilot.pause(0.2)
                assert controller.modal == Modal.NONE
                assert isinstance(app.screen, MainScreen)

        asyncio.run(scenario())

    def test_exclude_confirmation(self, controller, make_rust_project):
        project = make_rust_project()
        controller.scanner.scan(project.parent)

        async def scenario():
            app = RatifactApp(controller, start_controller=False, poll_interval=0.05)
            async with app.run_test() as pilot:
                await pilot.pause(0.2)
                await pilot.press("x")
                await pilot.pause(0.2)
                assert controller.modal == Modal.CONFIRM_EXCLUDE
                assert isinstance(app.screen, ConfirmScreen)

                await pilot.press("y")
                await pilot.pause(0.2)
                assert controller.modal == Modal.NONE
                assert controller.store.list_exclusions()[0].path == str(project / "target")

        asyncio.run(scenario())

    def test_history_screen(self, controller, make_rust_project):
        project = make_rust_project()
        controller.scanner.scan(project.parent)

        async def scenario():
            app = RatifactApp(controller, start_controller=False, poll_interval=0.05)
            async with app.run_test() as pilot:
                await pilot.pause(0.2)
                await pilot.press("h")
                await pilot.pause(0.2)
                assert isinstance(app.screen, HistoryScreen)
                table = app.screen.query_one("#history-table")
                assert table.row_count == len(controller.history())
                assert table.row_count >= 1

                await pilot.press("escape")
                await pilot.pause(0.2)
                assert isinstance(app.screen, MainScreen)

        asyncio.run(scenario())
