"""Tests for scanning and reconciliation."""

import os
import shutil
from pathlib import Path
from unittest.mock import patch

from ratifact.errors import PathAccessError
from ratifact.models import ArtifactStatus, HistoryKind
from ratifact.recursive_scanner import measure_tree
from ratifact.scanner import Scanner, normalize_root, scan_roots


def _statuses(store):
    return {a.path: a.status for a in store.list_artifacts()}


def deny_listing(blocked):
    """Make os.scandir fail for one directory only."""
    real_scandir = os.scandir

    def scandir(path="."):
        if str(path) == str(blocked):
            raise PermissionError(13, "Permission denied", str(path))
        return real_scandir(path)

    return patch("ratifact.recursive_scanner.os.scandir", side_effect=scandir)


class TestNormalizeRoot:
    def test_expands_user(self):
        assert normalize_root("~") == str(Path.home())

    def test_makes_absolute(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert normalize_root("sub") == str(tmp_path / "sub")

    def test_strips_trailing_separator(self, tmp_path):
        assert normalize_root(f"{tmp_path}/") == str(tmp_path)


class TestScan:
    def test_inserts_new_artifacts(self, store, make_rust_project, tmp_path):
        project = make_rust_project(size=1234)

        session = Scanner(store).scan(tmp_path)

        assert session.found == 1
        assert session.inserted == 1
        assert session.finished_at is not None
        artifact = store.get_artifact(str(project / "target"))
        assert artifact.status == ArtifactStatus.ACTIVE
        assert artifact.size_bytes == 1234
        assert artifact.language == "Rust"
        assert artifact.project_root == str(project)

    def test_records_project(self, store, make_node_project, tmp_path):
        project = make_node_project()
        Scanner(store).scan(tmp_path)

        [recorded] = store.list_projects()
        assert recorded.root_path == str(project)
        assert recorded.build_system == "npm"

    def test_rescan_is_idempotent(self, store, make_rust_project, make_node_project, tmp_path):
        make_rust_project()
        make_node_project()
        scanner = Scanner(store)

        scanner.scan(tmp_path)
        first = [(a.path, a.status, a.size_bytes) for a in store.list_artifacts()]
        second_session = scanner.scan(tmp_path)
        second = [(a.path, a.status, a.size_bytes) for a in store.list_artifacts()]

        assert first == second
        assert second_session.inserted == 0
        assert second_session.removed == 0

    def test_detects_external_removal(self, store, make_rust_project, tmp_path):
        project = make_rust_project()
        scanner = Scanner(store)
        scanner.scan(tmp_path)

        shutil.rmtree(project / "target")
        session = scanner.scan(tmp_path)

        assert session.removed == 1
        assert store.get_artifact(str(project / "target")).status == ArtifactStatus.DELETED
        kinds = [e.kind for e in store.list_history(path=str(project / "target"))]
        assert HistoryKind.REMOVED in kinds

    def test_restores_reappeared_artifact(self, store, make_rust_project, tmp_path):
        project = make_rust_project()
        scanner = Scanner(store)
        scanner.scan(tmp_path)
        shutil.rmtree(project / "target")
        scanner.scan(tmp_path)

        (project / "target").mkdir()
        session = scanner.scan(tmp_path)

        assert session.restored == 1
        assert store.get_artifact(str(project / "target")).status == ArtifactStatus.ACTIVE

    def test_marks_excluded(self, store, make_rust_project, tmp_path):
        project = make_rust_project()
        scanner = Scanner(store)
        scanner.scan(tmp_path)

        store.add_exclusion(str(project))
        session = scanner.scan(tmp_path)

        assert session.excluded == 1
        assert session.found == 0
        assert store.get_artifact(str(project / "target")).status == ArtifactStatus.EXCLUDED
        assert store.list_projects() == []

    def test_previously_excluded_project_is_discovered(self, store, make_rust_project, tmp_path):
        project = make_rust_project()
        scanner = Scanner(store)
        store.add_exclusion(str(project))
        scanner.scan(tmp_path)
        assert store.get_artifact(str(project / "target")) is None

        store.remove_exclusion(str(project))
        scanner.scan(tmp_path)

        assert store.get_artifact(str(project / "target")).status == ArtifactStatus.ACTIVE

    def test_excluded_then_unexcluded_comes_back(self, store, make_rust_project, tmp_path):
        project = make_rust_project()
        target = str(project / "target")
        scanner = Scanner(store)
        scanner.scan(tmp_path)
        store.add_exclusion(target)
        scanner.scan(tmp_path)
        assert store.get_artifact(target).status == ArtifactStatus.EXCLUDED

        store.remove_exclusion(target)
        session = scanner.scan(tmp_path)

        assert session.restored == 1
        assert store.get_artifact(target).status == ArtifactStatus.ACTIVE

    def test_explicit_exclusion_snapshot(self, store, make_rust_project, tmp_path):
        from ratifact.models import ExclusionEntry

        project = make_rust_project()
        session = Scanner(store).scan(tmp_path, [ExclusionEntry(path=str(project))])

        assert session.found == 0
        # The stored exclusion list is not consulted when a snapshot is given
        assert store.list_exclusions() == []

    def test_pending_delete_left_alone(self, store, make_rust_project, tmp_path):
        project = make_rust_project()
        target = str(project / "target")
        scanner = Scanner(store)
        scanner.scan(tmp_path)
        store.mark_status(target, ArtifactStatus.PENDING_DELETE, store.next_logical_time())

        shutil.rmtree(target)
        scanner.scan(tmp_path)

        assert store.get_artifact(target).status == ArtifactStatus.PENDING_DELETE

    def test_subtree_scan_leaves_other_roots(self, store, make_rust_project, tmp_path):
        a = make_rust_project("a")
        b = make_rust_project("b")
        scanner = Scanner(store)
        scanner.scan(tmp_path)

        shutil.rmtree(b / "target")
        scanner.scan(a)

        assert store.get_artifact(str(b / "target")).status == ArtifactStatus.ACTIVE

    def test_progress_callback(self, store, make_rust_project, tmp_path):
        make_rust_project(size=10)
        seen = []
        Scanner(store, progress_callback=lambda p, s: seen.append(s)).scan(tmp_path)
        assert seen == [10]

    def test_scan_is_recorded(self, store, make_rust_project, tmp_path):
        make_rust_project()
        Scanner(store).scan(tmp_path)
        assert store.last_scan().found == 1

    def test_history_on_discovery(self, store, make_rust_project, tmp_path):
        project = make_rust_project()
        Scanner(store).scan(tmp_path)
        [event] = store.list_history(path=str(project / "target"))
        assert event.kind == HistoryKind.DISCOVERED


class TestScanRoots:
    def test_one_session_per_root(self, store, make_rust_project, tmp_path):
        a = make_rust_project("a")
        b = make_rust_project("b")

        sessions = scan_roots(Scanner(store), [str(a), str(b)])

        assert [s.root for s in sessions] == [str(a), str(b)]
        assert all(s.found == 1 for s in sessions)

    def test_exclusion_added_between_roots(self, store, make_rust_project):
        a = make_rust_project("a")
        b = make_rust_project("b")
        scanner = Scanner(store)

        def exclude_b(path, size):
            store.add_exclusion(str(b))

        scanner.progress_callback = exclude_b
        sessions = scan_roots(scanner, [str(a), str(b)])

        assert sessions[0].found == 1
        assert sessions[1].found == 0


class TestUnreadablePaths:
    def test_unreadable_directory_does_not_hide_siblings(self, store, make_rust_project, tmp_path):
        a = make_rust_project("a")
        b = make_rust_project("b")

        with deny_listing(b):
            session = Scanner(store).scan(tmp_path)

        assert session.found == 1
        assert "Permission denied" in session.errors[str(b)]
        assert store.get_artifact(str(a / "target")).status == ArtifactStatus.ACTIVE
        assert store.get_artifact(str(b / "target")) is None

    def test_artifact_under_unreadable_ancestor_stays_active(self, store, make_rust_project, tmp_path):
        a = make_rust_project("a")
        b = make_rust_project("b")
        scanner = Scanner(store)
        scanner.scan(tmp_path)
        hidden = str(b / "target")
        real_lexists = os.path.lexists

        def lexists(path):
            # Without search permission on b, nothing below it can be stat'ed.
            return False if str(path).startswith(str(b) + os.sep) else real_lexists(path)

        with deny_listing(b), patch("ratifact.scanner.os.path.lexists", side_effect=lexists):
            session = scanner.scan(tmp_path)

        assert session.removed == 0
        assert str(b) in session.errors
        assert store.get_artifact(hidden).status == ArtifactStatus.ACTIVE
        assert store.get_artifact(str(a / "target")).status == ArtifactStatus.ACTIVE
        kinds = [e.kind for e in store.list_history(path=hidden)]
        assert HistoryKind.REMOVED not in kinds

    def test_unmeasurable_artifact_is_recorded(self, store, make_rust_project, tmp_path, caplog):
        make_rust_project("a")
        b = make_rust_project("b")
        scanner = Scanner(store)
        scanner.scan(tmp_path)
        broken = str(b / "target")

        def measure(path, *args, **kwargs):
            if str(path) == broken:
                raise PermissionError(13, "Permission denied", broken)
            return measure_tree(path, *args, **kwargs)

        with patch("ratifact.scanner.measure_tree", side_effect=measure):
            session = scanner.scan(tmp_path)

        assert session.found == 1
        assert session.errors[broken] == "Permission denied"
        artifact = store.get_artifact(broken)
        assert artifact.status == ArtifactStatus.ACTIVE
        assert artifact.error == "Permission denied"
        assert "Cannot measure" in caplog.text

    def test_path_access_error_message(self):
        error = PathAccessError("/srv/app/target", "Permission denied")
        assert str(error) == "/srv/app/target: Permission denied"
        assert error.reason == "Permission denied"
