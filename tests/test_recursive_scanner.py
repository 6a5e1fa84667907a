"""Tests for recursive build-output discovery."""

import os
from pathlib import Path
from unittest.mock import patch

from ratifact.models import ExclusionEntry
from ratifact.recursive_scanner import (
    TreeStats,
    expand_path,
    measure_tree,
    walk_build_outputs,
)


def _found(root, **kwargs):
    return sorted(str(p) for p, _ in walk_build_outputs(root, **kwargs))


class TestExpandPath:
    def test_expands_home(self):
        assert expand_path("~/x") == Path.home() / "x"

    def test_expands_env(self, monkeypatch):
        monkeypatch.setenv("RATIFACT_TEST_DIR", "/srv/code")
        assert expand_path("$RATIFACT_TEST_DIR/a") == Path("/srv/code/a")


class TestMeasureTree:
    def test_measures_directory(self, tmp_path):
        (tmp_path / "a").write_bytes(b"x" * 100)
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "b").write_bytes(b"x" * 50)

        stats = measure_tree(tmp_path)

        assert stats.size_bytes == 150
        assert stats.file_count == 2
        assert stats.dir_count == 1

    def test_measures_single_file(self, tmp_path):
        f = tmp_path / "f"
        f.write_bytes(b"x" * 10)
        assert measure_tree(f) == TreeStats(10, 1, 0, os.lstat(f).st_mtime)

    def test_newest_mtime_comes_from_deepest_file(self, tmp_path, set_age):
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "old").write_text("o")
        set_age(tmp_path, 40)
        fresh = tmp_path / "sub" / "fresh"
        fresh.write_text("f")

        assert measure_tree(tmp_path).newest_mtime >= os.lstat(fresh).st_mtime

    def test_does_not_follow_symlinks(self, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "big").write_bytes(b"x" * 1000)
        inside = tmp_path / "inside"
        inside.mkdir()
        (inside / "link").symlink_to(outside)

        assert measure_tree(inside).size_bytes == 0

    def test_missing_path_raises(self, tmp_path):
        try:
            measure_tree(tmp_path / "missing")
        except FileNotFoundError:
            pass
        else:
            raise AssertionError("expected FileNotFoundError")


class TestWalkBuildOutputs:
    def test_finds_outputs_in_projects(self, make_rust_project, make_node_project, tmp_path):
        rust = make_rust_project()
        web = make_node_project()

        assert _found(tmp_path) == sorted(
            [str(rust / "target"), str(web / "dist"), str(web / "node_modules")]
        )

    def test_does_not_descend_into_outputs(self, tmp_path):
        outer = tmp_path / "app" / "node_modules"
        (outer / "pkg" / "node_modules").mkdir(parents=True)

        assert _found(tmp_path) == [str(outer)]

    def test_ignores_unmarked_names(self, tmp_path):
        (tmp_path / "notes" / "build").mkdir(parents=True)
        assert _found(tmp_path) == []

    def test_prunes_excluded_subtree(self, make_rust_project, tmp_path):
        project = make_rust_project()
        exclusions = [ExclusionEntry(path=str(project))]

        assert _found(tmp_path, exclusions=exclusions) == []

    def test_prunes_pattern(self, make_node_project, tmp_path):
        make_node_project()
        exclusions = [ExclusionEntry(path="*/node_modules")]

        found = _found(tmp_path, exclusions=exclusions)

        assert [Path(p).name for p in found] == ["dist"]

    def test_skips_vcs_directories(self, tmp_path):
        (tmp_path / ".git" / "node_modules").mkdir(parents=True)
        assert _found(tmp_path) == []

    def test_does_not_follow_symlinked_dirs(self, make_rust_project, tmp_path):
        project = make_rust_project()
        elsewhere = tmp_path / "elsewhere"
        elsewhere.mkdir()
        (elsewhere / "linked").symlink_to(project)

        assert _found(elsewhere) == []

    def test_respects_max_depth(self, tmp_path):
        deep = tmp_path / "a" / "b" / "c" / "node_modules"
        deep.mkdir(parents=True)

        assert _found(tmp_path, max_depth=2) == []
        assert _found(tmp_path, max_depth=4) == [str(deep)]

    def test_records_unreadable_root(self, tmp_path):
        errors: dict[str, str] = {}
        with patch("os.scandir", side_effect=PermissionError("denied")):
            assert list(walk_build_outputs(tmp_path, errors=errors)) == []
        assert str(tmp_path) in errors

    def test_classification_is_yielded(self, make_rust_project, tmp_path):
        make_rust_project()
        [(path, classification)] = list(walk_build_outputs(tmp_path))
        assert path.name == "target"
        assert classification.language == "Rust"
