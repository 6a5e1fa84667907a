"""Shared fixtures for ratifact tests."""

import os
import time
from pathlib import Path

import pytest

from ratifact.store import ArtifactStore


def age_tree(path: Path, days: float) -> None:
    """Set the mtime of path and everything below it to `days` ago."""
    ts = time.time() - days * 86400
    for dirpath, dirnames, filenames in os.walk(path):
        for name in dirnames + filenames:
            os.utime(os.path.join(dirpath, name), (ts, ts), follow_symlinks=False)
    os.utime(path, (ts, ts))


@pytest.fixture
def store():
    s = ArtifactStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def make_rust_project(tmp_path):
    """Factory for a Cargo project with a populated target directory."""

    def _make(name: str = "proj", size: int = 1000, age_days: float = 0) -> Path:
        project = tmp_path / name
        (project / "target" / "debug").mkdir(parents=True)
        (project / "Cargo.toml").write_text("[package]\nname = 'demo'\n")
        (project / "target" / "debug" / "app").write_bytes(b"x" * size)
        if age_days:
            age_tree(project / "target", age_days)
        return project

    return _make


@pytest.fixture
def make_node_project(tmp_path):
    """Factory for a package.json project with node_modules and dist."""

    def _make(name: str = "web") -> Path:
        project = tmp_path / name
        (project / "node_modules" / "left-pad").mkdir(parents=True)
        (project / "node_modules" / "left-pad" / "index.js").write_text("module.exports = 1;\n")
        (project / "dist").mkdir()
        (project / "dist" / "bundle.js").write_text("console.log(1);\n")
        (project / "package.json").write_text('{"name": "web"}')
        return project

    return _make


@pytest.fixture
def set_age():
    """Expose age_tree to tests that need to backdate a tree."""
    return age_tree
