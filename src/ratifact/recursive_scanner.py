"""Recursive directory discovery for build outputs.

This module walks a root with os.scandir, prunes excluded subtrees before
descending into them, and yields every directory the classifier recognises
as a build output. It never follows symbolic links.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Generator, Sequence

from ratifact.categories import get_build_output_names
from ratifact.classifier import Classification, classify
from ratifact.models import ExclusionEntry, is_excluded


# Directories never worth descending into (performance + safety)
SKIP_DIRECTORIES = frozenset(
    {
        ".git",
        ".svn",
        ".hg",
        ".Trash",
        ".idea",
        ".vscode",
        "Library",  # macOS system library
        "Applications",
        "proc",
        "sys",
    }
)

DEFAULT_MAX_DEPTH = 15


def expand_path(path: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expanduser(os.path.expandvars(path)))


@dataclass(frozen=True)
class TreeStats:
    """Size and freshness of a directory tree."""

    size_bytes: int
    file_count: int
    dir_count: int
    newest_mtime: float


def measure_tree(path: Path, max_depth: int = 64) -> TreeStats:
    """
    Measure a file or directory tree without following symlinks.

    Args:
        path: File or directory to measure
        max_depth: Maximum recursion depth

    Returns:
        TreeStats with total size, counts and the newest mtime found
    """
    total_size = 0
    file_count = 0
    dir_count = 0

    st = os.lstat(path)
    newest = st.st_mtime
    if not os.path.isdir(path) or os.path.islink(path):
        return TreeStats(st.st_size, 1, 0, newest)

    def _scan(p: str, depth: int):
        nonlocal total_size, file_count, dir_count, newest
        if depth > max_depth:
            return
        try:
            with os.scandir(p) as entries:
                for entry in entries:
                    try:
                        entry_stat = entry.stat(follow_symlinks=False)
                        newest = max(newest, entry_stat.st_mtime)
                        if entry.is_file(follow_symlinks=False):
                            total_size += entry_stat.st_size
                            file_count += 1
                        elif entry.is_dir(follow_symlinks=False):
                            dir_count += 1
                            _scan(entry.path, depth + 1)
                    except (PermissionError, OSError):
                        continue
        except (PermissionError, OSError):
            pass

    _scan(str(path), 0)
    return TreeStats(total_size, file_count, dir_count, newest)


def walk_build_outputs(
    root: Path,
    exclusions: Sequence[ExclusionEntry] = (),
    max_depth: int = DEFAULT_MAX_DEPTH,
    errors: dict[str, str] | None = None,
) -> Generator[tuple[Path, Classification], None, None]:
    """
    Find build-output directories under root.

    Excluded subtrees are pruned, not filtered afterwards, and a found output
    is never descended into (no node_modules inside node_modules).

    Args:
        root: Directory to start from
        exclusions: Exclusion snapshot for this pass
        max_depth: Maximum depth to search
        errors: Optional dict collecting path -> error message for unreadable directories

    Yields:
        (path, classification) for each build output found
    """
    if max_depth <= 0:
        return

    output_names = get_build_output_names()
    try:
        with os.scandir(root) as entries:
            children = list(entries)
    except (PermissionError, OSError) as e:
        if errors is not None:
            errors[str(root)] = str(e)
        return

    for entry in children:
        try:
            # Skip non-directories and symlinks
            if not entry.is_dir(follow_symlinks=False):
                continue
        except OSError as e:
            if errors is not None:
                errors[entry.path] = str(e)
            continue

        name = entry.name
        if name in SKIP_DIRECTORIES:
            continue

        if is_excluded(entry.path, exclusions):
            continue

        entry_path = Path(entry.path)
        if name in output_names:
            classification = classify(entry_path, is_dir=True)
            if classification and classification.is_build_output:
                yield entry_path, classification
                continue

        yield from walk_build_outputs(entry_path, exclusions, max_depth - 1, errors)
