"""Filesystem removal primitives with safety checks for ratifact."""

import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from ratifact.recursive_scanner import expand_path, measure_tree

# Paths that should NEVER be deleted, whatever the store says
BLOCKED_PATHS = [
    "/",
    "~",
    "~/Documents",
    "~/Desktop",
    "~/Downloads",
    "~/Pictures",
    "~/Music",
    "~/Movies",
    "~/Code",
    "~/Projects",
    "~/Work",
    "/System",
    "/Library",
    "/Applications",
    "/usr",
    "/bin",
    "/sbin",
    "/lib",
    "/etc",
    "/opt",
    "/var",
    "/private",
    "/home",
    "/Users",
    "/root",
    "/tmp",
]

# Diagnostic fragments sudo prints when the credential is missing or wrong
AUTH_FAILURE_MARKERS = (
    "incorrect password",
    "sorry, try again",
    "a password is required",
    "no password was provided",
    "authentication failure",
    "is not in the sudoers file",
    "not allowed to execute",
)


@dataclass(frozen=True)
class RemovalOutcome:
    """What a removal call reported; absence is verified separately."""

    bytes_freed: int
    files_deleted: int
    error: str | None = None
    permission_denied: bool = False


def is_path_safe(path: Path | str) -> bool:
    """
    Check if a path is safe to delete.

    Args:
        path: Path to check

    Returns:
        True if the path is absolute and not one of the blocked locations
    """
    path_str = os.path.normpath(str(path))
    if not os.path.isabs(path_str):
        return False

    for blocked in BLOCKED_PATHS:
        if path_str == os.path.normpath(str(expand_path(blocked))):
            return False

    # Don't allow deleting home directory itself
    if path_str == str(Path.home()):
        return False

    return True


def delete_path(path: Path, dry_run: bool = False) -> RemovalOutcome:
    """
    Delete a path (file or directory) without following symlinks.

    Args:
        path: Path to delete
        dry_run: If True, don't actually delete

    Returns:
        RemovalOutcome with bytes freed and any error reported by the OS
    """
    if not os.path.lexists(path):
        return RemovalOutcome(0, 0)

    try:
        # Calculate size before deletion
        stats = measure_tree(path)

        if dry_run:
            return RemovalOutcome(stats.size_bytes, stats.file_count)

        if path.is_symlink() or not path.is_dir():
            path.unlink()
        else:
            shutil.rmtree(path)

        return RemovalOutcome(stats.size_bytes, stats.file_count)

    except PermissionError as e:
        return RemovalOutcome(0, 0, f"Permission denied: {e}", permission_denied=True)
    except OSError as e:
        return RemovalOutcome(0, 0, f"OS error: {e}")


def elevated_delete_command(path: str, with_credential: bool) -> list[str]:
    """
    Build the privileged removal command for a path.

    With a credential, sudo reads it from stdin (-S) with an empty prompt so
    nothing is written to the terminal; without one, sudo must not prompt (-n).
    """
    if with_credential:
        return ["sudo", "-S", "-p", "", "rm", "-rf", "--", path]
    return ["sudo", "-n", "rm", "-rf", "--", path]


def is_auth_failure(output: str) -> bool:
    """Check sudo diagnostics for a rejected or missing credential."""
    lowered = output.lower()
    return any(marker in lowered for marker in AUTH_FAILURE_MARKERS)
