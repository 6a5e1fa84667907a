"""Tests for removal primitives."""

import os
from pathlib import Path
from unittest.mock import patch

from ratifact.cleaner import (
    BLOCKED_PATHS,
    RemovalOutcome,
    delete_path,
    elevated_delete_command,
    is_auth_failure,
    is_path_safe,
)
from ratifact.recursive_scanner import expand_path


class TestIsPathSafe:
    def test_blocks_home_directory(self):
        assert not is_path_safe(Path.home())

    def test_blocks_documents(self):
        assert not is_path_safe(expand_path("~/Documents"))

    def test_blocks_system_paths(self):
        assert not is_path_safe(Path("/"))
        assert not is_path_safe(Path("/usr"))
        assert not is_path_safe(Path("/etc"))

    def test_blocked_list_includes_root(self):
        assert "/" in BLOCKED_PATHS

    def test_blocks_relative_paths(self):
        assert not is_path_safe("target")

    def test_normalizes_before_comparing(self):
        assert not is_path_safe("/usr/local/..")

    def test_allows_build_output(self, tmp_path):
        assert is_path_safe(tmp_path / "proj" / "target")


class TestDeletePath:
    def test_delete_nonexistent_path(self, tmp_path):
        assert delete_path(tmp_path / "missing") == RemovalOutcome(0, 0)

    def test_dry_run_does_not_delete(self, tmp_path):
        test_file = tmp_path / "test.txt"
        test_file.write_text("Hello!")

        outcome = delete_path(test_file, dry_run=True)

        assert test_file.exists()
        assert outcome.bytes_freed == 6
        assert outcome.files_deleted == 1

    def test_deletes_file(self, tmp_path):
        test_file = tmp_path / "test.txt"
        test_file.write_text("Hello!")

        outcome = delete_path(test_file)

        assert not test_file.exists()
        assert outcome.bytes_freed == 6
        assert outcome.error is None

    def test_deletes_directory(self, tmp_path):
        subdir = tmp_path / "subdir"
        (subdir / "nested").mkdir(parents=True)
        (subdir / "nested" / "file.txt").write_text("test")

        outcome = delete_path(subdir)

        assert not subdir.exists()
        assert outcome.bytes_freed == 4
        assert outcome.files_deleted == 1

    def test_symlink_removes_link_only(self, tmp_path):
        real = tmp_path / "real"
        real.mkdir()
        (real / "keep.txt").write_text("keep")
        link = tmp_path / "link"
        link.symlink_to(real)

        delete_path(link)

        assert not os.path.lexists(link)
        assert (real / "keep.txt").exists()

    def test_permission_denied(self, tmp_path):
        subdir = tmp_path / "subdir"
        subdir.mkdir()

        with patch("ratifact.cleaner.shutil.rmtree", side_effect=PermissionError("denied")):
            outcome = delete_path(subdir)

        assert outcome.permission_denied
        assert "Permission denied" in outcome.error
        assert subdir.exists()

    def test_other_os_error(self, tmp_path):
        subdir = tmp_path / "subdir"
        subdir.mkdir()

        with patch("ratifact.cleaner.shutil.rmtree", side_effect=OSError("busy")):
            outcome = delete_path(subdir)

        assert not outcome.permission_denied
        assert outcome.error.startswith("OS error")


class TestElevatedDeleteCommand:
    def test_with_credential_reads_stdin(self):
        argv = elevated_delete_command("/p/target", with_credential=True)
        assert argv == ["sudo", "-S", "-p", "", "rm", "-rf", "--", "/p/target"]

    def test_without_credential_never_prompts(self):
        argv = elevated_delete_command("/p/target", with_credential=False)
        assert argv[:2] == ["sudo", "-n"]
        assert argv[-1] == "/p/target"


class TestIsAuthFailure:
    def test_wrong_password(self):
        assert is_auth_failure("Sorry, try again.\nsudo: 1 incorrect password attempt")

    def test_password_required(self):
        assert is_auth_failure("sudo: a password is required")

    def test_other_failure(self):
        assert not is_auth_failure("rm: cannot remove '/x': Device or resource busy")
