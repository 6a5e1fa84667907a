"""Tests for data models."""

from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from ratifact.models import (
    Artifact,
    ArtifactStatus,
    ExclusionEntry,
    JobState,
    RetentionPolicy,
    ScanSession,
    Snapshot,
    format_size,
    is_excluded,
    is_under,
)


def _artifact(path: str, size: int = 100, status: ArtifactStatus = ArtifactStatus.ACTIVE):
    return Artifact(
        path=path,
        project_root=path.rsplit("/", 1)[0],
        size_bytes=size,
        last_modified=datetime.now(),
        status=status,
    )


class TestFormatSize:
    def test_bytes(self):
        assert format_size(512) == "512 B"

    def test_kilobytes(self):
        assert format_size(1500) == "1.5 KB"

    def test_megabytes(self):
        assert format_size(120_000_000) == "120.0 MB"

    def test_gigabytes(self):
        assert format_size(2_500_000_000) == "2.5 GB"


class TestIsUnder:
    def test_same_path(self):
        assert is_under("/a/b", "/a/b")

    def test_child(self):
        assert is_under("/a/b/c", "/a/b")

    def test_sibling_with_common_prefix(self):
        assert not is_under("/a/bc", "/a/b")

    def test_trailing_separator_on_root(self):
        assert is_under("/a/b/c", "/a/b/")

    def test_filesystem_root(self):
        assert is_under("/anything", "/")


class TestExclusionEntry:
    def test_matches_exact_path(self):
        entry = ExclusionEntry(path="/work/proj")
        assert entry.matches("/work/proj")

    def test_matches_descendant(self):
        entry = ExclusionEntry(path="/work/proj")
        assert entry.matches("/work/proj/target")

    def test_does_not_match_sibling_prefix(self):
        entry = ExclusionEntry(path="/work/proj")
        assert not entry.matches("/work/project/target")

    def test_glob_pattern(self):
        entry = ExclusionEntry(path="*/node_modules")
        assert entry.is_pattern
        assert entry.matches("/work/web/node_modules")
        assert not entry.matches("/work/web/dist")

    def test_plain_path_is_not_pattern(self):
        assert not ExclusionEntry(path="/work/proj").is_pattern

    def test_is_excluded_any(self):
        entries = [ExclusionEntry(path="/a"), ExclusionEntry(path="/b")]
        assert is_excluded("/b/target", entries)
        assert not is_excluded("/c/target", entries)


class TestRetentionPolicy:
    def test_defaults(self):
        policy = RetentionPolicy()
        assert policy.retention_days == 30
        assert policy.auto_removal_enabled is False
        assert policy.scan_paths == []

    def test_rejects_zero_days(self):
        with pytest.raises(ValidationError):
            RetentionPolicy(retention_days=0)

    def test_rejects_negative_days(self):
        with pytest.raises(ValidationError):
            RetentionPolicy(retention_days=-5)

    def test_round_trips_through_json(self):
        policy = RetentionPolicy(retention_days=7, auto_removal_enabled=True, scan_paths=["/x"])
        assert RetentionPolicy.model_validate_json(policy.model_dump_json()) == policy


class TestArtifact:
    def test_age_days(self):
        now = datetime(2024, 3, 1)
        artifact = Artifact(
            path="/p/target",
            project_root="/p",
            last_modified=now - timedelta(days=45),
        )
        assert artifact.age_days(now) == pytest.approx(45.0)

    def test_size_human(self):
        assert _artifact("/p/target", size=120_000_000).size_human == "120.0 MB"

    def test_default_status_active(self):
        assert _artifact("/p/target").status == ArtifactStatus.ACTIVE


class TestJobState:
    def test_terminal_states(self):
        assert JobState.SUCCEEDED.is_terminal
        assert JobState.FAILED.is_terminal
        assert JobState.CANCELLED.is_terminal

    def test_non_terminal_states(self):
        assert not JobState.QUEUED.is_terminal
        assert not JobState.RUNNING.is_terminal


class TestScanSession:
    def test_duration_unfinished(self):
        assert ScanSession(root="/x").duration_seconds == 0.0

    def test_duration(self):
        start = datetime(2024, 1, 1, 12, 0, 0)
        session = ScanSession(root="/x", started_at=start, finished_at=start + timedelta(seconds=3))
        assert session.duration_seconds == 3.0


class TestSnapshot:
    def test_visible_artifacts_hide_deleted_and_excluded(self):
        snapshot = Snapshot(
            artifacts=[
                _artifact("/a/target", 100),
                _artifact("/b/target", 200, ArtifactStatus.PENDING_DELETE),
                _artifact("/c/target", 300, ArtifactStatus.DELETED),
                _artifact("/d/target", 400, ArtifactStatus.EXCLUDED),
            ]
        )
        assert [a.path for a in snapshot.visible_artifacts] == ["/a/target", "/b/target"]
        assert snapshot.total_bytes == 300
