"""Data models for ratifact."""

import fnmatch
import os
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def format_size(size_bytes: int) -> str:
    """Human-readable size string (decimal units)."""
    if size_bytes >= 1000**3:
        return f"{size_bytes / (1000**3):.1f} GB"
    elif size_bytes >= 1000**2:
        return f"{size_bytes / (1000**2):.1f} MB"
    elif size_bytes >= 1000:
        return f"{size_bytes / 1000:.1f} KB"
    else:
        return f"{size_bytes} B"


class ArtifactStatus(str, Enum):
    """Lifecycle status of a tracked artifact."""

    ACTIVE = "active"
    PENDING_DELETE = "pending_delete"
    DELETED = "deleted"  # Only after the path was verified absent
    EXCLUDED = "excluded"


class JobKind(str, Enum):
    """Kinds of background job."""

    DELETE = "delete"
    DELETE_ELEVATED = "delete_elevated"
    REBUILD = "rebuild"


class JobState(str, Enum):
    """Job lifecycle: queued -> running -> succeeded | failed | cancelled."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED)


class HistoryKind(str, Enum):
    """Kinds of history event appended to the store."""

    DISCOVERED = "discovered"
    RESTORED = "restored"
    REMOVED = "removed"  # Disappeared outside the tool
    DELETED = "deleted"
    EXCLUDED = "excluded"
    DELETE_FAILED = "delete_failed"
    REBUILD_SUCCEEDED = "rebuild_succeeded"
    REBUILD_FAILED = "rebuild_failed"
    AUTO_DELETE_SKIPPED = "auto_delete_skipped"


class BuildCategory(BaseModel):
    """A known kind of build output."""

    id: str = Field(..., description="Unique identifier for the category")
    name: str = Field(..., description="Human-readable name")
    dir_names: list[str] = Field(..., description="Directory names produced by the toolchain")
    language: str = Field(..., description="Language the output belongs to")
    build_system: str = Field(..., description="Build system that produces it")
    markers: list[str] = Field(
        default_factory=list,
        description="Project marker files (globs allowed) that must sit next to the output; "
        "empty means the directory name alone is enough",
    )
    rebuild_command: Optional[list[str]] = Field(
        None, description="Command that regenerates the output, run in the project root"
    )
    description: str = Field("", description="What this output contains")


class Project(BaseModel):
    """A directory believed to contain a buildable codebase."""

    root_path: str = Field(..., description="Absolute project root (unique key)")
    language: str = Field("Unknown", description="Detected primary language")
    build_system: str = Field("unknown", description="Detected build system")
    first_seen: datetime = Field(default_factory=datetime.now)


class Artifact(BaseModel):
    """A tracked build-output directory or file."""

    path: str = Field(..., description="Absolute path (unique key)")
    project_root: str = Field(..., description="Owning project root")
    language: str = Field("Unknown", description="Language of the owning project")
    category_id: str = Field("", description="Build-output category that matched")
    size_bytes: int = Field(0, description="Total size in bytes")
    file_count: int = Field(0, description="Number of files")
    last_modified: datetime = Field(..., description="Newest mtime inside the artifact")
    first_seen: datetime = Field(default_factory=datetime.now)
    status: ArtifactStatus = Field(ArtifactStatus.ACTIVE)
    logical_time: int = Field(0, description="Logical time of the last applied write")
    error: Optional[str] = Field(None, description="Last IO error seen for this path")

    @property
    def size_human(self) -> str:
        return format_size(self.size_bytes)

    def age_days(self, now: datetime | None = None) -> float:
        """Days since the newest modification inside the artifact."""
        now = now or datetime.now()
        return (now - self.last_modified).total_seconds() / 86400


class ExclusionEntry(BaseModel):
    """A path or glob pattern the operator opted out of scanning."""

    path: str = Field(..., description="Absolute path or glob pattern")
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_pattern(self) -> bool:
        return any(ch in self.path for ch in "*?[")

    def matches(self, path: str) -> bool:
        """True if path is the excluded path, lies below it, or matches the pattern."""
        if self.is_pattern:
            return fnmatch.fnmatch(path, self.path)
        base = self.path.rstrip(os.sep) or os.sep
        return path == base or path.startswith(base.rstrip(os.sep) + os.sep)


def is_under(path: str, root: str) -> bool:
    """True if path is root or lies below it."""
    root = root.rstrip(os.sep) or os.sep
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


def is_excluded(path: str, exclusions: tuple[ExclusionEntry, ...] | list[ExclusionEntry]) -> bool:
    """Check a path against an exclusion snapshot."""
    return any(entry.matches(path) for entry in exclusions)


class RetentionPolicy(BaseModel):
    """Process-wide retention configuration."""

    retention_days: int = Field(30, gt=0, description="Minimum age before auto removal")
    auto_removal_enabled: bool = Field(False, description="Whether stale artifacts are removed")
    scan_paths: list[str] = Field(default_factory=list, description="Roots to scan")


class ScanSession(BaseModel):
    """One scan pass over a root."""

    root: str = Field(..., description="Root that was scanned")
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    found: int = Field(0, description="Artifacts found on disk")
    inserted: int = Field(0, description="Newly tracked artifacts")
    restored: int = Field(0, description="Artifacts moved back to active")
    removed: int = Field(0, description="Tracked artifacts no longer on disk")
    excluded: int = Field(0, description="Tracked artifacts marked excluded")
    errors: dict[str, str] = Field(default_factory=dict, description="Per-path IO errors")

    @property
    def duration_seconds(self) -> float:
        if not self.finished_at:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()


class HistoryEvent(BaseModel):
    """Append-only history entry."""

    path: str
    kind: HistoryKind
    detail: str = ""
    output: str = ""
    created_at: datetime = Field(default_factory=datetime.now)


class JobSnapshot(BaseModel):
    """Read-only view of a job."""

    id: int
    kind: JobKind
    targets: list[str]
    state: JobState
    message: str = ""
    origin: str = "operator"
    needs_privilege: bool = False
    submitted_at: datetime
    finished_at: Optional[datetime] = None


class Activity(str, Enum):
    IDLE = "idle"
    SCAN_IN_PROGRESS = "scan_in_progress"


class Modal(str, Enum):
    """Modal states of the interactive session."""

    NONE = "none"
    CONFIRM_DELETE = "confirm_delete"
    CONFIRM_BULK_DELETE = "confirm_bulk_delete"
    CONFIRM_AUTO_REMOVAL_ENABLE = "confirm_auto_removal_enable"
    CONFIRM_EXCLUDE = "confirm_exclude"
    SETTINGS_EDIT = "settings_edit"
    CREDENTIAL_PROMPT = "credential_prompt"


class Snapshot(BaseModel):
    """Everything the presentation layer may read."""

    artifacts: list[Artifact] = Field(default_factory=list)
    jobs: list[JobSnapshot] = Field(default_factory=list)
    activity: Activity = Activity.IDLE
    modal: Modal = Modal.NONE
    modal_message: str = ""
    pending_targets: list[str] = Field(default_factory=list)
    policy: RetentionPolicy = Field(default_factory=RetentionPolicy)
    exclusions: list[ExclusionEntry] = Field(default_factory=list)
    watcher_mode: str = "stopped"
    last_scan: Optional[ScanSession] = None
    notices: list[str] = Field(default_factory=list)
    fatal_error: Optional[str] = None

    @property
    def visible_artifacts(self) -> list[Artifact]:
        """Artifacts that are still on disk as far as the store knows."""
        return [
            a
            for a in self.artifacts
            if a.status in (ArtifactStatus.ACTIVE, ArtifactStatus.PENDING_DELETE)
        ]

    @property
    def total_bytes(self) -> int:
        return sum(a.size_bytes for a in self.visible_artifacts)
