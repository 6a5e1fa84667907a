"""Artifact scanning and reconciliation for ratifact."""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Callable, Sequence

from ratifact.classifier import detect_project
from ratifact.errors import PathAccessError
from ratifact.models import (
    Artifact,
    ArtifactStatus,
    ExclusionEntry,
    HistoryEvent,
    HistoryKind,
    Project,
    ScanSession,
    is_excluded,
    is_under,
)
from ratifact.recursive_scanner import (
    DEFAULT_MAX_DEPTH,
    expand_path,
    measure_tree,
    walk_build_outputs,
)
from ratifact.store import ArtifactStore

logger = logging.getLogger(__name__)


def normalize_root(root: str | Path) -> str:
    """Absolute, user-expanded form of a scan root (symlinks are not resolved)."""
    return os.path.abspath(expand_path(str(root)))


class Scanner:
    """Finds build outputs under a root and reconciles them with the store."""

    def __init__(
        self,
        store: ArtifactStore,
        max_depth: int = DEFAULT_MAX_DEPTH,
        progress_callback: Callable[[str, int], None] | None = None,
    ):
        self.store = store
        self.max_depth = max_depth
        self.progress_callback = progress_callback

    def scan(
        self,
        root: str | Path,
        exclusions: Sequence[ExclusionEntry] | None = None,
    ) -> ScanSession:
        """
        Scan one root and reconcile the result against the store.

        Args:
            root: Directory to scan (a whole scan path or a project subtree)
            exclusions: Exclusion snapshot for this pass; read from the store if omitted

        Returns:
            ScanSession with counts and per-path errors
        """
        root_str = normalize_root(root)
        snapshot = tuple(exclusions if exclusions is not None else self.store.list_exclusions())
        logical_time = self.store.next_logical_time()
        session = ScanSession(root=root_str)
        found: set[str] = set()

        logger.info("Scanning %s", root_str)

        for path, classification in walk_build_outputs(
            Path(root_str), snapshot, self.max_depth, session.errors
        ):
            path_str = str(path)
            try:
                stats = measure_tree(path)
            except OSError as e:
                self._access_error(session, PathAccessError(path_str, e.strerror or str(e)))
                continue

            found.add(path_str)
            project_root = str(path.parent)
            detected = detect_project(project_root)
            self.store.upsert_project(
                Project(
                    root_path=project_root,
                    language=detected[0] if detected else classification.language,
                    build_system=detected[1] if detected else classification.build_system,
                )
            )

            transition = self.store.upsert_artifact(
                Artifact(
                    path=path_str,
                    project_root=project_root,
                    language=classification.language,
                    category_id=classification.category_id or "",
                    size_bytes=stats.size_bytes,
                    file_count=stats.file_count,
                    last_modified=datetime.fromtimestamp(stats.newest_mtime),
                ),
                logical_time,
            )
            if transition and transition.changed:
                if transition.old is None:
                    session.inserted += 1
                    self._history(path_str, HistoryKind.DISCOVERED, classification.language)
                else:
                    session.restored += 1
                    self._history(path_str, HistoryKind.RESTORED, f"was {transition.old.value}")

            if self.progress_callback:
                self.progress_callback(path_str, stats.size_bytes)

        session.found = len(found)
        self._reconcile(root_str, found, snapshot, logical_time, session)

        session.finished_at = datetime.now()
        self.store.record_scan(session)
        logger.info(
            "Scan of %s complete: %d found, %d new, %d removed, %d excluded, %d errors",
            root_str,
            session.found,
            session.inserted,
            session.removed,
            session.excluded,
            len(session.errors),
        )
        return session

    def _reconcile(
        self,
        root: str,
        found: set[str],
        exclusions: tuple[ExclusionEntry, ...],
        logical_time: int,
        session: ScanSession,
    ) -> None:
        """Apply exclusions and scanner-detected removals to records under root."""
        tracked = self.store.list_artifacts(
            [ArtifactStatus.ACTIVE, ArtifactStatus.PENDING_DELETE], under=root
        )
        for artifact in tracked:
            if is_excluded(artifact.path, exclusions):
                if self.store.mark_status(
                    artifact.path,
                    ArtifactStatus.EXCLUDED,
                    logical_time,
                    only_from=[ArtifactStatus.ACTIVE],
                ):
                    session.excluded += 1
                    self._history(artifact.path, HistoryKind.EXCLUDED, "matched exclusion")
                continue

            if artifact.path in found or artifact.status != ArtifactStatus.ACTIVE:
                # Pending deletions are settled by their job, not by a scan.
                continue

            # Not found by the walk: only call it removed if it is really gone
            # and no unreadable ancestor hid it from us.
            if any(is_under(artifact.path, err) for err in session.errors):
                continue
            if os.path.lexists(artifact.path):
                continue

            if self.store.mark_status(
                artifact.path,
                ArtifactStatus.DELETED,
                logical_time,
                only_from=[ArtifactStatus.ACTIVE],
            ):
                session.removed += 1
                self._history(artifact.path, HistoryKind.REMOVED, "no longer on disk")

        for project in self.store.list_projects(under=root):
            if is_excluded(project.root_path, exclusions) or not os.path.isdir(project.root_path):
                self.store.remove_project(project.root_path)

    def _access_error(self, session: ScanSession, error: PathAccessError) -> None:
        """Record an unreadable artifact without aborting the pass."""
        logger.warning("Cannot measure %s", error)
        session.errors[error.path] = error.reason
        self.store.record_error(error.path, error.reason)

    def _history(self, path: str, kind: HistoryKind, detail: str = "") -> None:
        self.store.append_history(HistoryEvent(path=path, kind=kind, detail=detail))


def scan_roots(
    scanner: Scanner,
    roots: Sequence[str],
    exclusions: Sequence[ExclusionEntry] | None = None,
) -> list[ScanSession]:
    """
    Scan several roots one after another.

    Without an explicit snapshot each pass re-reads the exclusions, so an
    exclusion added mid-run applies from the next root on.

    Args:
        scanner: Scanner to use
        roots: Scan roots
        exclusions: Fixed exclusion snapshot for all passes

    Returns:
        One ScanSession per root
    """
    return [scanner.scan(root, exclusions) for root in roots]
