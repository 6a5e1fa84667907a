"""
Session controller: the state machine behind the interactive display.

The controller owns the process-wide state (retention policy, exclusions,
modal state) and is the only place that mutates it. Every command returns
immediately with a handle; background work reports back through a queue
that the foreground loop drains with poll(). The presentation layer reads
snapshot() and never touches the store directly.
"""

import logging
import os
import queue
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Sequence

from pydantic import ValidationError

from ratifact.classifier import classify, rebuild_command
from ratifact.config import AppConfig
from ratifact.errors import InvalidPolicy, RatifactError, StoreUnavailable
from ratifact.jobs import JobExecutor, JobHandle, ProcessResult, run_subprocess
from ratifact.models import (
    Activity,
    ArtifactStatus,
    ExclusionEntry,
    HistoryEvent,
    HistoryKind,
    JobKind,
    JobState,
    Modal,
    RetentionPolicy,
    ScanSession,
    Snapshot,
    format_size,
)
from ratifact.recursive_scanner import expand_path
from ratifact.safety import SafetyEngine, load_policy
from ratifact.scanner import Scanner, normalize_root, scan_roots
from ratifact.scheduler import PeriodicTask
from ratifact.store import ArtifactStore
from ratifact.watcher import Watcher

logger = logging.getLogger(__name__)

MAX_NOTICES = 20
MAX_FINISHED_JOBS = 20


class SessionController:
    """Owns interactive state and routes commands to the background machinery."""

    def __init__(
        self,
        store: ArtifactStore,
        config: AppConfig | None = None,
        runner: Callable[..., ProcessResult] = run_subprocess,
        clock: Callable[[], datetime] = datetime.now,
        watcher_factory: Callable[..., Watcher] = Watcher,
    ):
        self.store = store
        self.config = config or AppConfig()
        self.clock = clock
        self.watcher_factory = watcher_factory

        policy = load_policy(store)
        if not policy.scan_paths:
            policy = policy.model_copy(
                update={"scan_paths": [normalize_root(p) for p in self.config.scan_paths]}
            )
        self._policy = policy

        self.executor = JobExecutor(
            store,
            max_workers=self.config.max_workers,
            runner=runner,
            on_store_failure=self._on_store_failure,
        )
        self.safety = SafetyEngine(store, policy, self.executor, clock)
        self.scanner = Scanner(store, max_depth=self.config.max_depth)
        self.watcher: Watcher | None = None

        self._scan_pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="ratifact-scan")
        self._events: queue.Queue = queue.Queue()
        self._lock = threading.RLock()
        self._retention_task: PeriodicTask | None = None

        self.activity = Activity.IDLE
        self.modal = Modal.NONE
        self.modal_message = ""
        self.pending_targets: list[str] = []
        self.fatal_error: str | None = None
        self.last_scan: ScanSession | None = None
        self.notices: deque[str] = deque(maxlen=MAX_NOTICES)
        self._scans_in_flight = 0

    @property
    def policy(self) -> RetentionPolicy:
        with self._lock:
            return self._policy

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, watch: bool = True, retention: bool = True, initial_scan: bool = True) -> None:
        """Start the watcher and the retention cycle, optionally scanning first."""
        if watch:
            self.watcher = self.watcher_factory(
                self._on_watch_rescan,
                quiet_period=self.config.debounce_seconds,
                poll_interval=self.config.poll_interval_seconds,
                on_degraded=self._on_watch_degraded,
            )
            self.watcher.start(self._watch_roots())
        if retention:
            self._retention_task = PeriodicTask(
                self.config.retention_interval_seconds, self.run_retention_cycle, name="retention"
            )
            self._retention_task.start()
        if initial_scan:
            self.request_scan()

    def shutdown(self) -> None:
        """Stop background machinery; running jobs are allowed to finish."""
        logger.info("Shutting down session")
        if self._retention_task is not None:
            self._retention_task.stop()
        if self.watcher is not None:
            self.watcher.stop()
        self.executor.shutdown(wait=True)
        self._scan_pool.shutdown(wait=True, cancel_futures=True)

    # =========================================================================
    # Commands
    # =========================================================================

    def request_scan(self, root: str | None = None) -> Future:
        """
        Scan one root, or every configured scan path.

        Returns:
            Future resolving to the list of ScanSessions
        """
        roots = [normalize_root(root)] if root else list(self.policy.scan_paths)
        with self._lock:
            self._scans_in_flight += 1
            self.activity = Activity.SCAN_IN_PROGRESS

        future = self._scan_pool.submit(scan_roots, self.scanner, roots)
        future.add_done_callback(lambda f: self._events.put(("scan", f)))
        return future

    def request_delete(self, paths: Sequence[str]) -> JobHandle:
        """Submit an operator deletion; the list changes only once it reports."""
        return self._track(self.executor.submit_delete(list(paths), origin="operator"))

    def request_delete_elevated(self, paths: Sequence[str], credential: str | None) -> JobHandle:
        return self._track(self.executor.submit_delete_elevated(list(paths), credential))

    def request_rebuild(self, path: str) -> JobHandle:
        """
        Rebuild the project owning an artifact (or the project at path).

        Raises:
            RatifactError: If no build command is known for the project
        """
        path = normalize_root(path)
        artifact = self.store.get_artifact(path)
        project_root = artifact.project_root if artifact else path
        command = rebuild_command(project_root)
        if command is None:
            raise RatifactError(f"No known build command for {project_root}")
        return self._track(self.executor.submit_rebuild(project_root, command))

    def set_exclusion(self, path: str) -> ExclusionEntry:
        """
        Exclude a path or glob pattern.

        Tracked artifacts it covers are marked excluded at once, and pending
        automatic deletions for them are cancelled.
        """
        if not any(ch in path for ch in "*?["):
            path = os.path.abspath(expand_path(path))
        entry = self.store.add_exclusion(path)

        for job in self.executor.active_jobs():
            if job.origin == "auto" and any(entry.matches(t) for t in job.targets):
                job.cancel()
                logger.info("Cancelled auto deletion job %d: %s is excluded", job.id, path)

        logical_time = self.store.next_logical_time()
        for artifact in self.store.list_artifacts([ArtifactStatus.ACTIVE]):
            if entry.matches(artifact.path) and self.store.mark_status(
                artifact.path,
                ArtifactStatus.EXCLUDED,
                logical_time,
                only_from=[ArtifactStatus.ACTIVE],
            ):
                self.store.append_history(
                    HistoryEvent(path=artifact.path, kind=HistoryKind.EXCLUDED, detail=path)
                )

        if self.watcher is not None:
            for root in self.watcher.roots:
                if entry.matches(root):
                    self.watcher.untrack(root)

        self._notice(f"Excluded {path}")
        return entry

    def remove_exclusion(self, path: str) -> Future | None:
        """
        Remove an exclusion and rescan what it covered.

        Returns:
            Future of the triggered rescan, or None if no such exclusion existed
        """
        is_pattern = any(ch in path for ch in "*?[")
        if not is_pattern:
            path = os.path.abspath(expand_path(path))
        if not self.store.remove_exclusion(path):
            return None

        self._notice(f"Removed exclusion {path}")
        if is_pattern:
            return self.request_scan()
        # A build output is only found by walking its parent
        classification = classify(path, is_dir=os.path.isdir(path))
        if classification and classification.is_build_output:
            return self.request_scan(os.path.dirname(path))
        return self.request_scan(path)

    def set_retention_policy(
        self,
        retention_days: int | None = None,
        auto_removal_enabled: bool | None = None,
        scan_paths: Sequence[str] | None = None,
    ) -> RetentionPolicy:
        """
        Validate and apply a new retention policy.

        Raises:
            InvalidPolicy: If the new values fail validation
        """
        data = self.policy.model_dump()
        if retention_days is not None:
            data["retention_days"] = retention_days
        if auto_removal_enabled is not None:
            data["auto_removal_enabled"] = auto_removal_enabled
        if scan_paths is not None:
            data["scan_paths"] = [normalize_root(p) for p in scan_paths]

        try:
            policy = RetentionPolicy.model_validate(data)
        except ValidationError as e:
            raise InvalidPolicy(str(e.errors()[0]["msg"])) from e

        self.safety.set_policy(policy)
        self.store.save_policy(policy)
        with self._lock:
            self._policy = policy
        logger.info(
            "Retention policy: %d days, auto removal %s, %d scan paths",
            policy.retention_days,
            "on" if policy.auto_removal_enabled else "off",
            len(policy.scan_paths),
        )
        return policy

    def run_retention_cycle(self) -> list[JobHandle]:
        """Submit automatic deletions for everything currently eligible."""
        return [self._track(h) for h in self.safety.run_cycle()]

    # =========================================================================
    # Modal flow
    # =========================================================================

    def _open(self, modal: Modal, targets: list[str], message: str) -> bool:
        with self._lock:
            if self.modal != Modal.NONE:
                return False
            self.modal = modal
            self.pending_targets = targets
            self.modal_message = message
            return True

    def select_delete(self, paths: Sequence[str]) -> bool:
        paths = list(paths)
        if not paths:
            return False
        tracked = [self.store.get_artifact(p) for p in paths]
        size = sum(a.size_bytes for a in tracked if a is not None)
        return self._open(
            Modal.CONFIRM_DELETE, paths, f"Delete {len(paths)} artifact(s), {format_size(size)}?"
        )

    def select_clear_all(self) -> bool:
        """Open the bulk delete confirmation; only possible with no popup open."""
        with self._lock:
            if self.modal != Modal.NONE:
                return False
        active = self.store.read_all_active()
        if not active:
            self._notice("Nothing to delete")
            return False
        size = sum(a.size_bytes for a in active)
        return self._open(
            Modal.CONFIRM_BULK_DELETE,
            [a.path for a in active],
            f"Delete ALL {len(active)} artifacts, {format_size(size)}?",
        )

    def select_exclude(self, path: str) -> bool:
        return self._open(Modal.CONFIRM_EXCLUDE, [path], f"Exclude {path} from scanning?")

    def toggle_auto_removal(self) -> bool:
        """
        Disable automatic removal at once, or ask before enabling it.

        Returns:
            True if the setting changed or a confirmation was opened
        """
        if self.policy.auto_removal_enabled:
            self.set_retention_policy(auto_removal_enabled=False)
            self._notice("Automatic removal disabled")
            return True
        would_delete = self.safety.preview()
        return self._open(
            Modal.CONFIRM_AUTO_REMOVAL_ENABLE,
            would_delete,
            f"Enable automatic removal? {len(would_delete)} artifact(s) older than "
            f"{self.policy.retention_days} days would be deleted now.",
        )

    def open_settings(self) -> bool:
        return self._open(Modal.SETTINGS_EDIT, [], "")

    def confirm(self, values: dict | None = None) -> JobHandle | ExclusionEntry | RetentionPolicy | None:
        """
        Confirm the open popup.

        Args:
            values: New settings when confirming the settings popup

        Returns:
            Whatever the confirmed action produced
        """
        with self._lock:
            modal, targets = self.modal, list(self.pending_targets)

        if modal in (Modal.CONFIRM_DELETE, Modal.CONFIRM_BULK_DELETE):
            self._close()
            return self.request_delete(targets)

        if modal == Modal.CONFIRM_EXCLUDE:
            self._close()
            return self.set_exclusion(targets[0])

        if modal == Modal.CONFIRM_AUTO_REMOVAL_ENABLE:
            self._close()
            policy = self.set_retention_policy(auto_removal_enabled=True)
            self._notice("Automatic removal enabled")
            self.run_retention_cycle()
            return policy

        if modal == Modal.SETTINGS_EDIT:
            values = values or {}
            old_paths = self.policy.scan_paths
            try:
                policy = self.set_retention_policy(**values)
            except InvalidPolicy as e:
                with self._lock:
                    self.modal_message = str(e)
                return None
            self._close()
            if policy.scan_paths != old_paths:
                self.request_scan()
            return policy

        return None

    def supply_credential(self, secret: str) -> JobHandle | None:
        """Hand the credential to an elevated delete job; it is not kept here."""
        with self._lock:
            if self.modal != Modal.CREDENTIAL_PROMPT:
                return None
            targets = list(self.pending_targets)
        self._close()
        return self.request_delete_elevated(targets, secret)

    def dismiss(self) -> None:
        self._close()

    def _close(self) -> None:
        with self._lock:
            self.modal = Modal.NONE
            self.pending_targets = []
            self.modal_message = ""

    def acknowledge_fatal(self) -> None:
        with self._lock:
            self.fatal_error = None

    # =========================================================================
    # Foreground polling
    # =========================================================================

    def poll(self) -> int:
        """
        Apply completions reported by background work.

        Returns:
            Number of events handled
        """
        handled = 0
        while True:
            try:
                kind, payload = self._events.get_nowait()
            except queue.Empty:
                break
            handled += 1
            if kind == "scan":
                self._scan_finished(payload)
            elif kind == "job":
                self._job_finished(payload)
            elif kind == "fatal":
                with self._lock:
                    self.fatal_error = payload
            elif kind == "degraded":
                self._notice(f"File watching degraded to polling: {payload}")
        if handled:
            self.executor.forget_finished(keep=MAX_FINISHED_JOBS)
        return handled

    def _scan_finished(self, future: Future) -> None:
        with self._lock:
            self._scans_in_flight = max(0, self._scans_in_flight - 1)
            if self._scans_in_flight == 0:
                self.activity = Activity.IDLE

        if future.cancelled():
            return
        error = future.exception()
        if isinstance(error, StoreUnavailable):
            self._on_store_failure(error)
            return
        if error is not None:
            logger.error("Scan failed: %s", error)
            self._notice(f"Scan failed: {error}")
            return

        sessions: list[ScanSession] = future.result()
        if sessions:
            self.last_scan = sessions[-1]
        errors = sum(len(s.errors) for s in sessions)
        if errors:
            self._notice(f"Scan finished with {errors} unreadable path(s)")
        if self.watcher is not None:
            self.watcher.set_roots(self._watch_roots())

    def _job_finished(self, handle: JobHandle) -> None:
        self._notice(f"Job {handle.id} {handle.kind.value} {handle.state.value}: {handle.message}")

        if handle.kind == JobKind.REBUILD and handle.state == JobState.SUCCEEDED:
            self.request_scan(handle.targets[0])
            return

        if (
            handle.kind == JobKind.DELETE
            and handle.state == JobState.FAILED
            and handle.needs_privilege
            and handle.origin == "operator"
        ):
            tracked = [self.store.get_artifact(t) for t in handle.targets]
            remaining = [a.path for a in tracked if a and a.status == ArtifactStatus.ACTIVE]
            if remaining:
                self._open(
                    Modal.CREDENTIAL_PROMPT,
                    remaining,
                    f"Permission denied. Enter your password to delete "
                    f"{len(remaining)} path(s) with sudo.",
                )

    def snapshot(self) -> Snapshot:
        """Consistent read-only view for the display."""
        with self._lock:
            state = {
                "activity": self.activity,
                "modal": self.modal,
                "modal_message": self.modal_message,
                "pending_targets": list(self.pending_targets),
                "policy": self._policy,
                "notices": list(self.notices),
                "fatal_error": self.fatal_error,
            }
        try:
            artifacts = self.store.list_artifacts()
            exclusions = self.store.list_exclusions()
            last_scan = self.last_scan or self.store.last_scan()
        except StoreUnavailable as e:
            self._on_store_failure(e)
            artifacts, exclusions, last_scan = [], [], None
            state["fatal_error"] = str(e)

        return Snapshot(
            artifacts=artifacts,
            jobs=[j.snapshot() for j in self.executor.jobs()],
            exclusions=exclusions,
            last_scan=last_scan,
            watcher_mode=self.watcher.mode if self.watcher else "stopped",
            **state,
        )

    def history(self, limit: int = 100) -> list[HistoryEvent]:
        """Newest history events; empty (and fatal) if the store is gone."""
        try:
            return self.store.list_history(limit)
        except StoreUnavailable as e:
            self._on_store_failure(e)
            return []

    # =========================================================================
    # Internals
    # =========================================================================

    def _track(self, handle: JobHandle) -> JobHandle:
        handle.add_done_callback(lambda h: self._events.put(("job", h)))
        return handle

    def _notice(self, message: str) -> None:
        with self._lock:
            self.notices.append(message)

    def _watch_roots(self) -> list[str]:
        return [p.root_path for p in self.store.list_projects()]

    def _on_watch_rescan(self, subtree: str) -> None:
        logger.debug("Coalesced rescan of %s", subtree)
        self.request_scan(subtree)

    def _on_watch_degraded(self, reason: str) -> None:
        self._events.put(("degraded", reason))

    def _on_store_failure(self, error: StoreUnavailable) -> None:
        logger.error("Store unavailable: %s", error)
        self._events.put(("fatal", str(error)))
