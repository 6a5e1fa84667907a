"""
Background job execution for ratifact.

Delete, elevated delete and rebuild run on a thread pool so that nothing
blocks the interactive loop. Callers get a JobHandle immediately and can
poll it, wait on it or cancel it. Deletions are verified after the fact:
an artifact is only marked deleted once its path is confirmed absent.
"""

import itertools
import logging
import os
import signal
import subprocess
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Sequence

from ratifact.cleaner import delete_path, elevated_delete_command, is_auth_failure, is_path_safe
from ratifact.errors import PrivilegeError, StoreUnavailable, SubprocessFailure
from ratifact.models import (
    ArtifactStatus,
    HistoryEvent,
    HistoryKind,
    JobKind,
    JobSnapshot,
    JobState,
    format_size,
)
from ratifact.store import ArtifactStore

logger = logging.getLogger(__name__)

# A precondition returns a skip reason, or None when the target may be removed
Precondition = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class ProcessResult:
    """Exit status and combined output of a finished subprocess."""

    returncode: int
    output: str
    cancelled: bool = False


def run_subprocess(
    argv: Sequence[str],
    cwd: str | None = None,
    input: str | None = None,
    cancel_event: threading.Event | None = None,
    poll_interval: float = 0.2,
    kill_grace: float = 5.0,
) -> ProcessResult:
    """
    Run a command detached from the terminal and capture its output.

    stdin is closed unless input is given; stdout and stderr are merged and
    captured. When cancel_event is set while the process runs, its whole
    process group gets SIGTERM, then SIGKILL once kill_grace has passed; the
    process is always awaited.

    Args:
        argv: Command and arguments
        cwd: Working directory
        input: Text written to stdin
        cancel_event: Event that requests termination
        poll_interval: Seconds between cancellation checks
        kill_grace: Seconds between SIGTERM and SIGKILL after cancellation

    Returns:
        ProcessResult with the exit code and captured output
    """
    proc = subprocess.Popen(
        list(argv),
        cwd=cwd,
        stdin=subprocess.PIPE if input is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        start_new_session=True,
    )

    pending_input = input
    cancelled = False
    killed = False
    kill_at = 0.0
    while True:
        try:
            output, _ = proc.communicate(input=pending_input, timeout=poll_interval)
            break
        except subprocess.TimeoutExpired:
            pending_input = None
            if cancel_event is None or not cancel_event.is_set():
                continue
            if not cancelled:
                cancelled = True
                kill_at = time.monotonic() + kill_grace
                logger.debug("Terminating %s (process group %d)", argv[0], proc.pid)
                _signal_group(proc, signal.SIGTERM)
            elif not killed and time.monotonic() >= kill_at:
                killed = True
                logger.warning("%s ignored SIGTERM, killing process group %d", argv[0], proc.pid)
                _signal_group(proc, signal.SIGKILL)

    return ProcessResult(proc.returncode, output or "", cancelled)


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    # start_new_session makes the child the leader of its own group
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass


class JobHandle:
    """Live handle to a submitted job."""

    def __init__(self, job_id: int, kind: JobKind, targets: list[str], origin: str = "operator"):
        self.id = job_id
        self.kind = kind
        self.targets = targets
        self.origin = origin
        self.message = ""
        self.output = ""
        self.needs_privilege = False
        self.submitted_at = datetime.now()
        self.finished_at: datetime | None = None
        self._state = JobState.QUEUED
        self._lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._done_event = threading.Event()
        self._callbacks: list[Callable[["JobHandle"], None]] = []

    def __repr__(self) -> str:
        return f"JobHandle(id={self.id}, kind={self.kind.value}, state={self.state.value})"

    @property
    def state(self) -> JobState:
        with self._lock:
            return self._state

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> bool:
        """
        Request cancellation.

        A queued job is cancelled at once and never runs. A running job is
        signalled and keeps its handle open until it reports.

        Returns:
            False if the job had already finished
        """
        with self._lock:
            if self._state.is_terminal:
                return False
            self._cancel_event.set()
            if self._state != JobState.QUEUED:
                return True
            # Settled under the lock so a worker can no longer start it.
            callbacks = self._settle(JobState.CANCELLED, "Cancelled before start")
        self._notify(callbacks)
        return True

    def done(self) -> bool:
        return self._done_event.is_set()

    def wait(self, timeout: float | None = None) -> JobState:
        """Block until the job reports (or timeout expires) and return its state."""
        self._done_event.wait(timeout)
        return self.state

    def add_done_callback(self, fn: Callable[["JobHandle"], None]) -> None:
        with self._lock:
            if not self._state.is_terminal:
                self._callbacks.append(fn)
                return
        fn(self)

    def snapshot(self) -> JobSnapshot:
        with self._lock:
            return JobSnapshot(
                id=self.id,
                kind=self.kind,
                targets=list(self.targets),
                state=self._state,
                message=self.message,
                origin=self.origin,
                needs_privilege=self.needs_privilege,
                submitted_at=self.submitted_at,
                finished_at=self.finished_at,
            )

    def _start(self) -> bool:
        with self._lock:
            if self._state != JobState.QUEUED:
                return False
            self._state = JobState.RUNNING
            return True

    def _finish(self, state: JobState, message: str) -> None:
        with self._lock:
            if self._state.is_terminal:
                return
            callbacks = self._settle(state, message)
        self._notify(callbacks)

    def _settle(self, state: JobState, message: str) -> list[Callable[["JobHandle"], None]]:
        """Move to a terminal state; the caller holds the lock."""
        self._state = state
        self.message = message
        self.finished_at = datetime.now()
        callbacks, self._callbacks = self._callbacks, []
        return callbacks

    def _notify(self, callbacks: list[Callable[["JobHandle"], None]]) -> None:
        self._done_event.set()
        for fn in callbacks:
            try:
                fn(self)
            except Exception:
                logger.exception("Job %d done callback failed", self.id)


class JobExecutor:
    """Runs jobs on a worker pool and keeps their handles."""

    def __init__(
        self,
        store: ArtifactStore,
        max_workers: int = 4,
        runner: Callable[..., ProcessResult] = run_subprocess,
        on_store_failure: Callable[[StoreUnavailable], None] | None = None,
    ):
        self.store = store
        self.runner = runner
        self.on_store_failure = on_store_failure
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ratifact-job")
        self._ids = itertools.count(1)
        self._jobs: dict[int, JobHandle] = {}
        self._lock = threading.Lock()
        self._closed = False

    # =========================================================================
    # Submission
    # =========================================================================

    def submit_delete(
        self,
        paths: Sequence[str],
        origin: str = "operator",
        precondition: Precondition | None = None,
    ) -> JobHandle:
        """
        Delete tracked artifacts.

        Args:
            paths: Artifact paths to remove
            origin: "operator" or "auto"
            precondition: Re-check run right before each removal

        Returns:
            JobHandle for the submitted job
        """
        handle = self._new_handle(JobKind.DELETE, list(paths), origin)
        return self._submit(handle, self._run_delete, handle, precondition)

    def submit_delete_elevated(self, paths: Sequence[str], credential: str | None) -> JobHandle:
        """
        Delete tracked artifacts through sudo.

        The credential is handed to the worker only and never kept on the handle.
        """
        handle = self._new_handle(JobKind.DELETE_ELEVATED, list(paths), "operator")
        return self._submit(handle, self._run_delete_elevated, handle, credential)

    def submit_rebuild(self, project_root: str, command: Sequence[str]) -> JobHandle:
        """Run a project's build command in its root directory."""
        handle = self._new_handle(JobKind.REBUILD, [project_root], "operator")
        return self._submit(handle, self._run_rebuild, handle, list(command))

    def _new_handle(self, kind: JobKind, targets: list[str], origin: str) -> JobHandle:
        with self._lock:
            if self._closed:
                raise RuntimeError("Job executor is shut down")
            handle = JobHandle(next(self._ids), kind, targets, origin)
            self._jobs[handle.id] = handle
        logger.info("Job %d queued: %s %s", handle.id, kind.value, ", ".join(targets))
        return handle

    def _submit(self, handle: JobHandle, fn: Callable, *args) -> JobHandle:
        self._pool.submit(self._execute, handle, fn, *args)
        return handle

    def _execute(self, handle: JobHandle, fn: Callable, *args) -> None:
        if not handle._start():
            logger.info("Job %d never started (%s)", handle.id, handle.state.value)
            return
        try:
            state, message = fn(*args)
        except StoreUnavailable as e:
            logger.error("Job %d lost the store: %s", handle.id, e)
            state, message = JobState.FAILED, f"Store unavailable: {e}"
            if self.on_store_failure:
                self.on_store_failure(e)
        except Exception as e:
            logger.exception("Job %d crashed", handle.id)
            state, message = JobState.FAILED, str(e)
        handle._finish(state, message)
        logger.info("Job %d %s: %s", handle.id, state.value, message)

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, job_id: int) -> JobHandle | None:
        with self._lock:
            return self._jobs.get(job_id)

    def jobs(self) -> list[JobHandle]:
        with self._lock:
            return list(self._jobs.values())

    def active_jobs(self) -> list[JobHandle]:
        return [j for j in self.jobs() if not j.done()]

    def forget_finished(self, keep: int = 20) -> None:
        """Drop the oldest finished handles beyond keep."""
        with self._lock:
            finished = [j for j in self._jobs.values() if j.done()]
            for job in finished[: max(0, len(finished) - keep)]:
                del self._jobs[job.id]

    def shutdown(self, wait: bool = True) -> None:
        """Cancel queued jobs and let running ones finish."""
        with self._lock:
            self._closed = True
            handles = list(self._jobs.values())
        for handle in handles:
            if handle.state == JobState.QUEUED:
                handle.cancel()
        self._pool.shutdown(wait=wait)

    # =========================================================================
    # Job bodies
    # =========================================================================

    def _history(self, path: str, kind: HistoryKind, detail: str = "", output: str = "") -> None:
        self.store.append_history(HistoryEvent(path=path, kind=kind, detail=detail, output=output))

    def _begin_removal(self, path: str) -> str | None:
        """Move a target to pending deletion; returns a skip reason on refusal."""
        if not is_path_safe(path):
            return "protected path"
        if not self.store.mark_status(
            path,
            ArtifactStatus.PENDING_DELETE,
            self.store.next_logical_time(),
            only_from=[ArtifactStatus.ACTIVE],
        ):
            return "not an active artifact"
        return None

    def _restore_active(self, path: str) -> None:
        self.store.mark_status(
            path,
            ArtifactStatus.ACTIVE,
            self.store.next_logical_time(),
            only_from=[ArtifactStatus.PENDING_DELETE],
        )

    def _verify_removed(self, path: str, detail: str) -> bool:
        """Mark the target deleted if it is really gone, else put it back to active."""
        if os.path.lexists(path):
            self._restore_active(path)
            self.store.record_error(path, detail)
            return False
        # Verification beats whatever status a concurrent writer left behind.
        self.store.mark_status(path, ArtifactStatus.DELETED, self.store.next_logical_time())
        self.store.record_error(path, None)
        return True

    def _summarize(
        self, handle: JobHandle, deleted: int, freed: int, failures: list[str], skipped: list[str]
    ) -> tuple[JobState, str]:
        total = len(handle.targets)
        if failures:
            return JobState.FAILED, f"{len(failures)} of {total} failed: {failures[0]}"
        if handle.cancel_requested and deleted + len(skipped) < total:
            return JobState.CANCELLED, f"Cancelled after {deleted} of {total}"
        if skipped and deleted == 0:
            return JobState.CANCELLED, f"Skipped: {skipped[0]}"
        return JobState.SUCCEEDED, f"Deleted {deleted} ({format_size(freed)} freed)"

    def _run_delete(
        self, handle: JobHandle, precondition: Precondition | None
    ) -> tuple[JobState, str]:
        deleted = 0
        freed = 0
        failures: list[str] = []
        skipped: list[str] = []

        for path in handle.targets:
            if handle.cancel_requested:
                break

            reason = self._begin_removal(path)
            if reason is None and precondition is not None:
                reason = precondition(path)
                if reason is not None:
                    self._restore_active(path)
            if reason is not None:
                skipped.append(f"{path}: {reason}")
                if handle.origin == "auto":
                    self._history(path, HistoryKind.AUTO_DELETE_SKIPPED, reason)
                logger.info("Skipping %s: %s", path, reason)
                continue

            outcome = delete_path(Path(path))
            if outcome.permission_denied:
                handle.needs_privilege = True

            if self._verify_removed(path, outcome.error or "path still present"):
                deleted += 1
                freed += outcome.bytes_freed
                self._history(
                    path, HistoryKind.DELETED, f"{handle.origin}, {format_size(outcome.bytes_freed)}"
                )
            else:
                error = outcome.error or "path still present after removal"
                failures.append(f"{path}: {error}")
                self._history(path, HistoryKind.DELETE_FAILED, error)
                logger.warning("Could not delete %s: %s", path, error)

        return self._summarize(handle, deleted, freed, failures, skipped)

    def _run_delete_elevated(
        self, handle: JobHandle, credential: str | None
    ) -> tuple[JobState, str]:
        deleted = 0
        failures: list[str] = []
        skipped: list[str] = []

        try:
            for path in handle.targets:
                if handle.cancel_requested:
                    break

                reason = self._begin_removal(path)
                if reason is not None:
                    skipped.append(f"{path}: {reason}")
                    continue

                argv = elevated_delete_command(path, with_credential=credential is not None)
                try:
                    result = self.runner(
                        argv, input=f"{credential}\n" if credential is not None else None
                    )
                except OSError as e:
                    self._restore_active(path)
                    failures.append(f"{path}: {e}")
                    continue

                # Privileged diagnostics never reach the display.
                logger.debug("sudo rm for %s exited %d: %s", path, result.returncode, result.output)

                if result.returncode != 0 and is_auth_failure(result.output):
                    self._restore_active(path)
                    raise PrivilegeError(f"Authentication failed for {path}")

                if self._verify_removed(path, f"sudo exited with {result.returncode}"):
                    deleted += 1
                    self._history(path, HistoryKind.DELETED, "elevated")
                else:
                    failure = SubprocessFailure(
                        ["sudo", "rm", "-rf", path], result.returncode, result.output
                    )
                    failures.append(f"{path}: {failure}")
                    self._history(
                        path, HistoryKind.DELETE_FAILED, str(failure), output=result.output
                    )
        except PrivilegeError as e:
            handle.needs_privilege = True
            return JobState.FAILED, str(e)
        finally:
            credential = None

        return self._summarize(handle, deleted, 0, failures, skipped)

    def _run_rebuild(self, handle: JobHandle, command: list[str]) -> tuple[JobState, str]:
        project_root = handle.targets[0]
        try:
            result = self.runner(command, cwd=project_root, cancel_event=handle._cancel_event)
        except OSError as e:
            self._history(project_root, HistoryKind.REBUILD_FAILED, str(e))
            return JobState.FAILED, f"Cannot run {command[0]}: {e}"

        handle.output = result.output
        logger.debug("%s output:\n%s", " ".join(command), result.output)

        if result.cancelled:
            self._history(project_root, HistoryKind.REBUILD_FAILED, "cancelled", result.output)
            return JobState.CANCELLED, f"{' '.join(command)} terminated"
        if result.returncode == 0:
            self._history(project_root, HistoryKind.REBUILD_SUCCEEDED, " ".join(command), result.output)
            return JobState.SUCCEEDED, f"{' '.join(command)} finished"

        failure = SubprocessFailure(command, result.returncode, result.output)
        self._history(project_root, HistoryKind.REBUILD_FAILED, str(failure), result.output)
        return JobState.FAILED, str(failure)
