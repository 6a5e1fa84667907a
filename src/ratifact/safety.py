"""
Safety and retention engine.

Nothing is removed automatically unless three independent checks agree:
the store holds an active record for the path, the path on disk is still a
recognised build output of its project, and the artifact has not been
modified for at least the retention period. The age check is repeated
inside the delete job right before removal, against a fresh measurement.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from ratifact.classifier import classify
from ratifact.cleaner import is_path_safe
from ratifact.errors import InvalidPolicy
from ratifact.jobs import JobExecutor, JobHandle
from ratifact.models import Artifact, ArtifactStatus, RetentionPolicy, is_excluded
from ratifact.recursive_scanner import expand_path, measure_tree
from ratifact.store import ArtifactStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Verdict:
    """Outcome of the three safety checks for one path."""

    path: str
    in_store: bool
    matches_pattern: bool
    old_enough: bool
    age_days: float | None = None
    notes: list[str] = field(default_factory=list)

    @property
    def eligible(self) -> bool:
        return self.in_store and self.matches_pattern and self.old_enough

    @property
    def reasons(self) -> list[str]:
        reasons = list(self.notes)
        if not self.in_store:
            reasons.append("no active store record")
        if not self.matches_pattern:
            reasons.append("not a recognised build output")
        if not self.old_enough:
            if self.age_days is None:
                reasons.append("age unknown")
            else:
                reasons.append(f"modified {self.age_days:.1f} days ago")
        return reasons


def matches_build_pattern(path: str, project_root: str | None = None) -> bool:
    """
    Check a path against the live filesystem as a build output.

    Args:
        path: Absolute artifact path
        project_root: If given, the output must sit directly in this project root

    Returns:
        True if the path is an unprotected directory the classifier recognises
    """
    if not is_path_safe(path):
        return False
    p = Path(path)
    if p.is_symlink() or not p.is_dir():
        return False
    if project_root is not None and str(p.parent) != project_root:
        return False
    classification = classify(p, is_dir=True)
    return bool(classification and classification.is_build_output)


def _readable_dir(path: str) -> bool:
    expanded = str(expand_path(path))
    return os.path.isdir(expanded) and os.access(expanded, os.R_OK | os.X_OK)


def validate_policy(policy: RetentionPolicy) -> RetentionPolicy:
    """
    Validate a retention policy before it is honored.

    Raises:
        InvalidPolicy: If retention days are not positive or a scan root is
            missing or unreadable
    """
    if policy.retention_days <= 0:
        raise InvalidPolicy(f"Retention days must be positive, got {policy.retention_days}")
    for path in policy.scan_paths:
        if not _readable_dir(path):
            raise InvalidPolicy(f"Scan path does not exist or is not readable: {path}")
    return policy


def load_policy(store: ArtifactStore) -> RetentionPolicy:
    """
    Read the stored policy without trusting it.

    Unparseable data yields the defaults. A policy with a bad scan root keeps
    its retention period and readable roots but has auto removal switched off.
    """
    data = store.load_policy_data()
    if data is None:
        return RetentionPolicy()

    try:
        policy = RetentionPolicy.model_validate(data)
    except ValidationError as e:
        logger.warning("Stored retention policy is invalid, using defaults: %s", e)
        return RetentionPolicy()

    try:
        return validate_policy(policy)
    except InvalidPolicy as e:
        logger.warning("%s; automatic removal disabled", e)
        return RetentionPolicy(
            retention_days=policy.retention_days,
            auto_removal_enabled=False,
            scan_paths=[p for p in policy.scan_paths if _readable_dir(p)],
        )


class SafetyEngine:
    """Decides what may be removed automatically and submits the removals."""

    def __init__(
        self,
        store: ArtifactStore,
        policy: RetentionPolicy | None = None,
        executor: JobExecutor | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.executor = executor
        self.clock = clock
        self._policy = policy or RetentionPolicy()
        self._lock = threading.Lock()

    @property
    def policy(self) -> RetentionPolicy:
        with self._lock:
            return self._policy

    def set_policy(self, policy: RetentionPolicy) -> None:
        """Replace the policy after validating it."""
        validate_policy(policy)
        with self._lock:
            self._policy = policy

    def evaluate(
        self,
        path: str,
        now: datetime | None = None,
        fresh: bool = False,
        statuses: tuple[ArtifactStatus, ...] = (ArtifactStatus.ACTIVE,),
    ) -> Verdict:
        """
        Run the three checks for one path.

        Args:
            path: Artifact path
            now: Reference time (defaults to the engine clock)
            fresh: Re-measure the newest mtime on disk instead of trusting the store
            statuses: Store statuses that satisfy the store check
        """
        now = now or self.clock()
        policy = self.policy
        notes: list[str] = []

        record = self.store.get_artifact(path)
        in_store = record is not None and record.status in statuses
        matches = matches_build_pattern(path, record.project_root if record else None)

        age_days = None
        if record is not None:
            last_modified = record.last_modified
            if fresh and matches:
                try:
                    newest = datetime.fromtimestamp(measure_tree(Path(path)).newest_mtime)
                    last_modified = max(last_modified, newest)
                except OSError as e:
                    notes.append(f"cannot measure: {e}")
                    last_modified = now
            age_days = (now - last_modified).total_seconds() / 86400

        return Verdict(
            path=path,
            in_store=in_store,
            matches_pattern=matches,
            old_enough=age_days is not None and age_days >= policy.retention_days,
            age_days=age_days,
            notes=notes,
        )

    def is_eligible_for_auto_delete(self, artifact: Artifact, now: datetime | None = None) -> bool:
        """True only when auto removal is enabled and all three checks hold."""
        if not self.policy.auto_removal_enabled:
            return False
        return self.evaluate(artifact.path, now).eligible

    def preview(self, now: datetime | None = None) -> list[str]:
        """Paths that would be removed now if auto removal were enabled."""
        now = now or self.clock()
        return [a.path for a in self.store.read_all_active() if self.evaluate(a.path, now).eligible]

    def recheck(self, path: str) -> str | None:
        """
        Final check made inside the delete job just before removal.

        Returns:
            A skip reason, or None if the path may be removed
        """
        if not self.policy.auto_removal_enabled:
            return "automatic removal disabled"
        if is_excluded(path, self.store.list_exclusions()):
            return "excluded"
        # The job has already claimed the record, so pending deletion counts.
        verdict = self.evaluate(
            path,
            self.clock(),
            fresh=True,
            statuses=(ArtifactStatus.ACTIVE, ArtifactStatus.PENDING_DELETE),
        )
        if verdict.eligible and not verdict.notes:
            return None
        return "; ".join(verdict.reasons)

    def run_cycle(self) -> list[JobHandle]:
        """Submit one delete job per eligible artifact."""
        if not self.policy.auto_removal_enabled or self.executor is None:
            return []

        busy = {t for job in self.executor.active_jobs() for t in job.targets}
        handles = []
        for path in self.preview():
            if path in busy:
                continue
            handles.append(
                self.executor.submit_delete([path], origin="auto", precondition=self.recheck)
            )
        if handles:
            logger.info("Retention cycle submitted %d deletions", len(handles))
        return handles
