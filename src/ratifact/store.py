"""
SQLite persistent store for ratifact.

The store is the single source of truth for what we last believed was on
disk. Every status write carries a logical time; a write whose logical time
is not newer than the one already stored is rejected, so a verified
deletion can never be overwritten by a scan that started before it.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional

from ratifact.errors import InconsistentState, StoreUnavailable
from ratifact.models import (
    Artifact,
    ArtifactStatus,
    ExclusionEntry,
    HistoryEvent,
    HistoryKind,
    Project,
    RetentionPolicy,
    ScanSession,
    is_under,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    root_path     TEXT PRIMARY KEY,
    language      TEXT NOT NULL,
    build_system  TEXT NOT NULL,
    first_seen    REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS artifacts (
    path          TEXT PRIMARY KEY,
    project_root  TEXT NOT NULL,
    language      TEXT NOT NULL,
    category_id   TEXT NOT NULL DEFAULT '',
    size_bytes    INTEGER NOT NULL DEFAULT 0,
    file_count    INTEGER NOT NULL DEFAULT 0,
    last_modified REAL NOT NULL,
    first_seen    REAL NOT NULL,
    status        TEXT NOT NULL,
    logical_time  INTEGER NOT NULL,
    error         TEXT
);
CREATE INDEX IF NOT EXISTS idx_artifacts_status ON artifacts(status);

CREATE TABLE IF NOT EXISTS exclusions (
    path        TEXT PRIMARY KEY,
    created_at  REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS scan_history (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    root         TEXT NOT NULL,
    started_at   REAL NOT NULL,
    finished_at  REAL,
    found        INTEGER NOT NULL DEFAULT 0,
    inserted     INTEGER NOT NULL DEFAULT 0,
    restored     INTEGER NOT NULL DEFAULT 0,
    removed      INTEGER NOT NULL DEFAULT 0,
    excluded     INTEGER NOT NULL DEFAULT 0,
    errors       TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS history (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    path        TEXT NOT NULL,
    kind        TEXT NOT NULL,
    detail      TEXT NOT NULL DEFAULT '',
    output      TEXT NOT NULL DEFAULT '',
    created_at  REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_history_path ON history(path);

CREATE TABLE IF NOT EXISTS settings (
    key    TEXT PRIMARY KEY,
    value  TEXT NOT NULL
);
"""

POLICY_KEY = "retention_policy"


@dataclass(frozen=True)
class Transition:
    """Status change applied by an upsert."""

    path: str
    old: Optional[ArtifactStatus]
    new: ArtifactStatus

    @property
    def changed(self) -> bool:
        return self.old != self.new


class LogicalClock:
    """Monotonically increasing marker attached to every store write."""

    def __init__(self, start: int = 0):
        self._value = start
        self._lock = threading.Lock()

    def tick(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def current(self) -> int:
        return self._value


def _ts(value: datetime) -> float:
    return value.timestamp()


def _dt(value: float | None) -> datetime | None:
    return datetime.fromtimestamp(value) if value is not None else None


class ArtifactStore:
    """Transactional access to artifacts, projects, exclusions and history."""

    def __init__(self, db_path: str | Path = ":memory:"):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        try:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, timeout=10, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            if self.db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.executescript(SCHEMA)
            row = self._conn.execute("SELECT MAX(logical_time) FROM artifacts").fetchone()
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailable(f"Cannot open store at {self.db_path}: {e}") from e

        self.clock = LogicalClock(row[0] or 0)
        logger.debug("Opened store %s (logical time %d)", self.db_path, self.clock.current)

    # =========================================================================
    # Connection handling
    # =========================================================================

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialized transaction; commits on success, rolls back on error."""
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.OperationalError as e:
                raise StoreUnavailable(str(e)) from e

    def _query(self, sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, tuple(params)).fetchall()
            except sqlite3.OperationalError as e:
                raise StoreUnavailable(str(e)) from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def next_logical_time(self) -> int:
        """Allocate a logical time for a new event."""
        return self.clock.tick()

    # =========================================================================
    # Artifacts
    # =========================================================================

    @staticmethod
    def _row_to_artifact(row: sqlite3.Row) -> Artifact:
        return Artifact(
            path=row["path"],
            project_root=row["project_root"],
            language=row["language"],
            category_id=row["category_id"],
            size_bytes=row["size_bytes"],
            file_count=row["file_count"],
            last_modified=_dt(row["last_modified"]),
            first_seen=_dt(row["first_seen"]),
            status=ArtifactStatus(row["status"]),
            logical_time=row["logical_time"],
            error=row["error"],
        )

    def upsert_artifact(self, artifact: Artifact, logical_time: int) -> Transition | None:
        """
        Insert or refresh an artifact that was found on disk.

        New paths are inserted as active. Existing records get fresh size and
        mtime; deleted or excluded records become active again, while a record
        pending deletion keeps that status until its job reports.

        Args:
            artifact: Artifact as measured by the scanner
            logical_time: Logical time of the scan that found it

        Returns:
            The applied Transition, or None if a newer write already won
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT status, logical_time FROM artifacts WHERE path = ?", (artifact.path,)
            ).fetchone()

            if row is None:
                conn.execute(
                    """
                    INSERT INTO artifacts (path, project_root, language, category_id, size_bytes,
                        file_count, last_modified, first_seen, status, logical_time, error)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        artifact.path,
                        artifact.project_root,
                        artifact.language,
                        artifact.category_id,
                        artifact.size_bytes,
                        artifact.file_count,
                        _ts(artifact.last_modified),
                        _ts(artifact.first_seen),
                        ArtifactStatus.ACTIVE.value,
                        logical_time,
                        artifact.error,
                    ),
                )
                return Transition(artifact.path, None, ArtifactStatus.ACTIVE)

            if row["logical_time"] >= logical_time:
                self._reject(artifact.path, logical_time, row["logical_time"])
                return None

            old = ArtifactStatus(row["status"])
            new = old if old == ArtifactStatus.PENDING_DELETE else ArtifactStatus.ACTIVE
            conn.execute(
                """
                UPDATE artifacts SET project_root = ?, language = ?, category_id = ?,
                    size_bytes = ?, file_count = ?, last_modified = ?, status = ?,
                    logical_time = ?, error = ?
                WHERE path = ?
                """,
                (
                    artifact.project_root,
                    artifact.language,
                    artifact.category_id,
                    artifact.size_bytes,
                    artifact.file_count,
                    _ts(artifact.last_modified),
                    new.value,
                    logical_time,
                    artifact.error,
                    artifact.path,
                ),
            )
            return Transition(artifact.path, old, new)

    def mark_status(
        self,
        path: str,
        status: ArtifactStatus,
        logical_time: int,
        only_from: Iterable[ArtifactStatus] | None = None,
    ) -> bool:
        """
        Conditionally move an artifact to a new status.

        Args:
            path: Artifact path
            status: Target status
            logical_time: Logical time of the triggering event
            only_from: If given, apply only when the current status is one of these

        Returns:
            True if the write was applied
        """
        sql = "UPDATE artifacts SET status = ?, logical_time = ? WHERE path = ? AND logical_time < ?"
        params: list = [status.value, logical_time, path, logical_time]
        allowed = [s.value for s in only_from] if only_from is not None else None
        if allowed is not None:
            sql += f" AND status IN ({', '.join('?' for _ in allowed)})"
            params.extend(allowed)

        with self._transaction() as conn:
            applied = conn.execute(sql, params).rowcount > 0
            if not applied:
                row = conn.execute(
                    "SELECT status, logical_time FROM artifacts WHERE path = ?", (path,)
                ).fetchone()
                if row is not None and row["logical_time"] >= logical_time:
                    self._reject(path, logical_time, row["logical_time"])
        return applied

    def record_error(self, path: str, message: str | None) -> None:
        """Remember the last IO error for an artifact (not a status change)."""
        with self._transaction() as conn:
            conn.execute("UPDATE artifacts SET error = ? WHERE path = ?", (message, path))

    def _reject(self, path: str, attempted: int, current: int) -> None:
        # The newer write is authoritative; the stale one is dropped.
        logger.debug("%s", InconsistentState(path, attempted, current))

    def get_artifact(self, path: str) -> Artifact | None:
        rows = self._query("SELECT * FROM artifacts WHERE path = ?", (path,))
        return self._row_to_artifact(rows[0]) if rows else None

    def read_all_active(self) -> list[Artifact]:
        """All artifacts currently believed to be on disk and eligible for action."""
        return self.list_artifacts([ArtifactStatus.ACTIVE])

    def list_artifacts(
        self,
        statuses: Iterable[ArtifactStatus] | None = None,
        under: str | None = None,
    ) -> list[Artifact]:
        """
        List artifacts, largest first.

        Args:
            statuses: Optional status filter
            under: Optional directory; only artifacts at or below it are returned
        """
        sql = "SELECT * FROM artifacts"
        params: list = []
        if statuses is not None:
            values = [s.value for s in statuses]
            sql += f" WHERE status IN ({', '.join('?' for _ in values)})"
            params.extend(values)
        sql += " ORDER BY size_bytes DESC, path"
        artifacts = [self._row_to_artifact(r) for r in self._query(sql, params)]
        if under is not None:
            artifacts = [a for a in artifacts if is_under(a.path, under)]
        return artifacts

    # =========================================================================
    # Projects
    # =========================================================================

    def upsert_project(self, project: Project) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO projects (root_path, language, build_system, first_seen)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(root_path) DO UPDATE SET
                    language = excluded.language, build_system = excluded.build_system
                """,
                (project.root_path, project.language, project.build_system, _ts(project.first_seen)),
            )

    def remove_project(self, root_path: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM projects WHERE root_path = ?", (root_path,))

    def list_projects(self, under: str | None = None) -> list[Project]:
        projects = [
            Project(
                root_path=r["root_path"],
                language=r["language"],
                build_system=r["build_system"],
                first_seen=_dt(r["first_seen"]),
            )
            for r in self._query("SELECT * FROM projects ORDER BY root_path")
        ]
        if under is not None:
            projects = [p for p in projects if is_under(p.root_path, under)]
        return projects

    # =========================================================================
    # Exclusions
    # =========================================================================

    def add_exclusion(self, path: str) -> ExclusionEntry:
        entry = ExclusionEntry(path=path)
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO exclusions (path, created_at) VALUES (?, ?)",
                (entry.path, _ts(entry.created_at)),
            )
        return entry

    def remove_exclusion(self, path: str) -> bool:
        with self._transaction() as conn:
            return conn.execute("DELETE FROM exclusions WHERE path = ?", (path,)).rowcount > 0

    def list_exclusions(self) -> list[ExclusionEntry]:
        return [
            ExclusionEntry(path=r["path"], created_at=_dt(r["created_at"]))
            for r in self._query("SELECT * FROM exclusions ORDER BY created_at, path")
        ]

    # =========================================================================
    # History
    # =========================================================================

    def append_history(self, event: HistoryEvent) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO history (path, kind, detail, output, created_at) VALUES (?, ?, ?, ?, ?)",
                (event.path, event.kind.value, event.detail, event.output, _ts(event.created_at)),
            )

    def list_history(self, limit: int = 50, path: str | None = None) -> list[HistoryEvent]:
        sql = "SELECT * FROM history"
        params: list = []
        if path is not None:
            sql += " WHERE path = ?"
            params.append(path)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        return [
            HistoryEvent(
                path=r["path"],
                kind=HistoryKind(r["kind"]),
                detail=r["detail"],
                output=r["output"],
                created_at=_dt(r["created_at"]),
            )
            for r in self._query(sql, params)
        ]

    def record_scan(self, session: ScanSession) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO scan_history (root, started_at, finished_at, found, inserted,
                    restored, removed, excluded, errors)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.root,
                    _ts(session.started_at),
                    _ts(session.finished_at) if session.finished_at else None,
                    session.found,
                    session.inserted,
                    session.restored,
                    session.removed,
                    session.excluded,
                    json.dumps(session.errors),
                ),
            )

    def last_scan(self) -> ScanSession | None:
        rows = self._query("SELECT * FROM scan_history ORDER BY id DESC LIMIT 1")
        if not rows:
            return None
        r = rows[0]
        return ScanSession(
            root=r["root"],
            started_at=_dt(r["started_at"]),
            finished_at=_dt(r["finished_at"]),
            found=r["found"],
            inserted=r["inserted"],
            restored=r["restored"],
            removed=r["removed"],
            excluded=r["excluded"],
            errors=json.loads(r["errors"]),
        )

    # =========================================================================
    # Settings
    # =========================================================================

    def load_policy_data(self) -> dict | None:
        """Raw stored policy; validation is the safety engine's job."""
        rows = self._query("SELECT value FROM settings WHERE key = ?", (POLICY_KEY,))
        if not rows:
            return None
        try:
            return json.loads(rows[0]["value"])
        except json.JSONDecodeError:
            logger.warning("Stored retention policy is not valid JSON; ignoring it")
            return None

    def save_policy(self, policy: RetentionPolicy) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO settings (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (POLICY_KEY, policy.model_dump_json()),
            )

