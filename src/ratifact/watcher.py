"""
Filesystem change detection for tracked project roots.

Two interchangeable change sources exist: an event-driven one backed by
watchdog and a polling one that simply asks for a rescan of every root on an
interval. The Watcher starts with events and falls back to polling when the
OS runs out of watch descriptors. Either way, notifications go through a
Coalescer so that a burst of events yields one rescan per subtree.
"""

import errno
import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Iterable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ratifact.errors import ResourceExhausted
from ratifact.models import is_under
from ratifact.scheduler import PeriodicTask

logger = logging.getLogger(__name__)

# errno values meaning the OS refused another watch or inotify instance
EXHAUSTION_ERRNOS = frozenset({errno.ENOSPC, errno.EMFILE, errno.ENFILE})

# watchdog event types that mean something on disk changed
CHANGE_EVENTS = frozenset({"created", "modified", "deleted", "moved"})

Notify = Callable[[str], None]


# =============================================================================
# Coalescing
# =============================================================================


class Coalescer:
    """
    Debounce change notifications per subtree.

    A subtree is flushed once no new notification arrived for it during the
    quiet period, so any burst turns into a single callback.
    """

    def __init__(
        self,
        callback: Notify,
        quiet_period: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.callback = callback
        self.quiet_period = quiet_period
        self.clock = clock
        self._pending: dict[str, float] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def notify(self, subtree: str) -> None:
        with self._lock:
            self._pending[subtree] = self.clock()

    def pending(self) -> list[str]:
        with self._lock:
            return sorted(self._pending)

    def flush_due(self, now: float | None = None) -> list[str]:
        """
        Fire the callback for every subtree whose quiet period has elapsed.

        A due subtree nested in another due subtree is dropped, since the
        outer rescan covers it.

        Returns:
            The subtrees that were flushed
        """
        now = self.clock() if now is None else now
        with self._lock:
            due = [s for s, t in self._pending.items() if now - t >= self.quiet_period]
            for subtree in due:
                del self._pending[subtree]

        flushed = [s for s in sorted(due) if not any(o != s and is_under(s, o) for o in due)]
        for subtree in flushed:
            try:
                self.callback(subtree)
            except Exception:
                logger.exception("Rescan request for %s failed", subtree)
        return flushed

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="ratifact-coalescer", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._thread = None

    def _loop(self) -> None:
        tick = max(self.quiet_period / 4, 0.05)
        while not self._stop.wait(tick):
            self.flush_due()


# =============================================================================
# Change sources
# =============================================================================


class ChangeSource(ABC):
    """Something that reports paths which may have changed."""

    mode = "stopped"

    @abstractmethod
    def start(self, roots: Iterable[str], notify: Notify) -> None:
        """Begin reporting changes under roots; may raise ResourceExhausted."""

    @abstractmethod
    def add_root(self, root: str) -> None: ...

    @abstractmethod
    def remove_root(self, root: str) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...


class _ForwardingHandler(FileSystemEventHandler):
    """Passes every changed path of a watchdog event on to a notify function."""

    def __init__(self, notify: Notify):
        super().__init__()
        self.notify = notify

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in CHANGE_EVENTS:
            return
        self.notify(os.fsdecode(event.src_path))
        dest = getattr(event, "dest_path", "")
        if dest:
            self.notify(os.fsdecode(dest))


class EventChangeSource(ChangeSource):
    """Recursive OS notifications through a watchdog observer."""

    mode = "events"

    def __init__(self, observer_factory: Callable[[], object] = Observer):
        self.observer_factory = observer_factory
        self._observer = None
        self._handler: _ForwardingHandler | None = None
        self._watches: dict[str, object] = {}

    def start(self, roots: Iterable[str], notify: Notify) -> None:
        self._handler = _ForwardingHandler(notify)
        self._observer = self.observer_factory()
        try:
            for root in roots:
                self._schedule(root)
            self._observer.start()
        except OSError as e:
            self.stop()
            if e.errno in EXHAUSTION_ERRNOS:
                raise ResourceExhausted(str(e)) from e
            raise

    def add_root(self, root: str) -> None:
        if self._observer is None or root in self._watches:
            return
        try:
            self._schedule(root)
        except OSError as e:
            if e.errno in EXHAUSTION_ERRNOS:
                raise ResourceExhausted(str(e)) from e
            logger.warning("Cannot watch %s: %s", root, e)

    def remove_root(self, root: str) -> None:
        watch = self._watches.pop(root, None)
        if watch is not None and self._observer is not None:
            try:
                self._observer.unschedule(watch)
            except KeyError:
                pass

    def stop(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            if self._observer.is_alive():
                self._observer.join(timeout=5)
        self._observer = None
        self._watches.clear()

    def _schedule(self, root: str) -> None:
        if not os.path.isdir(root):
            logger.debug("Not watching missing root %s", root)
            return
        self._watches[root] = self._observer.schedule(self._handler, root, recursive=True)


class PollingChangeSource(ChangeSource):
    """Fallback that reports every root as changed on a fixed interval."""

    mode = "polling"

    def __init__(self, interval: float = 300.0):
        self.interval = interval
        self._roots: set[str] = set()
        self._lock = threading.Lock()
        self._notify: Notify | None = None
        self._task: PeriodicTask | None = None

    def start(self, roots: Iterable[str], notify: Notify) -> None:
        with self._lock:
            self._roots = set(roots)
        self._notify = notify
        self._task = PeriodicTask(self.interval, self.poll, name="poll")
        self._task.start()

    def add_root(self, root: str) -> None:
        with self._lock:
            self._roots.add(root)

    def remove_root(self, root: str) -> None:
        with self._lock:
            self._roots.discard(root)

    def poll(self) -> None:
        with self._lock:
            roots = sorted(self._roots)
        if self._notify is None:
            return
        for root in roots:
            self._notify(root)

    def stop(self) -> None:
        if self._task is not None:
            self._task.stop(timeout=5)
        self._task = None


# =============================================================================
# Watcher
# =============================================================================


class Watcher:
    """Turns filesystem changes under tracked roots into coalesced rescans."""

    def __init__(
        self,
        on_rescan: Notify,
        quiet_period: float = 1.0,
        poll_interval: float = 300.0,
        source_factory: Callable[[], ChangeSource] = EventChangeSource,
        on_degraded: Callable[[str], None] | None = None,
    ):
        self.coalescer = Coalescer(on_rescan, quiet_period)
        self.poll_interval = poll_interval
        self.source_factory = source_factory
        self.on_degraded = on_degraded
        self.degraded_reason: str | None = None
        self._roots: set[str] = set()
        self._source: ChangeSource | None = None
        self._lock = threading.RLock()

    @property
    def mode(self) -> str:
        with self._lock:
            return self._source.mode if self._source else "stopped"

    @property
    def roots(self) -> list[str]:
        with self._lock:
            return sorted(self._roots)

    def start(self, roots: Iterable[str]) -> None:
        """Watch roots, falling back to polling if the OS refuses."""
        with self._lock:
            if self._source is not None:
                return
            self._roots = {os.path.abspath(r) for r in roots}
            self.coalescer.start()
            source = self.source_factory()
            try:
                source.start(sorted(self._roots), self._on_change)
            except ResourceExhausted as e:
                self._degrade(str(e))
                return
            self._source = source
            logger.info("Watching %d roots (%s)", len(self._roots), source.mode)

    def track(self, root: str) -> None:
        """Add a root to the watch set."""
        root = os.path.abspath(root)
        with self._lock:
            if root in self._roots:
                return
            self._roots.add(root)
            if self._source is None:
                return
            try:
                self._source.add_root(root)
            except ResourceExhausted as e:
                self._degrade(str(e))

    def untrack(self, root: str) -> None:
        root = os.path.abspath(root)
        with self._lock:
            self._roots.discard(root)
            if self._source is not None:
                self._source.remove_root(root)

    def set_roots(self, roots: Iterable[str]) -> None:
        """Bring the watch set in line with roots."""
        wanted = {os.path.abspath(r) for r in roots}
        with self._lock:
            current = set(self._roots)
        for root in sorted(current - wanted):
            self.untrack(root)
        for root in sorted(wanted - current):
            self.track(root)

    def subtree_for(self, path: str) -> str | None:
        """Deepest tracked root containing path."""
        with self._lock:
            owners = [r for r in self._roots if is_under(path, r)]
        return max(owners, key=len) if owners else None

    def stop(self) -> None:
        with self._lock:
            if self._source is not None:
                self._source.stop()
            self._source = None
        self.coalescer.stop()

    def _on_change(self, path: str) -> None:
        subtree = self.subtree_for(path)
        if subtree is not None:
            self.coalescer.notify(subtree)

    def _degrade(self, reason: str) -> None:
        logger.warning(
            "Filesystem notifications unavailable (%s); polling every %.0fs instead",
            reason,
            self.poll_interval,
        )
        if self._source is not None:
            self._source.stop()
        self.degraded_reason = reason
        self._source = PollingChangeSource(self.poll_interval)
        self._source.start(sorted(self._roots), self._on_change)
        if self.on_degraded:
            self.on_degraded(reason)
