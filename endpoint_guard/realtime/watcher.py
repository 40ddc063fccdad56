"""
Realtime Watcher - scan files as they appear or change.

A watchdog observer feeds created, modified and moved paths into an
ordered, de-duplicating queue. One worker thread drains it, one path at a
time:

    wait for writes to settle -> scan_file -> report -> auto-quarantine

A path already waiting in the queue is not queued twice. An iteration that
fails is logged and the worker moves on to the next path.
"""

import logging
import os
import threading
import time
from collections import OrderedDict
from enum import Enum
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..config import GuardConfig
from ..constants import Timeouts
from ..events import EventBus, EventType
from ..exceptions import FileAccessError, GuardError, NotFoundError
from ..scanner.enumeration import is_under, normalize_prefixes
from ..scanner.models import Threat
from ..utils.error_handling import ErrorCategory, handle_error, safe_execute

if TYPE_CHECKING:
    from ..quarantine.vault import QuarantineVault
    from ..scanner.orchestrator import ScanOrchestrator
    from ..storage.history import HistoryStore

logger = logging.getLogger(__name__)


class WatcherState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class _ChangeHandler(FileSystemEventHandler):
    """Forwards file events under one watch root to the watcher queue."""

    def __init__(self, watcher: "RealtimeWatcher", root: str):
        super().__init__()
        self._watcher = watcher
        self._root = root

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory:
            self._watcher.enqueue(event.src_path, root=self._root)

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory:
            self._watcher.enqueue(event.src_path, root=self._root)

    def on_moved(self, event: FileSystemEvent):
        if not event.is_directory:
            self._watcher.enqueue(event.dest_path, root=self._root)


class RealtimeWatcher:
    """
    Usage:
        watcher = RealtimeWatcher(config, orchestrator, vault, history, events)
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(
        self,
        config: GuardConfig,
        orchestrator: "ScanOrchestrator",
        vault: "QuarantineVault",
        history: Optional["HistoryStore"] = None,
        events: Optional[EventBus] = None,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        self.config = config
        self.orchestrator = orchestrator
        self.vault = vault
        self.history = history
        self.events = events or EventBus()
        self._observer_factory = observer_factory

        self._lifecycle_lock = threading.Lock()
        self._queue_cond = threading.Condition()
        self._pending: "OrderedDict[str, None]" = OrderedDict()
        self._state = WatcherState.STOPPED
        self._stop_event = threading.Event()
        self._observer: Optional[Observer] = None
        self._worker: Optional[threading.Thread] = None
        # Worker from a previous run that outlived stop()'s join
        self._lingering: Optional[threading.Thread] = None
        self._watched: List[str] = []

        self._excluded = normalize_prefixes(
            list(config.exclusions.paths) + [config.paths.quarantine_dir]
        )
        self._ignored_names = frozenset(config.realtime.ignored_names)

    # ---------- status ----------

    @property
    def state(self) -> WatcherState:
        with self._queue_cond:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state == WatcherState.RUNNING

    @property
    def watched_paths(self) -> List[str]:
        return list(self._watched)

    @property
    def queue_size(self) -> int:
        with self._queue_cond:
            return len(self._pending)

    # ---------- lifecycle ----------

    def start(self) -> bool:
        """
        Begin watching.

        Returns False if already running, or if the worker of the previous
        run is still busy with a path. At most one worker ever processes
        paths.
        """
        with self._lifecycle_lock:
            if self.is_running:
                logger.warning("Realtime watcher already running")
                return False

            lingering = self._lingering
            if lingering is not None and lingering.is_alive():
                lingering.join(timeout=Timeouts.THREAD_JOIN_LONG)
                if lingering.is_alive():
                    logger.error("Previous realtime worker is still busy; not restarting")
                    return False
            self._lingering = None

            roots = []
            for path in self.config.realtime.watch_paths:
                path = os.path.abspath(os.path.expanduser(path))
                if os.path.isdir(path):
                    roots.append(path)
                else:
                    logger.warning(f"Watch path does not exist, skipping: {path}")

            observer = self._observer_factory()
            try:
                for root in roots:
                    observer.schedule(_ChangeHandler(self, root), root, recursive=True)
                observer.start()
            except OSError as e:
                handle_error(e, "starting filesystem observer", ErrorCategory.REALTIME, reraise=True)

            stop_event = self._stop_event = threading.Event()
            with self._queue_cond:
                self._pending.clear()
                self._state = WatcherState.RUNNING

            self._observer = observer
            self._watched = roots
            self._worker = threading.Thread(target=self._worker_loop, args=(stop_event,),
                                            daemon=True, name="realtime-scan-worker")
            self._worker.start()

        logger.info(f"Real-time protection started on {len(roots)} path(s)")
        self.events.emit(EventType.REALTIME_STATUS_CHANGED, {'enabled': True, 'paths': list(roots)})
        return True

    def stop(self) -> bool:
        """
        Stop watching. Returns False if not running.

        Once this returns no further path is processed; a path in flight
        may finish.
        """
        with self._lifecycle_lock:
            with self._queue_cond:
                if self._state != WatcherState.RUNNING:
                    return False
                self._state = WatcherState.STOPPED
                self._pending.clear()
                self._queue_cond.notify_all()
            self._stop_event.set()

            observer, self._observer = self._observer, None
            worker, self._worker = self._worker, None

            if observer is not None:
                observer.stop()
                observer.join(timeout=Timeouts.THREAD_JOIN_DEFAULT)
            if worker is not None and worker is not threading.current_thread():
                worker.join(timeout=Timeouts.THREAD_JOIN_LONG)
                if worker.is_alive():
                    logger.warning("Realtime worker did not finish within timeout")
                    self._lingering = worker

        logger.info("Real-time protection stopped")
        self.events.emit(EventType.REALTIME_STATUS_CHANGED, {'enabled': False, 'paths': []})
        return True

    # ---------- queue ----------

    def _should_ignore(self, path: str, root: Optional[str]) -> bool:
        if is_under(path, self._excluded):
            return True
        relative = os.path.relpath(path, root) if root else os.path.basename(path)
        for part in relative.split(os.sep):
            if part.startswith('.') and part not in ('.', '..'):
                return True
            if part in self._ignored_names:
                return True
        return False

    def enqueue(self, path: str, root: Optional[str] = None) -> bool:
        """Queue a changed path. Returns False if ignored or already queued."""
        path = os.path.abspath(path)
        if self._should_ignore(path, root):
            return False
        with self._queue_cond:
            if self._state != WatcherState.RUNNING or path in self._pending:
                return False
            self._pending[path] = None
            self._queue_cond.notify()
        logger.debug(f"Queued changed file: {path}")
        return True

    def _next_path(self, stop_event: Optional[threading.Event] = None) -> Optional[str]:
        if stop_event is None:
            stop_event = self._stop_event
        with self._queue_cond:
            while (self._state == WatcherState.RUNNING and not self._pending
                   and not stop_event.is_set()):
                self._queue_cond.wait(timeout=Timeouts.WATCH_QUEUE_POLL)
            # A worker whose run was stopped never drains a later run's queue
            if self._state != WatcherState.RUNNING or stop_event.is_set():
                return None
            path, _ = self._pending.popitem(last=False)
            return path

    def _worker_loop(self, stop_event: threading.Event):
        while True:
            path = self._next_path(stop_event)
            if path is None:
                break
            try:
                self.process_path(path)
            except Exception as e:
                # One bad iteration must not end realtime protection
                handle_error(e, "realtime processing", ErrorCategory.REALTIME,
                             additional_context={'path': path})

    # ---------- processing ----------

    @staticmethod
    def _file_state(path: str) -> Optional[Tuple[int, float]]:
        try:
            st = os.stat(path)
        except OSError:
            return None
        return st.st_size, st.st_mtime

    def _wait_for_settle(self, path: str) -> bool:
        """
        Wait until size and mtime hold still for settle_delay.

        Returns False if the file vanished or the watcher stopped.
        """
        stop_event = self._stop_event
        delay = self.config.realtime.settle_delay
        last = self._file_state(path)
        if last is None:
            return False
        if delay <= 0:
            return True

        poll = min(0.25, delay)
        started = stable_since = time.monotonic()
        while True:
            now = time.monotonic()
            if now - stable_since >= delay:
                return True
            if now - started >= self.config.realtime.settle_max_wait:
                logger.debug(f"File still changing after max wait, scanning anyway: {path}")
                return True
            if stop_event.wait(poll):
                return False
            current = self._file_state(path)
            if current is None:
                return False
            if current != last:
                last = current
                stable_since = time.monotonic()

    def process_path(self, path: str, settle: bool = True) -> Optional[Threat]:
        """Run one detect-and-quarantine iteration for a path."""
        if settle and not self._wait_for_settle(path):
            logger.debug(f"Skipping vanished file: {path}")
            return None

        try:
            threat = self.orchestrator.scan_file(path, apply_exclusions=True)
        except NotFoundError:
            logger.debug(f"File disappeared before scanning: {path}")
            return None
        except FileAccessError as e:
            handle_error(e, "realtime scan", ErrorCategory.FILESYSTEM,
                         additional_context={'path': path})
            return None

        if threat is None:
            return None

        logger.warning(f"Real-time threat detected: {threat.name} in {path}")
        self.events.emit(EventType.REALTIME_THREAT, threat.to_dict())

        if threat.is_heuristic and not self.config.realtime.auto_quarantine_heuristic:
            action = 'reported'
        else:
            try:
                record = self.vault.quarantine(threat.path, threat_name=threat.name)
            except GuardError as e:
                action = 'quarantine-failed'
                handle_error(e, "auto-quarantine", ErrorCategory.QUARANTINE,
                             additional_context={'path': threat.path})
                payload = threat.to_dict()
                payload['error'] = str(e)
                self.events.emit(EventType.REALTIME_QUARANTINE_FAILED, payload)
            else:
                action = 'quarantined'
                logger.info(f"Threat automatically quarantined: {path}")
                payload = threat.to_dict()
                payload['quarantine_id'] = record.id
                self.events.emit(EventType.REALTIME_THREAT_QUARANTINED, payload)

        if self.history is not None:
            with safe_execute("recording realtime detection", ErrorCategory.PERSISTENCE):
                self.history.record_threat_detection(None, threat, action_taken=action)

        return threat
