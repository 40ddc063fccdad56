"""
Tests for endpoint_guard/realtime/watcher.py - Realtime Watcher

Most tests drive process_path() directly or use a stand-in observer so no
filesystem notifications are needed. One integration test runs the real
watchdog observer.
"""

import os
import sys
import threading
import time

import pytest
from watchdog.events import DirCreatedEvent, FileCreatedEvent, FileModifiedEvent, FileMovedEvent

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from endpoint_guard.constants import EICAR_TEST_STRING
from endpoint_guard.events import EventType
from endpoint_guard.exceptions import FileAccessError
from endpoint_guard.realtime import RealtimeWatcher, WatcherState
from endpoint_guard.realtime.watcher import _ChangeHandler


class FakeObserver:
    """Records schedule/start/stop calls instead of watching anything."""

    def __init__(self):
        self.scheduled = []
        self.started = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        self.scheduled.append((handler, path, recursive))

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        pass


class FailingVault:
    def quarantine(self, path, threat_name=None):
        raise FileAccessError(f"Cannot read {path}: locked", {'path': path})


@pytest.fixture
def observers():
    return []


@pytest.fixture
def watcher(guard_config, orchestrator, vault, history, event_bus, observers):
    def factory():
        observer = FakeObserver()
        observers.append(observer)
        return observer

    w = RealtimeWatcher(guard_config, orchestrator, vault, history, event_bus,
                        observer_factory=factory)
    yield w
    w.stop()


@pytest.fixture
def watched(temp_dir):
    return temp_dir / 'watched'


def _record(event_bus, *types):
    events = []
    event_bus.subscribe(events.append, types or None)
    return events


# ===========================================================================
# Lifecycle
# ===========================================================================

class TestLifecycle:
    @pytest.mark.unit
    def test_start_and_stop_are_idempotent(self, watcher, event_bus, observers, watched):
        status = _record(event_bus, EventType.REALTIME_STATUS_CHANGED)

        assert watcher.start() is True
        assert watcher.start() is False
        assert watcher.is_running
        assert watcher.watched_paths == [str(watched)]
        assert len(observers) == 1 and observers[0].started

        assert watcher.stop() is True
        assert watcher.stop() is False
        assert watcher.state == WatcherState.STOPPED
        assert observers[0].stopped

        assert [e.payload['enabled'] for e in status] == [True, False]

    @pytest.mark.unit
    def test_missing_watch_paths_skipped(self, watcher, guard_config, temp_dir, observers):
        guard_config.realtime.watch_paths = [str(temp_dir / 'does-not-exist'), str(temp_dir / 'watched')]

        watcher.start()

        assert [path for _, path, _ in observers[0].scheduled] == [str(temp_dir / 'watched')]

    @pytest.mark.unit
    def test_restart_after_stop(self, watcher, observers):
        watcher.start()
        watcher.stop()
        assert watcher.start() is True
        assert len(observers) == 2

    @pytest.mark.unit
    def test_enqueue_rejected_when_stopped(self, watcher, watched):
        assert watcher.enqueue(str(watched / 'x.bin')) is False


# ===========================================================================
# Queue
# ===========================================================================

class TestQueue:
    @pytest.fixture
    def idle_watcher(self, guard_config, orchestrator, vault):
        # RUNNING state without a worker, so queued paths stay put
        w = RealtimeWatcher(guard_config, orchestrator, vault, observer_factory=FakeObserver)
        w._state = WatcherState.RUNNING
        return w

    @pytest.mark.unit
    def test_duplicate_paths_collapse(self, idle_watcher, watched):
        path = str(watched / 'busy.bin')
        assert idle_watcher.enqueue(path) is True
        assert idle_watcher.enqueue(path) is False
        assert idle_watcher.queue_size == 1

    @pytest.mark.unit
    def test_queue_order_is_arrival_order(self, idle_watcher, watched):
        for name in ('b', 'a', 'c'):
            idle_watcher.enqueue(str(watched / name))
        assert idle_watcher._next_path() == str(watched / 'b')
        assert idle_watcher._next_path() == str(watched / 'a')

    @pytest.mark.unit
    @pytest.mark.parametrize("relative", [
        ".hidden.exe",
        os.path.join(".git", "objects", "ab"),
        os.path.join("node_modules", "pkg", "index.js"),
    ])
    def test_ignored_paths(self, idle_watcher, watched, relative):
        assert idle_watcher.enqueue(str(watched / relative), root=str(watched)) is False

    @pytest.mark.unit
    def test_quarantine_dir_ignored(self, idle_watcher, guard_config):
        path = os.path.join(guard_config.paths.quarantine_dir, 'quar_1_0123456789abcdef.quar')
        assert idle_watcher.enqueue(path) is False

    @pytest.mark.unit
    def test_handler_forwards_file_events(self, idle_watcher, watched):
        handler = _ChangeHandler(idle_watcher, str(watched))
        handler.on_created(FileCreatedEvent(str(watched / 'new.exe')))
        handler.on_modified(FileModifiedEvent(str(watched / 'new.exe')))
        handler.on_created(DirCreatedEvent(str(watched / 'folder')))
        handler.on_moved(FileMovedEvent(str(watched / 'tmp.part'), str(watched / 'final.exe')))

        assert idle_watcher.queue_size == 2
        assert idle_watcher._next_path() == str(watched / 'new.exe')
        assert idle_watcher._next_path() == str(watched / 'final.exe')


# ===========================================================================
# Processing
# ===========================================================================

class TestProcessPath:
    @pytest.mark.unit
    def test_clean_file(self, watcher, watched):
        clean = watched / 'notes.bin'
        clean.write_bytes(b"nothing to see")
        assert watcher.process_path(str(clean), settle=False) is None
        assert clean.exists()

    @pytest.mark.unit
    def test_signature_threat_quarantined(self, watcher, vault, history, event_bus, watched):
        events = _record(event_bus, EventType.REALTIME_THREAT, EventType.REALTIME_THREAT_QUARANTINED)
        dropped = watched / 'download.dat'
        dropped.write_bytes(EICAR_TEST_STRING)

        threat = watcher.process_path(str(dropped), settle=False)

        assert threat.name == 'EICAR-Test-File'
        assert not dropped.exists()
        assert len(vault.list()) == 1
        assert [e.event_type for e in events] == [
            EventType.REALTIME_THREAT, EventType.REALTIME_THREAT_QUARANTINED,
        ]
        assert events[1].payload['quarantine_id'] == vault.list()[0].id

        detections = history.get_threat_detections()
        assert detections[0]['action_taken'] == 'quarantined'
        assert detections[0]['scan_id'] is None

    @pytest.mark.unit
    def test_heuristic_threat_reported_only_when_configured(
            self, watcher, guard_config, vault, history, watched):
        guard_config.realtime.auto_quarantine_heuristic = False
        dropper = watched / 'invoice.pdf.exe'
        dropper.write_bytes(b"MZ" + b"\x00" * 64)

        threat = watcher.process_path(str(dropper), settle=False)

        assert threat.is_heuristic
        assert dropper.exists()
        assert vault.list() == []
        assert history.get_threat_detections()[0]['action_taken'] == 'reported'

    @pytest.mark.unit
    def test_quarantine_failure_reported(self, guard_config, orchestrator, history, event_bus, watched):
        watcher = RealtimeWatcher(guard_config, orchestrator, FailingVault(), history, event_bus,
                                  observer_factory=FakeObserver)
        failures = _record(event_bus, EventType.REALTIME_QUARANTINE_FAILED)
        dropped = watched / 'download.dat'
        dropped.write_bytes(EICAR_TEST_STRING)

        threat = watcher.process_path(str(dropped), settle=False)

        assert threat is not None
        assert dropped.exists()
        assert 'locked' in failures[0].payload['error']
        assert history.get_threat_detections()[0]['action_taken'] == 'quarantine-failed'

    @pytest.mark.unit
    def test_vanished_file(self, watcher, watched):
        assert watcher.process_path(str(watched / 'gone.exe')) is None
        assert watcher.process_path(str(watched / 'gone.exe'), settle=False) is None

    @pytest.mark.unit
    def test_excluded_extension_not_scanned(self, watcher, watched):
        log = watched / 'app.log'
        log.write_bytes(EICAR_TEST_STRING)
        assert watcher.process_path(str(log), settle=False) is None

    @pytest.mark.unit
    def test_settle_waits_for_stable_file(self, watcher, guard_config, watched):
        guard_config.realtime.settle_delay = 0.2
        path = watched / 'growing.bin'
        path.write_bytes(b"a")

        assert watcher._wait_for_settle(str(path)) is True


class TestWorker:
    @pytest.mark.unit
    def test_worker_processes_queued_path(self, watcher, event_bus, watched):
        done = threading.Event()
        event_bus.subscribe(lambda e: done.set(), [EventType.REALTIME_THREAT_QUARANTINED])
        dropped = watched / 'payload.dat'
        dropped.write_bytes(EICAR_TEST_STRING)

        watcher.start()
        watcher.enqueue(str(dropped), root=str(watched))

        assert done.wait(timeout=10)
        assert not dropped.exists()

    @pytest.mark.unit
    def test_worker_survives_failing_iteration(self, watcher, event_bus, watched, monkeypatch):
        done = threading.Event()
        event_bus.subscribe(lambda e: done.set(), [EventType.REALTIME_THREAT_QUARANTINED])
        original = watcher.process_path
        calls = []

        def flaky(path, settle=True):
            calls.append(path)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return original(path, settle)
        monkeypatch.setattr(watcher, 'process_path', flaky)

        first = watched / 'first.bin'
        first.write_bytes(b"x")
        second = watched / 'second.dat'
        second.write_bytes(EICAR_TEST_STRING)

        watcher.start()
        watcher.enqueue(str(first))
        watcher.enqueue(str(second))

        assert done.wait(timeout=10)
        assert calls[:2] == [str(first), str(second)]

    @pytest.mark.unit
    def test_restart_never_runs_two_workers(self, watcher, watched, monkeypatch):
        from endpoint_guard.realtime import watcher as watcher_module

        monkeypatch.setattr(watcher_module.Timeouts, 'THREAD_JOIN_LONG', 0.2)
        gate = threading.Event()
        in_flight = threading.Event()
        lock = threading.Lock()
        active = [0]
        peak = [0]
        processed = []

        def slow(path, settle=True):
            with lock:
                active[0] += 1
                peak[0] = max(peak[0], active[0])
            in_flight.set()
            gate.wait(timeout=10)
            with lock:
                active[0] -= 1
                processed.append(path)
        monkeypatch.setattr(watcher, 'process_path', slow)

        watcher.start()
        watcher.enqueue(str(watched / 'stuck.bin'))
        assert in_flight.wait(timeout=5)

        watcher.stop()
        # The stuck worker outlived stop(); a restart must not add a second one
        assert watcher.start() is False
        assert watcher.is_running is False

        gate.set()
        assert watcher.start() is True
        for i in range(5):
            watcher.enqueue(str(watched / f'new{i}.bin'))

        for _ in range(100):
            if len(processed) == 6:
                break
            time.sleep(0.05)

        workers = [t for t in threading.enumerate() if t.name == "realtime-scan-worker"]
        assert len(processed) == 6
        assert peak[0] == 1
        assert len(workers) == 1

    @pytest.mark.unit
    def test_stopped_worker_does_not_drain_new_queue(self, guard_config, orchestrator, vault, watched):
        w = RealtimeWatcher(guard_config, orchestrator, vault, observer_factory=FakeObserver)
        w._state = WatcherState.RUNNING
        w.enqueue(str(watched / 'queued.bin'))
        retired = threading.Event()
        retired.set()

        assert w._next_path(retired) is None
        assert w.queue_size == 1
        assert w._next_path(threading.Event()) == str(watched / 'queued.bin')


@pytest.mark.integration
def test_real_observer_quarantines_new_file(guard_config, orchestrator, vault, history, event_bus, watched):
    done = threading.Event()
    event_bus.subscribe(lambda e: done.set(), [EventType.REALTIME_THREAT_QUARANTINED])
    watcher = RealtimeWatcher(guard_config, orchestrator, vault, history, event_bus)
    watcher.start()
    try:
        (watched / 'fresh-download.dat').write_bytes(EICAR_TEST_STRING)
        assert done.wait(timeout=15)
    finally:
        watcher.stop()
    assert len(vault.list()) == 1
