"""
Scan Orchestrator - runs a scan session over a file set.

Per file, in enumeration order:

    digests -> hash signature -> pattern signature -> heuristic score

The first match wins. Each invocation owns a ScanSession that is recorded
before path resolution and finalized exactly once, whatever the exit path.

State machine:

    IDLE -> RUNNING <-> PAUSED
    RUNNING/PAUSED -> STOPPING -> STOPPED
    RUNNING -> COMPLETED | FAILED

pause(), resume() and stop() may be called from any thread. They act at
the per-file boundary: the file in flight always finishes, and once stop()
returns no further file is started.
"""

import logging
import os
import secrets
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Iterable, List, Optional, Tuple

from ..config import GuardConfig
from ..constants import Timeouts
from ..events import EventBus, EventType
from ..exceptions import FileAccessError, InvalidArgumentError, NotFoundError, ScanInProgressError
from ..utils.error_handling import ErrorCategory, handle_error, safe_execute
from .digest import compute_digests
from .enumeration import collect_files, normalize_prefixes
from .heuristics import HeuristicScorer
from .models import (
    FileDescriptor,
    FileKind,
    ScanProgress,
    ScanResult,
    ScanSession,
    ScanState,
    ScanStatus,
    ScanType,
    Threat,
    utc_now_iso,
)
from .signatures import SignatureStore

if TYPE_CHECKING:
    from ..storage.history import HistoryStore

logger = logging.getLogger(__name__)

_ACTIVE_STATES = (ScanState.RUNNING, ScanState.PAUSED, ScanState.STOPPING)


def new_scan_id() -> str:
    return f"scan_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def parse_scan_type(value) -> ScanType:
    if isinstance(value, ScanType):
        return value
    try:
        return ScanType(str(value).strip().lower())
    except ValueError:
        raise InvalidArgumentError(f"Invalid scan type: {value!r}")


class ScanOrchestrator:
    """
    Usage:
        orchestrator = ScanOrchestrator(config, signatures, scorer, history, events)
        result = orchestrator.scan(ScanType.CUSTOM, ["/home/user/Downloads"])
    """

    def __init__(
        self,
        config: GuardConfig,
        signatures: SignatureStore,
        heuristics: HeuristicScorer,
        history: "HistoryStore",
        events: Optional[EventBus] = None,
    ):
        self.config = config
        self.signatures = signatures
        self.heuristics = heuristics
        self.history = history
        self.events = events or EventBus()

        self._cond = threading.Condition()
        self._state = ScanState.IDLE
        self._session: Optional[ScanSession] = None

    # ---------- state ----------

    @property
    def state(self) -> ScanState:
        with self._cond:
            return self._state

    @property
    def is_scanning(self) -> bool:
        return self.state in _ACTIVE_STATES

    @property
    def current_session(self) -> Optional[ScanSession]:
        with self._cond:
            return self._session

    def pause(self) -> bool:
        """Pause at the next file boundary. Returns False if no scan is running."""
        with self._cond:
            if self._state != ScanState.RUNNING:
                return False
            self._state = ScanState.PAUSED
            session_id = self._session.id if self._session else None
        logger.info("Scan paused")
        self.events.emit(EventType.SCAN_PAUSED, {'scan_id': session_id})
        return True

    def resume(self) -> bool:
        """Resume a paused scan. Returns False if the scan is not paused."""
        with self._cond:
            if self._state != ScanState.PAUSED:
                return False
            self._state = ScanState.RUNNING
            self._cond.notify_all()
            session_id = self._session.id if self._session else None
        logger.info("Scan resumed")
        self.events.emit(EventType.SCAN_RESUMED, {'scan_id': session_id})
        return True

    def stop(self) -> bool:
        """
        Request a cooperative stop.

        Once this returns no further file is started; the file in flight
        may finish. Returns False if no scan is active.
        """
        with self._cond:
            if self._state not in (ScanState.RUNNING, ScanState.PAUSED):
                return False
            self._state = ScanState.STOPPING
            self._cond.notify_all()
        logger.info("Scan stop requested")
        return True

    def _enter_file(self) -> bool:
        """Block while paused. False when the loop must end."""
        with self._cond:
            while self._state == ScanState.PAUSED:
                self._cond.wait()
            return self._state == ScanState.RUNNING

    # ---------- path resolution ----------

    def _resolve_paths(self, scan_type: ScanType, paths: Optional[Iterable[str]]) -> List[str]:
        if scan_type == ScanType.QUICK:
            return list(self.config.scan_paths.quick)
        if scan_type == ScanType.FULL:
            return list(self.config.scan_paths.full)
        if isinstance(paths, (str, bytes, os.PathLike)):
            # A single root, not an iterable of one-character roots
            paths = [paths]
        explicit = [os.fsdecode(p) for p in (paths or []) if p]
        if not explicit:
            raise InvalidArgumentError("A custom scan requires at least one path")
        return explicit

    def _excluded_prefixes(self) -> List[str]:
        return normalize_prefixes(
            list(self.config.exclusions.paths) + [self.config.paths.quarantine_dir]
        )

    # ---------- single file ----------

    def _is_skipped(self, descriptor: FileDescriptor, apply_exclusions: bool) -> bool:
        if descriptor.size > self.config.exclusions.max_file_size:
            logger.debug(f"Skipping oversized file: {descriptor.path} ({descriptor.size} bytes)")
            return True
        if apply_exclusions and descriptor.extension in self.config.exclusions.extensions:
            return True
        return False

    def _inspect(self, path: str, apply_exclusions: bool) -> Tuple[bool, Optional[Threat]]:
        """
        Evaluate one file.

        Returns:
            (skipped, threat)

        Raises:
            NotFoundError: the file does not exist
            FileAccessError: the file could not be read
        """
        try:
            descriptor = FileDescriptor.from_path(path)
        except FileNotFoundError as e:
            raise NotFoundError(f"File not found: {path}", {'path': path}) from e
        except OSError as e:
            raise FileAccessError(f"Cannot stat {path}: {e}", {'path': path}) from e

        if descriptor.kind != FileKind.FILE:
            return True, None
        if self._is_skipped(descriptor, apply_exclusions):
            return True, None

        detection = self.config.detection
        info = None

        if detection.enable_signature_scanning:
            digests = compute_digests(descriptor.path)
            info = self.signatures.match_hash(digests) or self.signatures.match_pattern(descriptor.path)

        if info is None and detection.enable_heuristic_analysis:
            info = self.heuristics.evaluate(self.heuristics.analyze(descriptor.path, descriptor.size))

        if info is None:
            return False, None
        return False, Threat.from_info(descriptor.path, info, descriptor.size)

    def scan_file(self, path: str, apply_exclusions: bool = False) -> Optional[Threat]:
        """
        Check a single file.

        The size limit always applies; extension exclusions only when asked.

        Raises:
            NotFoundError: the file does not exist
            FileAccessError: the file could not be read
        """
        self.signatures.load()
        _, threat = self._inspect(os.path.abspath(path), apply_exclusions)
        if threat is not None:
            logger.warning(
                f"Threat detected: {threat.name} in {threat.path} "
                f"({threat.detection_method.value}, {threat.severity.value})"
            )
        return threat

    # ---------- scan session ----------

    def scan(self, scan_type, paths: Optional[Iterable[str]] = None,
             recursive: bool = True) -> ScanResult:
        """
        Run a scan to completion (or until stopped) in the calling thread.

        Raises:
            InvalidArgumentError: unknown scan type, or custom scan without paths
            ScanInProgressError: another scan is active on this orchestrator
        """
        scan_type = parse_scan_type(scan_type)

        with self._cond:
            if self._state in _ACTIVE_STATES:
                raise ScanInProgressError("A scan is already in progress")
            session = ScanSession(id=new_scan_id(), scan_type=scan_type, start_time=utc_now_iso())
            self._session = session
            self._state = ScanState.RUNNING

        result = ScanResult(session=session)
        started = time.monotonic()
        history_writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="scan-history")
        pending = []
        failure: Optional[BaseException] = None

        with safe_execute("recording scan start", ErrorCategory.PERSISTENCE):
            self.history.record_scan_start(session)

        try:
            self.signatures.load()
            roots = self._resolve_paths(scan_type, paths)
            logger.info(f"Starting {scan_type.value} scan of {len(roots)} path(s)")

            files = collect_files(roots, recursive=recursive,
                                  excluded_prefixes=self._excluded_prefixes())
            result.total_files = len(files)
            self.events.emit(EventType.SCAN_STARTED, {
                'scan_id': session.id,
                'type': scan_type.value,
                'total_files': result.total_files,
            })

            for index, path in enumerate(files):
                if not self._enter_file():
                    break

                skipped, threat = False, None
                try:
                    skipped, threat = self._inspect(path, apply_exclusions=True)
                except (NotFoundError, FileAccessError) as e:
                    session.errors += 1
                    handle_error(e, "scanning file", ErrorCategory.FILESYSTEM,
                                 additional_context={'path': path})
                except Exception as e:
                    session.errors += 1
                    handle_error(e, "scanning file", ErrorCategory.UNKNOWN,
                                 additional_context={'path': path})
                else:
                    if skipped:
                        session.files_skipped += 1
                    else:
                        session.files_scanned += 1

                if threat is not None:
                    session.threats_found += 1
                    result.threats.append(threat)
                    pending.append(history_writer.submit(self._persist_threat, session.id, threat))
                    logger.warning(
                        f"Threat detected: {threat.name} in {threat.path} "
                        f"({threat.detection_method.value}, {threat.severity.value})"
                    )
                    self.events.emit(EventType.THREAT_FOUND, threat.to_dict())

                processed = index + 1
                if processed % self.config.detection.progress_every == 0 or processed == result.total_files:
                    progress = ScanProgress(
                        files_scanned=processed,
                        total_files=result.total_files,
                        percentage=round(processed * 100 / result.total_files),
                        current_file=path,
                        threats_found=session.threats_found,
                    )
                    self.events.emit(EventType.PROGRESS, progress.to_dict())

        except InvalidArgumentError as e:
            failure = e
            result.error = str(e)
        except Exception as e:
            # Anything escaping the per-file loop fails the session, not the caller
            handle_error(e, f"{scan_type.value} scan", ErrorCategory.ENUMERATION)
            result.error = f"{type(e).__name__}: {e}"
        finally:
            if pending:
                wait(pending, timeout=Timeouts.HISTORY_FLUSH)
            history_writer.shutdown(wait=True)
            self._finalize(session, result, started)

        if failure is not None:
            raise failure
        return result

    def _persist_threat(self, scan_id: str, threat: Threat):
        with safe_execute("recording threat detection", ErrorCategory.PERSISTENCE,
                          additional_context={'path': threat.path}):
            self.history.record_threat_detection(scan_id, threat)

    def _finalize(self, session: ScanSession, result: ScanResult, started: float):
        with self._cond:
            stopped = self._state == ScanState.STOPPING
            if result.error is not None:
                session.status = ScanStatus.FAILED
                final_state = ScanState.FAILED
            elif stopped:
                session.status = ScanStatus.STOPPED
                final_state = ScanState.STOPPED
            else:
                session.status = ScanStatus.COMPLETED
                final_state = ScanState.COMPLETED
            session.end_time = utc_now_iso()
            session.duration = round(time.monotonic() - started, 3)
            self._state = final_state
            self._cond.notify_all()

        with safe_execute("recording scan completion", ErrorCategory.PERSISTENCE):
            self.history.record_scan_complete(session)

        logger.info(
            f"Scan {session.id} {session.status.value}: {session.files_scanned} scanned, "
            f"{session.files_skipped} skipped, {session.errors} errors, "
            f"{session.threats_found} threats in {session.duration:.2f}s"
        )

        payload = result.to_dict()
        if session.status == ScanStatus.FAILED:
            self.events.emit(EventType.SCAN_FAILED, payload)
        elif session.status == ScanStatus.STOPPED:
            self.events.emit(EventType.SCAN_STOPPED, payload)
        else:
            self.events.emit(EventType.SCAN_COMPLETE, payload)
