"""
Threat Remediation - destroy a detected file and stop processes running it.

secure_delete() overwrites the file with random bytes before unlinking it.
On copy-on-write or journaling filesystems and SSDs the old blocks may
survive; this is best effort, not forensic erasure.

Autorun, registry and scheduled-task cleanup are not performed.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import psutil

from .constants import BufferSizes, Timeouts
from .exceptions import FileAccessError, NotFoundError

logger = logging.getLogger(__name__)


def secure_delete(path: str, chunk_size: int = BufferSizes.SECURE_DELETE_CHUNK) -> None:
    """
    Overwrite a file with random data, then remove it.

    If the overwrite fails the file is still removed.

    Raises:
        NotFoundError: the file does not exist
        FileAccessError: the file could not be removed
    """
    try:
        size = os.path.getsize(path)
    except FileNotFoundError as e:
        raise NotFoundError(f"File not found: {path}", {'path': path}) from e
    except OSError as e:
        raise FileAccessError(f"Cannot stat {path}: {e}", {'path': path}) from e

    try:
        with open(path, 'r+b') as f:
            remaining = size
            while remaining > 0:
                block = os.urandom(min(chunk_size, remaining))
                f.write(block)
                remaining -= len(block)
            f.flush()
            os.fsync(f.fileno())
    except OSError as e:
        logger.warning(f"Overwrite of {path} failed, removing anyway: {e}")

    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        raise FileAccessError(f"Cannot remove {path}: {e}", {'path': path}) from e


def find_processes_using(path: str) -> List[psutil.Process]:
    """Processes whose executable or command line points at path."""
    target = os.path.normcase(os.path.abspath(path))
    matches = []
    for proc in psutil.process_iter(['pid', 'exe', 'cmdline']):
        try:
            exe = proc.info.get('exe')
            if exe and os.path.normcase(exe) == target:
                matches.append(proc)
                continue
            cmdline = proc.info.get('cmdline') or []
            if any(os.path.normcase(arg) == target for arg in cmdline):
                matches.append(proc)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return matches


def terminate_processes(processes: List[psutil.Process],
                        timeout: float = Timeouts.THREAD_JOIN_DEFAULT) -> List[int]:
    """Terminate, then kill stragglers. Returns the pids that are gone."""
    for proc in processes:
        try:
            proc.terminate()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug(f"Could not terminate pid {proc.pid}: {e}")

    gone, alive = psutil.wait_procs(processes, timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
            gone.append(proc)
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.warning(f"Could not kill pid {proc.pid}: {e}")
    return sorted(p.pid for p in gone)


@dataclass
class RemovalResult:
    path: str
    file_removed: bool = False
    terminated_pids: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.file_removed

    def to_dict(self) -> Dict:
        return {
            'path': self.path,
            'success': self.success,
            'file_removed': self.file_removed,
            'terminated_pids': self.terminated_pids,
            'errors': self.errors,
        }


def remove_threat(path: str, kill_processes: bool = True,
                  timeout: Optional[float] = None) -> RemovalResult:
    """Stop processes running the file, then securely delete it."""
    result = RemovalResult(path=os.path.abspath(path))

    if kill_processes:
        try:
            procs = find_processes_using(result.path)
            if procs:
                result.terminated_pids = terminate_processes(
                    procs, timeout=timeout or Timeouts.THREAD_JOIN_DEFAULT)
                logger.info(f"Terminated {len(result.terminated_pids)} process(es) using {result.path}")
        except psutil.Error as e:
            result.errors.append(f"Process termination failed: {e}")

    if os.path.lexists(result.path):
        try:
            secure_delete(result.path)
            result.file_removed = True
            logger.info(f"File removed: {result.path}")
        except (NotFoundError, FileAccessError) as e:
            result.errors.append(str(e))
    else:
        result.errors.append(f"File not found: {result.path}")

    return result
