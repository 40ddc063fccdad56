"""
File enumeration for scans.

Walks scan roots in a stable order, never following symlinks, and prunes
excluded subtrees before descending into them. A subtree that cannot be
listed is reported through handle_error and skipped.
"""

import logging
import os
from typing import Iterable, Iterator, List, Sequence

from ..utils.error_handling import ErrorCategory, handle_error

logger = logging.getLogger(__name__)


def normalize_prefixes(prefixes: Iterable[str]) -> List[str]:
    result = []
    for prefix in prefixes:
        if not prefix:
            continue
        result.append(os.path.normcase(os.path.abspath(os.path.expanduser(prefix))))
    return result


def is_under(path: str, prefixes: Sequence[str]) -> bool:
    """True if path equals or lies below one of the (normalized) prefixes."""
    candidate = os.path.normcase(os.path.abspath(path))
    for prefix in prefixes:
        if candidate == prefix or candidate.startswith(prefix.rstrip(os.sep) + os.sep):
            return True
    return False


def _report_walk_error(error: OSError):
    handle_error(
        error,
        "enumerating files",
        category=ErrorCategory.ENUMERATION,
        additional_context={'path': getattr(error, 'filename', None)},
    )


def iter_files(roots: Iterable[str], recursive: bool = True,
               excluded_prefixes: Iterable[str] = ()) -> Iterator[str]:
    """
    Yield absolute paths of regular files under the given roots.

    Args:
        roots: Directories or individual files
        recursive: Descend into subdirectories (False lists only the top level)
        excluded_prefixes: Paths whose subtrees are skipped entirely
    """
    excluded = normalize_prefixes(excluded_prefixes)

    for root in roots:
        root = os.path.abspath(os.path.expanduser(root))
        if not os.path.lexists(root):
            logger.debug(f"Scan root does not exist, skipping: {root}")
            continue
        if is_under(root, excluded):
            logger.debug(f"Scan root is excluded, skipping: {root}")
            continue

        if os.path.isfile(root) and not os.path.islink(root):
            yield root
            continue

        if not recursive:
            try:
                with os.scandir(root) as entries:
                    names = sorted(e.name for e in entries if e.is_file(follow_symlinks=False))
            except OSError as e:
                _report_walk_error(e)
                continue
            for name in names:
                path = os.path.join(root, name)
                if not is_under(path, excluded):
                    yield path
            continue

        for dirpath, dirnames, filenames in os.walk(root, onerror=_report_walk_error):
            # Prune in place so os.walk never descends into excluded subtrees
            dirnames[:] = sorted(
                d for d in dirnames
                if not is_under(os.path.join(dirpath, d), excluded)
                and not os.path.islink(os.path.join(dirpath, d))
            )
            for name in sorted(filenames):
                path = os.path.join(dirpath, name)
                if os.path.islink(path) or is_under(path, excluded):
                    continue
                yield path


def collect_files(roots: Iterable[str], recursive: bool = True,
                  excluded_prefixes: Iterable[str] = ()) -> List[str]:
    """Materialize iter_files(), dropping duplicates from overlapping roots."""
    seen = set()
    files = []
    for path in iter_files(roots, recursive=recursive, excluded_prefixes=excluded_prefixes):
        key = os.path.normcase(path)
        if key in seen:
            continue
        seen.add(key)
        files.append(path)
    logger.info(f"Found {len(files)} files to scan")
    return files
