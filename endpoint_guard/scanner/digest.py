"""
Digest Engine - single-pass multi-digest computation.

A file is streamed once in bounded chunks and every chunk feeds the MD5,
SHA-1 and SHA-256 contexts together. Failures surface as FileAccessError
and callers skip the file; there is no retry here.
"""

import hashlib
from dataclasses import dataclass
from typing import Dict, Iterator, Tuple

from ..constants import BufferSizes
from ..exceptions import FileAccessError


@dataclass(frozen=True)
class DigestSet:
    """Hex digests of one byte stream"""
    md5: str
    sha1: str
    sha256: str

    def items(self) -> Iterator[Tuple[str, str]]:
        """(kind, digest) pairs, legacy-short kinds first"""
        yield 'md5', self.md5
        yield 'sha1', self.sha1
        yield 'sha256', self.sha256

    def to_dict(self) -> Dict[str, str]:
        return dict(self.items())


def _new_contexts():
    return hashlib.md5(), hashlib.sha1(), hashlib.sha256()


def compute_digests(path: str, chunk_size: int = BufferSizes.DIGEST_CHUNK) -> DigestSet:
    """
    Compute all digests of a file in one read pass.

    Raises:
        FileAccessError: open or read failed (locked, denied, vanished)
    """
    md5, sha1, sha256 = _new_contexts()
    try:
        with open(path, 'rb') as f:
            for chunk in iter(lambda: f.read(chunk_size), b''):
                md5.update(chunk)
                sha1.update(chunk)
                sha256.update(chunk)
    except OSError as e:
        raise FileAccessError(f"Cannot read {path}: {e}", {'path': path}) from e

    return DigestSet(md5=md5.hexdigest(), sha1=sha1.hexdigest(), sha256=sha256.hexdigest())


def hash_bytes(data: bytes) -> DigestSet:
    """Digests of an in-memory buffer."""
    md5, sha1, sha256 = _new_contexts()
    for ctx in (md5, sha1, sha256):
        ctx.update(data)
    return DigestSet(md5=md5.hexdigest(), sha1=sha1.hexdigest(), sha256=sha256.hexdigest())
