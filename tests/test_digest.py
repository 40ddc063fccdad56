"""
Tests for endpoint_guard/scanner/digest.py - Single-pass Digest Engine

Tests cover:
- Known digests of fixed content
- Chunk boundaries not affecting the result
- Read failures surfacing as FileAccessError
"""

import hashlib
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from endpoint_guard.constants import EICAR_TEST_STRING
from endpoint_guard.exceptions import FileAccessError
from endpoint_guard.scanner.digest import DigestSet, compute_digests, hash_bytes


class TestComputeDigests:
    """Tests for compute_digests()."""

    @pytest.mark.unit
    def test_eicar_digests(self, temp_dir):
        path = temp_dir / "eicar.com"
        path.write_bytes(EICAR_TEST_STRING)

        digests = compute_digests(str(path))

        assert digests.md5 == "44d88612fea8a8f36de82e1278abb02f"
        assert digests.sha1 == "3395856ce81f2b7382dee72602f798b642f14140"
        assert digests.sha256 == "275a021bbfb6489e54d471899f7db9d1663fc695ec2fe2a2c4538aabf651fd0f"

    @pytest.mark.unit
    def test_small_chunks_match_whole_buffer(self, temp_dir):
        data = os.urandom(10_000)
        path = temp_dir / "blob.bin"
        path.write_bytes(data)

        assert compute_digests(str(path), chunk_size=7) == hash_bytes(data)

    @pytest.mark.unit
    def test_empty_file(self, temp_dir):
        path = temp_dir / "empty"
        path.write_bytes(b"")

        digests = compute_digests(str(path))
        assert digests.sha256 == hashlib.sha256(b"").hexdigest()

    @pytest.mark.unit
    def test_missing_file_raises_file_access_error(self, temp_dir):
        missing = str(temp_dir / "missing.bin")
        with pytest.raises(FileAccessError) as exc_info:
            compute_digests(missing)
        assert exc_info.value.details["path"] == missing

    @pytest.mark.unit
    def test_directory_raises_file_access_error(self, temp_dir):
        with pytest.raises(FileAccessError):
            compute_digests(str(temp_dir))


class TestDigestSet:
    """Tests for the DigestSet value object."""

    @pytest.mark.unit
    def test_items_order_short_kinds_first(self):
        digests = hash_bytes(b"abc")
        assert [kind for kind, _ in digests.items()] == ["md5", "sha1", "sha256"]

    @pytest.mark.unit
    def test_to_dict(self):
        digests = hash_bytes(b"abc")
        assert digests.to_dict() == {
            "md5": hashlib.md5(b"abc").hexdigest(),
            "sha1": hashlib.sha1(b"abc").hexdigest(),
            "sha256": hashlib.sha256(b"abc").hexdigest(),
        }

    @pytest.mark.unit
    def test_is_immutable(self):
        digests = DigestSet(md5="a", sha1="b", sha256="c")
        with pytest.raises(Exception):
            digests.md5 = "x"
