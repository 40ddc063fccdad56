"""
Tests for endpoint_guard/quarantine/cipher.py - payload encryption
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from endpoint_guard.exceptions import CryptoError
from endpoint_guard.quarantine.cipher import (
    HEADER,
    NONCE_SIZE,
    TAG_SIZE,
    QuarantineCipher,
    derive_key,
)


class TestDeriveKey:
    @pytest.mark.unit
    def test_hex_key_used_directly(self):
        hex_key = "00" * 31 + "ff"
        assert derive_key(hex_key) == bytes.fromhex(hex_key)

    @pytest.mark.unit
    def test_raw_bytes_key_used_directly(self):
        raw = os.urandom(32)
        assert derive_key(raw) == raw

    @pytest.mark.unit
    def test_passphrase_is_stretched(self):
        key = derive_key("correct horse battery staple")
        assert len(key) == 32
        assert key == derive_key("correct horse battery staple")
        assert key != derive_key("correct horse battery stapler")

    @pytest.mark.unit
    def test_32_character_passphrase_is_stretched(self):
        passphrase = "a" * 32
        assert derive_key(passphrase) != passphrase.encode()

    @pytest.mark.unit
    def test_empty_key_rejected(self):
        with pytest.raises(CryptoError):
            derive_key("")


class TestQuarantineCipher:
    @pytest.fixture
    def cipher(self):
        return QuarantineCipher("unit-test-quarantine-key")

    @pytest.mark.unit
    def test_round_trip(self, cipher):
        data = os.urandom(1000)
        assert cipher.decrypt(cipher.encrypt(data)) == data

    @pytest.mark.unit
    def test_layout(self, cipher):
        blob = cipher.encrypt(b"abc")
        assert blob.startswith(HEADER)
        assert len(blob) == len(HEADER) + NONCE_SIZE + 3 + TAG_SIZE

    @pytest.mark.unit
    def test_fresh_nonce_each_call(self, cipher):
        nonces = {QuarantineCipher.nonce_of(cipher.encrypt(b"same")) for _ in range(50)}
        assert len(nonces) == 50

    @pytest.mark.unit
    def test_wrong_key(self, cipher):
        blob = cipher.encrypt(b"secret")
        with pytest.raises(CryptoError):
            QuarantineCipher("another-key").decrypt(blob)

    @pytest.mark.unit
    def test_tampered_ciphertext(self, cipher):
        blob = bytearray(cipher.encrypt(b"secret"))
        blob[-1] ^= 0x01
        with pytest.raises(CryptoError):
            cipher.decrypt(bytes(blob))

    @pytest.mark.unit
    def test_tampered_version(self, cipher):
        blob = bytearray(cipher.encrypt(b"secret"))
        blob[len(HEADER) - 1] = 99
        with pytest.raises(CryptoError, match="version"):
            cipher.decrypt(bytes(blob))

    @pytest.mark.unit
    def test_foreign_file(self, cipher):
        with pytest.raises(CryptoError):
            cipher.decrypt(b"PK\x03\x04" + b"\x00" * 64)

    @pytest.mark.unit
    def test_truncated(self, cipher):
        with pytest.raises(CryptoError, match="truncated"):
            cipher.decrypt(HEADER + b"\x00" * 4)
