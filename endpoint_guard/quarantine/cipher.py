"""
Quarantine payload encryption.

AES-256-GCM with a fresh 96-bit nonce per call. On disk a payload is:

    b"EGQ" | version (1 byte) | nonce (12 bytes) | ciphertext || tag

The 4-byte header is bound as associated data, so a payload written under
one format version cannot be replayed as another.

Key material: a 64-character hex string is used as the raw 32-byte key;
any other string is stretched with HKDF-SHA256.
"""

import logging
import os
import re
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..constants import DEFAULT_QUARANTINE_KEY
from ..exceptions import CryptoError

logger = logging.getLogger(__name__)

MAGIC = b"EGQ"
FORMAT_VERSION = 1
HEADER = MAGIC + bytes([FORMAT_VERSION])
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32
HKDF_INFO = b"endpoint-guard/quarantine/v1"

_HEX_KEY_RE = re.compile(r'^[0-9a-fA-F]{64}$')


def derive_key(secret: Union[str, bytes]) -> bytes:
    """Turn configured key material into a 32-byte AES key."""
    if isinstance(secret, bytes):
        if len(secret) == KEY_SIZE:
            return secret
    elif _HEX_KEY_RE.match(secret):
        return bytes.fromhex(secret)
    else:
        secret = secret.encode('utf-8')
    if not secret:
        raise CryptoError("Quarantine key must not be empty")
    return HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=None,
        info=HKDF_INFO,
    ).derive(secret)


class QuarantineCipher:
    """
    Usage:
        cipher = QuarantineCipher(config.quarantine.encryption_key)
        blob = cipher.encrypt(data)
        assert cipher.decrypt(blob) == data
    """

    def __init__(self, key: Union[str, bytes]):
        if key == DEFAULT_QUARANTINE_KEY:
            logger.warning("Quarantine vault is using the default encryption key")
        self._aead = AESGCM(derive_key(key))

    def encrypt(self, plaintext: bytes) -> bytes:
        nonce = os.urandom(NONCE_SIZE)
        return HEADER + nonce + self._aead.encrypt(nonce, plaintext, HEADER)

    def decrypt(self, blob: bytes) -> bytes:
        """
        Raises:
            CryptoError: unknown format, truncated payload, wrong key or tampering
        """
        if len(blob) < len(HEADER) + NONCE_SIZE + TAG_SIZE:
            raise CryptoError("Quarantine payload is truncated")
        if blob[:len(MAGIC)] != MAGIC:
            raise CryptoError("Not a quarantine payload")
        if blob[len(MAGIC)] != FORMAT_VERSION:
            raise CryptoError(f"Unsupported quarantine format version {blob[len(MAGIC)]}")

        nonce = blob[len(HEADER):len(HEADER) + NONCE_SIZE]
        try:
            return self._aead.decrypt(nonce, blob[len(HEADER) + NONCE_SIZE:], HEADER)
        except InvalidTag:
            raise CryptoError("Quarantine payload failed authentication (wrong key or corrupted)")

    @staticmethod
    def nonce_of(blob: bytes) -> bytes:
        return blob[len(HEADER):len(HEADER) + NONCE_SIZE]
