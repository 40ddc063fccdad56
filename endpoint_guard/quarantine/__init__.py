"""
Quarantine Module for Endpoint Guard

Encrypted, reversible isolation of detected files:

- cipher: AES-256-GCM payload format
- vault: paired payload/metadata records with restore, delete and purge
"""

from .cipher import QuarantineCipher, derive_key
from .vault import QuarantineRecord, QuarantineVault, new_quarantine_id

__all__ = [
    'QuarantineCipher',
    'derive_key',
    'QuarantineRecord',
    'QuarantineVault',
    'new_quarantine_id',
]
