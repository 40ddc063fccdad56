"""
Storage Module for Endpoint Guard

Provides the embedded history store holding hash signatures, pattern
signatures, scan sessions and threat detections.
"""

from .history import HistoryStore

__all__ = [
    'HistoryStore',
]
