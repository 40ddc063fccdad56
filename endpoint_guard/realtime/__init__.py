"""
Realtime Module for Endpoint Guard

Filesystem-event driven scanning with automatic quarantine.
"""

from .watcher import RealtimeWatcher, WatcherState

__all__ = [
    'RealtimeWatcher',
    'WatcherState',
]
