"""
Event Bus - typed scan, threat and realtime notifications.

Subscribers register a callback (optionally filtered by event type) and
receive GuardEvent objects synchronously in the emitting thread, so events
reach every subscriber in the order they were emitted. A failing
subscriber is logged and never interrupts the emitter.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional, FrozenSet, Tuple

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Events surfaced to UI and CLI collaborators"""
    SCAN_STARTED = "scan-started"
    PROGRESS = "progress"
    THREAT_FOUND = "threat-found"
    SCAN_PAUSED = "scan-paused"
    SCAN_RESUMED = "scan-resumed"
    SCAN_STOPPED = "scan-stopped"
    SCAN_COMPLETE = "scan-complete"
    SCAN_FAILED = "scan-failed"
    REALTIME_THREAT = "realtime-threat"
    REALTIME_THREAT_QUARANTINED = "realtime-threat-quarantined"
    REALTIME_QUARANTINE_FAILED = "realtime-quarantine-failed"
    REALTIME_STATUS_CHANGED = "realtime-status-changed"


@dataclass(frozen=True)
class GuardEvent:
    """A single emitted event"""
    event_type: EventType
    payload: Dict[str, Any]
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat() + "Z")


Callback = Callable[[GuardEvent], None]


class EventBus:
    """Thread-safe observer registry."""

    def __init__(self):
        self._callbacks: Dict[int, Tuple[Callback, Optional[FrozenSet[EventType]]]] = {}
        self._next_callback_id = 0
        self._callback_lock = threading.Lock()

    def subscribe(self, callback: Callback, event_types: Optional[Iterable[EventType]] = None) -> int:
        """
        Register a callback.

        Args:
            callback: Function accepting (event: GuardEvent)
            event_types: Only deliver these types (all types when None)

        Returns:
            Subscription ID that can be used to unsubscribe
        """
        types = frozenset(event_types) if event_types is not None else None
        with self._callback_lock:
            callback_id = self._next_callback_id
            self._next_callback_id += 1
            self._callbacks[callback_id] = (callback, types)
            return callback_id

    def unsubscribe(self, callback_id: int) -> bool:
        """Remove a subscription. Returns True if it existed."""
        with self._callback_lock:
            return self._callbacks.pop(callback_id, None) is not None

    def emit(self, event_type: EventType, payload: Optional[Dict[str, Any]] = None) -> GuardEvent:
        """Deliver an event to every matching subscriber, in registration order."""
        event = GuardEvent(event_type=event_type, payload=payload or {})

        with self._callback_lock:
            callbacks = list(self._callbacks.values())

        for callback, types in callbacks:
            if types is not None and event_type not in types:
                continue
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in {event_type.value} subscriber: {e}")

        return event

    @property
    def subscriber_count(self) -> int:
        with self._callback_lock:
            return len(self._callbacks)
