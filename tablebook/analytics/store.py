"""In-process log of search events, bounded to the most recent entries."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Any

SEARCH = "search"
NEAR_ME = "near_me"
MAX_EVENTS = 10_000

_events: deque[dict[str, Any]] = deque(maxlen=MAX_EVENTS)
_lock = threading.Lock()


def record_event(event_type: str, data: dict[str, Any]) -> None:
    entry = {"type": event_type, "timestamp": time.time()}
    entry.update(data)
    with _lock:
        _events.append(entry)


def get_events(event_type: str | None = None) -> list[dict[str, Any]]:
    """Copy of the log, oldest first, optionally narrowed to one event type."""
    with _lock:
        snapshot = list(_events)
    if event_type is None:
        return snapshot
    return [e for e in snapshot if e["type"] == event_type]


def clear_events() -> None:
    with _lock:
        _events.clear()
