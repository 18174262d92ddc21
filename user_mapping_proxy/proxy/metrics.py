"""Thread-safe counter and event collector for the proxy."""

from __future__ import annotations

import threading
import time
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Any


def _series_key(name: str, tags: dict[str, object]) -> str:
    if not tags:
        return name
    rendered = ",".join(f"{k}={tags[k]}" for k in sorted(tags))
    return f"{name}{{{rendered}}}"


class ProxyMetrics:
    """Counters plus a bounded log of recent ownership changes and errors.

    One instance is created per application and handed to every handler;
    nothing here is process-global. Counter series are keyed by name and
    sorted tags, e.g. ``add_handler_response_codes{code=200}``. All methods
    may be called from the event loop and from store worker threads alike.
    """

    def __init__(self, max_events: int = 200) -> None:
        self.started_at = time.monotonic()
        self._counters: Counter[str] = Counter()
        self._events: deque[dict[str, Any]] = deque(maxlen=max_events)
        self._next_seq = 0
        self._lock = threading.Lock()

    def incr(self, name: str, amount: int = 1, **tags: object) -> None:
        key = _series_key(name, tags)
        with self._lock:
            self._counters[key] += amount

    def count(self, name: str, **tags: object) -> int:
        key = _series_key(name, tags)
        with self._lock:
            return self._counters[key]

    def record(self, kind: str, **fields: Any) -> int:
        """Log an event of *kind* and return its sequence number."""
        stamp = datetime.now(timezone.utc).isoformat()
        with self._lock:
            seq = self._next_seq
            self._next_seq += 1
            self._events.append({"seq": seq, "ts": stamp, "type": kind, **fields})
        return seq

    def recent(self, after: int = -1) -> list[dict[str, Any]]:
        """Events still in the ring with a sequence number above *after*."""
        with self._lock:
            return [dict(e) for e in self._events if e["seq"] > after]

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            counters = dict(sorted(self._counters.items()))
            events = [dict(e) for e in self._events]
        return {
            "uptime_s": round(time.monotonic() - self.started_at, 1),
            "counters": counters,
            "recent_events": events,
        }
