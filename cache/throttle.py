"""
cache/throttle.py -- Bounded TTL cache that de-duplicates post view counts.

A reader refreshing an article should not inflate its view count. The
throttle remembers the last counted view per (client identity, resource id)
and refuses to count another one within the TTL window (3 seconds by
default).

The cache is an explicit object on app.state rather than a module global, so
tests construct their own and nothing leaks between them. It is bounded: when
full, the oldest entry is evicted, so a flood of distinct clients costs at
most max_entries entries of memory. purge_expired() is called from the
background loop in api/main.py to trim stale entries.

Usage:
    throttle = ViewThrottle(ttl=3.0, max_entries=10_000)
    if throttle.should_count("203.0.113.9", "my-post"):
        store.increment_views("my-post")
    throttle.purge_expired()
"""

import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

_DEFAULT_TTL = 3.0
_DEFAULT_MAX_ENTRIES = 10_000


class ViewThrottle:
    def __init__(
        self,
        ttl: float = _DEFAULT_TTL,
        max_entries: int = _DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._seen: "OrderedDict[tuple[str, str], float]" = OrderedDict()
        # Route handlers run in a thread pool; the dict is shared between them.
        self._lock = threading.Lock()

    def should_count(self, client: str, resource: str, now: Optional[float] = None) -> bool:
        """Return True (and remember the view) unless this pair was counted within the TTL."""
        key = (client, resource)
        stamp = self._clock() if now is None else now
        with self._lock:
            last = self._seen.get(key)
            if last is not None and stamp - last < self.ttl:
                return False
            self._seen[key] = stamp
            self._seen.move_to_end(key)
            while len(self._seen) > self.max_entries:
                self._seen.popitem(last=False)
        return True

    def purge_expired(self, now: Optional[float] = None) -> int:
        """Drop entries older than the TTL. Returns the number removed."""
        stamp = self._clock() if now is None else now
        with self._lock:
            stale = [k for k, t in self._seen.items() if stamp - t >= self.ttl]
            for key in stale:
                del self._seen[key]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()
