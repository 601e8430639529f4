"""
Small expiring cache for read-mostly lookups.

Entries are an optimization only; callers must be correct on a miss.
"""
import time
import threading


class TTLCache:
    def __init__(self, ttl_seconds=60, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries = {}
        self._lock = threading.Lock()

    def get(self, key, default=None):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            value, expires_at = entry
            if self.clock() >= expires_at:
                del self._entries[key]
                return default
            return value

    def set(self, key, value):
        with self._lock:
            self._entries[key] = (value, self.clock() + self.ttl_seconds)

    def invalidate(self, key):
        with self._lock:
            self._entries.pop(key, None)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        return len(self._entries)
