import threading
import time


def make_key(subject, **filters):
    """Cache key scoped to ``subject``; empty filters and 'all' are dropped."""
    items = tuple(sorted(
        (name, value) for name, value in filters.items()
        if value not in (None, "", "all")
    ))
    return (subject, items)


class TTLCache:
    """
    Read-through memo for profile and document-list reads.

    Entries go stale ``ttl`` seconds after they were written. Writes for an
    owner clear every key scoped to that owner via invalidate(). The optional
    max_entries bound evicts the oldest write first.

    One instance is shared by every request thread, so all access to the
    entry table goes through a lock.
    """

    def __init__(self, ttl, clock=time.monotonic, max_entries=None):
        self.ttl = ttl
        self.clock = clock
        self.max_entries = max_entries
        self._entries = {}
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, written_at = entry
            if self.clock() - written_at >= self.ttl:
                self._entries.pop(key, None)
                return None
            return value

    def set(self, key, value):
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (value, self.clock())
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    oldest = next(iter(self._entries))
                    del self._entries[oldest]

    def invalidate(self, subject):
        with self._lock:
            stale = [key for key in self._entries if key[0] == subject]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        return len(self._entries)
