"""In-flight guard for response filenames."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Callable, Hashable


class ExpiringKeySet:
    """A bounded set whose members expire after ``ttl`` seconds.

    ``try_add`` is the only way in: it returns ``False`` while the key is
    still live, so the watcher thread and the startup scan cannot both claim
    the same file.  A caller that fails to process a file calls ``discard``
    so the next notification gets another attempt.  When the set is full the
    oldest entries are evicted first.
    """

    def __init__(
        self,
        ttl: float,
        max_size: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[Hashable, float]" = OrderedDict()
        self._lock = threading.Lock()

    def _purge(self, now: float) -> None:
        while self._entries:
            key, expires = next(iter(self._entries.items()))
            if expires > now:
                break
            del self._entries[key]

    def try_add(self, key: Hashable) -> bool:
        with self._lock:
            now = self._clock()
            self._purge(now)
            if key in self._entries:
                return False
            while len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
            self._entries[key] = now + self.ttl
            return True

    def discard(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            self._purge(self._clock())
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            self._purge(self._clock())
            return len(self._entries)
