from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, Tuple[Hashable, ...]]


@dataclass
class CacheEntry:
    value: Any
    stored_at: float


def _function_key(fn: Callable[..., Any]) -> str:
    # Bound methods of different aggregators must not share entries.
    owner = getattr(fn, "__self__", None)
    name = getattr(fn, "__qualname__", repr(fn))
    if owner is not None:
        return f"{name}@{id(owner)}"
    return f"{getattr(fn, '__module__', '')}.{name}"


class QueryCache:
    """
    Memoization map (function, args) -> (value, timestamp).

    Entries older than `ttl_seconds` are recomputed on the next read and
    dropped whenever a new value is stored; ttl_seconds=None keeps them until
    invalidated. With `max_entries` set, the oldest entries are evicted once
    the map is full.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _is_fresh(self, entry: CacheEntry) -> bool:
        if self.ttl_seconds is None:
            return True
        return (self._clock() - entry.stored_at) < self.ttl_seconds

    def get_or_compute(self, fn: Callable[..., Any], *args: Hashable) -> Any:
        key: CacheKey = (_function_key(fn), tuple(args))
        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry):
            return entry.value

        logger.debug("Cache miss for %s%s", key[0], key[1])
        value = fn(*args)
        self._entries.pop(key, None)
        self._evict()
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock())
        return value

    def _evict(self) -> None:
        stale = [k for k, e in self._entries.items() if not self._is_fresh(e)]
        for k in stale:
            del self._entries[k]

        if self.max_entries is None:
            return
        # dicts keep insertion order, so the first keys are the oldest stores
        overflow = len(self._entries) - max(0, self.max_entries - 1)
        for k in list(self._entries)[:max(0, overflow)]:
            del self._entries[k]

    def stored_at(self, fn: Callable[..., Any], *args: Hashable) -> Optional[float]:
        entry = self._entries.get((_function_key(fn), tuple(args)))
        return entry.stored_at if entry is not None else None

    def invalidate(self, fn: Optional[Callable[..., Any]] = None) -> int:
        """
        Drop cached entries: those of one function, or all of them when fn
        is None. Returns how many entries were removed.
        """
        if fn is None:
            removed = len(self._entries)
            self._entries.clear()
            return removed

        fkey = _function_key(fn)
        stale = [k for k in self._entries if k[0] == fkey]
        for k in stale:
            del self._entries[k]
        return len(stale)
