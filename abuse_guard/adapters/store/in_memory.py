"""In-memory counting store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: every primitive runs under one lock and never awaits while
  holding it, so each call is atomic for threads and coroutines alike.
- Expiry is lazy: expired keys are dropped when touched or scanned.
"""

from __future__ import annotations

import bisect
import fnmatch
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from abuse_guard.adapters.store.base import TTL_MISSING, TTL_NO_EXPIRY, AbstractCountingStore


@dataclass
class _Entry:
    value: Any
    expires_at: float | None = None


class InMemoryCountingStore(AbstractCountingStore):
    """Dict-backed store mirroring the subset of Redis semantics the limiter uses.

    Values are stored as Python objects: ``int`` for counters, ``str`` for
    plain values, ``dict[str, float]`` for sorted sets and ``list[str]`` for
    lists.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the store.

        Args:
            clock: Time source function returning UNIX time in seconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._data: dict[str, _Entry] = {}

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"InMemoryCountingStore(keys={len(self._data)})"

    def _live_entry_locked(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def _sorted_members_locked(self, key: str) -> list[tuple[str, float]]:
        entry = self._live_entry_locked(key)
        if entry is None:
            return []
        return sorted(entry.value.items(), key=lambda item: (item[1], item[0]))

    async def incr(self, key: str) -> int:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                entry = _Entry(value=0)
                self._data[key] = entry
            entry.value = int(entry.value) + 1
            return entry.value

    async def expire(self, key: str, seconds: int) -> bool:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                return False
            entry.expires_at = self._clock() + seconds
            return True

    async def ttl(self, key: str) -> int:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                return TTL_MISSING
            if entry.expires_at is None:
                return TTL_NO_EXPIRY
            return max(0, int(math.ceil(entry.expires_at - self._clock())))

    async def zadd(self, key: str, member: str, score: float) -> int:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                entry = _Entry(value={})
                self._data[key] = entry
            is_new = member not in entry.value
            entry.value[member] = float(score)
            return 1 if is_new else 0

    async def zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                return 0
            doomed = [m for m, s in entry.value.items() if min_score <= s <= max_score]
            for member in doomed:
                del entry.value[member]
            if not entry.value:
                del self._data[key]
            return len(doomed)

    async def zcard(self, key: str) -> int:
        with self._lock:
            entry = self._live_entry_locked(key)
            return len(entry.value) if entry else 0

    async def zcount(self, key: str, min_score: float, max_score: float) -> int:
        with self._lock:
            scores = [score for _, score in self._sorted_members_locked(key)]
            return bisect.bisect_right(scores, max_score) - bisect.bisect_left(scores, min_score)

    async def zrange_with_scores(self, key: str, start: int, stop: int) -> list[tuple[str, float]]:
        with self._lock:
            members = self._sorted_members_locked(key)
            end = None if stop == -1 else stop + 1
            return members[start:end]

    async def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                return None
            return str(entry.value)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = _Entry(value=value, expires_at=self._clock() + ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        with self._lock:
            if self._live_entry_locked(key) is not None:
                return False
            self._data[key] = _Entry(value=value, expires_at=self._clock() + ttl_seconds)
            return True

    async def delete(self, *keys: str) -> int:
        with self._lock:
            removed = 0
            for key in keys:
                if self._live_entry_locked(key) is not None:
                    del self._data[key]
                    removed += 1
            return removed

    async def push_capped(self, key: str, value: str, max_length: int, ttl_seconds: int) -> None:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                entry = _Entry(value=[])
                self._data[key] = entry
            entry.value.insert(0, value)
            del entry.value[max_length:]
            entry.expires_at = self._clock() + ttl_seconds

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                return []
            end = None if stop == -1 else stop + 1
            return list(entry.value[start:end])

    async def scan_keys(self, pattern: str, *, limit: int = 10_000) -> list[str]:
        with self._lock:
            matched: list[str] = []
            for key in list(self._data):
                if self._live_entry_locked(key) is None:
                    continue
                if fnmatch.fnmatchcase(key, pattern):
                    matched.append(key)
                    if len(matched) >= limit:
                        break
            return matched

    async def ping(self) -> bool:
        return True
