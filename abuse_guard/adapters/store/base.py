"""Counting store interface.

The limiter, violation tracker and escalation gates depend on this
abstraction (not a concrete client) so storage backends can be swapped and
tests can run against an in-memory fake.

Implementations must make each primitive individually atomic. Composite
operations built on top of them (``increment_with_ttl``) are not required to
be transactional.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

# Redis semantics for TTL queries
TTL_NO_EXPIRY = -1
TTL_MISSING = -2


class AbstractCountingStore(ABC):
    """Async key-value store operations needed by the rate limiter.

    Every method may raise ``StoreUnavailableError`` when the backend cannot
    be reached or a round-trip times out.
    """

    @abstractmethod
    async def incr(self, key: str) -> int:
        """Atomically increment an integer counter, creating it at 1."""
        raise NotImplementedError

    @abstractmethod
    async def expire(self, key: str, seconds: int) -> bool:
        """Set a TTL on an existing key. Returns False if the key is missing."""
        raise NotImplementedError

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Remaining TTL in whole seconds.

        Returns:
            Seconds left, ``TTL_NO_EXPIRY`` (-1) when the key has no TTL, or
            ``TTL_MISSING`` (-2) when the key does not exist.
        """
        raise NotImplementedError

    @abstractmethod
    async def zadd(self, key: str, member: str, score: float) -> int:
        """Add a member to a sorted set. Returns the number of new members."""
        raise NotImplementedError

    @abstractmethod
    async def zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int:
        """Remove members with ``min_score <= score <= max_score``."""
        raise NotImplementedError

    @abstractmethod
    async def zcard(self, key: str) -> int:
        """Number of members in a sorted set (0 when missing)."""
        raise NotImplementedError

    @abstractmethod
    async def zcount(self, key: str, min_score: float, max_score: float) -> int:
        """Number of members with ``min_score <= score <= max_score``."""
        raise NotImplementedError

    @abstractmethod
    async def zrange_with_scores(self, key: str, start: int, stop: int) -> list[tuple[str, float]]:
        """Members ordered by ascending score, inclusive index range."""
        raise NotImplementedError

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Read a string value."""
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Write a string value with a TTL, replacing any existing value."""
        raise NotImplementedError

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Atomically create a key with a TTL only if it does not exist.

        Returns:
            True if this call created the key.
        """
        raise NotImplementedError

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys. Returns how many existed."""
        raise NotImplementedError

    @abstractmethod
    async def push_capped(self, key: str, value: str, max_length: int, ttl_seconds: int) -> None:
        """Prepend to a list, trim it to ``max_length`` and refresh its TTL."""
        raise NotImplementedError

    @abstractmethod
    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        """List slice, inclusive indexes (newest first for ``push_capped`` lists)."""
        raise NotImplementedError

    @abstractmethod
    async def scan_keys(self, pattern: str, *, limit: int = 10_000) -> list[str]:
        """Keys matching a glob pattern, at most ``limit`` of them."""
        raise NotImplementedError

    @abstractmethod
    async def ping(self) -> bool:
        """Check the backend is reachable."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release connections. No-op by default."""

    async def increment_with_ttl(self, key: str, ttl_seconds: int) -> tuple[int, int]:
        """Increment a counter, setting the TTL on the increment that creates it.

        Only the increment that brings the count to 1 sets the TTL, so
        concurrent requests never stretch the window. A key that somehow lost
        its TTL (e.g. the creating request died between the two calls) gets
        it restored rather than living forever.

        Args:
            key: Counter key.
            ttl_seconds: Window length applied when the key is created.

        Returns:
            Tuple of (count_after_increment, remaining_ttl_seconds).
        """

        count = await self.incr(key)
        if count == 1:
            await self.expire(key, ttl_seconds)
            return count, ttl_seconds

        remaining = await self.ttl(key)
        if remaining < 0:
            await self.expire(key, ttl_seconds)
            remaining = ttl_seconds
        return count, remaining
