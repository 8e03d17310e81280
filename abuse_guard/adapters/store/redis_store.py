"""Redis-backed counting store.

Shared across processes and hosts, so limits hold for the whole deployment.
Each call is bounded by a timeout; connection failures, protocol errors and
timeouts surface as ``StoreUnavailableError`` so the engine can fail open.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError

from abuse_guard.adapters.store.base import AbstractCountingStore
from abuse_guard.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RedisCountingStore(AbstractCountingStore):
    """Counting store using ``redis.asyncio``."""

    def __init__(self, client: redis.Redis, *, timeout_seconds: float = 0.5) -> None:
        """Wrap an existing async Redis client.

        Args:
            client: Client created with ``decode_responses=True``.
            timeout_seconds: Upper bound for each store round-trip.
        """
        self._client = client
        self._timeout = timeout_seconds

    @classmethod
    def from_url(cls, url: str, *, timeout_seconds: float = 0.5) -> "RedisCountingStore":
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client, timeout_seconds=timeout_seconds)

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise StoreUnavailableError(
                code="store_unavailable",
                message=f"Redis {operation} failed: {type(exc).__name__}",
                details={"operation": operation, "backend": "redis"},
            ) from exc

    async def incr(self, key: str) -> int:
        return int(await self._call("incr", self._client.incr(key)))

    async def expire(self, key: str, seconds: int) -> bool:
        return bool(await self._call("expire", self._client.expire(key, seconds)))

    async def ttl(self, key: str) -> int:
        return int(await self._call("ttl", self._client.ttl(key)))

    async def zadd(self, key: str, member: str, score: float) -> int:
        return int(await self._call("zadd", self._client.zadd(key, {member: score})))

    async def zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int:
        return int(
            await self._call(
                "zremrangebyscore",
                self._client.zremrangebyscore(key, _score_arg(min_score), _score_arg(max_score)),
            )
        )

    async def zcard(self, key: str) -> int:
        return int(await self._call("zcard", self._client.zcard(key)))

    async def zcount(self, key: str, min_score: float, max_score: float) -> int:
        return int(
            await self._call(
                "zcount",
                self._client.zcount(key, _score_arg(min_score), _score_arg(max_score)),
            )
        )

    async def zrange_with_scores(self, key: str, start: int, stop: int) -> list[tuple[str, float]]:
        rows = await self._call(
            "zrange",
            self._client.zrange(key, start, stop, withscores=True),
        )
        return [(str(member), float(score)) for member, score in rows]

    async def get(self, key: str) -> str | None:
        value = await self._call("get", self._client.get(key))
        return None if value is None else str(value)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._call("set", self._client.set(key, value, ex=ttl_seconds))

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        created = await self._call("set_nx", self._client.set(key, value, ex=ttl_seconds, nx=True))
        return bool(created)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._call("delete", self._client.delete(*keys)))

    async def push_capped(self, key: str, value: str, max_length: int, ttl_seconds: int) -> None:
        async def _push() -> list[Any]:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.lpush(key, value)
                pipe.ltrim(key, 0, max_length - 1)
                pipe.expire(key, ttl_seconds)
                return await pipe.execute()

        await self._call("push_capped", _push())

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        rows = await self._call("lrange", self._client.lrange(key, start, stop))
        return [str(row) for row in rows]

    async def scan_keys(self, pattern: str, *, limit: int = 10_000) -> list[str]:
        async def _scan() -> list[str]:
            keys: list[str] = []
            async for key in self._client.scan_iter(match=pattern, count=500):
                keys.append(str(key))
                if len(keys) >= limit:
                    break
            return keys

        return await self._call("scan", _scan())

    async def ping(self) -> bool:
        return bool(await self._call("ping", self._client.ping()))

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except (RedisError, OSError) as exc:
            logger.warning("store.close_failed", extra={"error_type": type(exc).__name__})


def _score_arg(score: float) -> float | str:
    if score == float("-inf"):
        return "-inf"
    if score == float("inf"):
        return "+inf"
    return score
