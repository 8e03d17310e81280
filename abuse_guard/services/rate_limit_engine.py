"""Rate limit engine: the single entry point for allow/deny decisions.

A check resolves the client identity, applies any active adaptive or global
tightening, runs the endpoint's window algorithm, schedules violation
tracking on denial and finally consults the CAPTCHA gate. Tracking runs as a
background task so a denial is returned without waiting on it; escalation
from a violation therefore applies from the next check onward.

Error policy:
- Counting store unavailable or timing out: fail open (allowed, full
  remaining budget) and log a warning. The limiter must never become an
  outage vector for the endpoints it protects.
- Violation tracking and alerting failures never reach the caller.
- Invalid limits are rejected when ``RateLimitConfig`` is built, not here.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import Counter
from dataclasses import dataclass, replace
from typing import Callable, Iterator

from abuse_guard.adapters.rate_limit.base import (
    AbstractWindowLimiter,
    Algorithm,
    RateLimitConfig,
    RateLimitResult,
    to_datetime,
)
from abuse_guard.adapters.rate_limit.fixed_window import FixedWindowLimiter
from abuse_guard.adapters.rate_limit.sliding_window import SlidingWindowLimiter
from abuse_guard.adapters.store.base import AbstractCountingStore
from abuse_guard.core.errors import StoreUnavailableError
from abuse_guard.core.identity import (
    ClientRequest,
    FactorType,
    hash_identifier,
    resolve_client_identifier,
)
from abuse_guard.schemas.rate_limit import EndpointKeyCount, RateLimitStats, ViolationRecord
from abuse_guard.services import keys
from abuse_guard.services.adaptive_tightener import AdaptiveTightener, effective_limit
from abuse_guard.services.alert_channel import AlertChannel
from abuse_guard.services.captcha_gate import CaptchaGate
from abuse_guard.services.engine_config import EngineConfig
from abuse_guard.services.violation_tracker import ViolationTracker

logger = logging.getLogger(__name__)

TOP_ENDPOINTS_LIMIT = 10


@dataclass(frozen=True)
class SecondaryIdentifiers:
    """Extra identity axes checked by the multi-factor check (all optional)."""

    wallet_address: str | None = None
    email: str | None = None
    device_fingerprint: str | None = None

    def present(self) -> Iterator[tuple[FactorType, str]]:
        for factor, value in (
            (FactorType.WALLET, self.wallet_address),
            (FactorType.EMAIL, self.email),
            (FactorType.DEVICE, self.device_fingerprint),
        ):
            if value and value.strip():
                yield factor, value


class RateLimitEngine:
    """Orchestrates identity, tightening, window counting and escalation."""

    def __init__(
        self,
        store: AbstractCountingStore,
        config: EngineConfig | None = None,
        *,
        alerts: AlertChannel | None = None,
        clock: Callable[[], float] = time.time,
        hasher: Callable[[str], str] = hash_identifier,
    ) -> None:
        """Wire the engine's collaborators around one counting store.

        Args:
            store: Counting store shared by every component.
            config: Thresholds; defaults to ``EngineConfig()``.
            alerts: Channel for fire-and-forget alerts; alerts are skipped
                when None.
            clock: Time source function returning UNIX time in seconds.
            hasher: One-way identifier hash used for keys and logs.
        """
        self._store = store
        self._config = config or EngineConfig()
        self._clock = clock
        self._hasher = hasher

        self._limiters: dict[Algorithm, AbstractWindowLimiter] = {
            Algorithm.FIXED: FixedWindowLimiter(store, clock=clock),
            Algorithm.SLIDING: SlidingWindowLimiter(store, clock=clock),
        }
        self.tightener = AdaptiveTightener(store, self._config, clock=clock)
        self.captcha = CaptchaGate(store, self._config)
        self.tracker = ViolationTracker(
            store,
            self._config,
            tightener=self.tightener,
            captcha=self.captcha,
            alerts=alerts,
            clock=clock,
            hasher=hasher,
        )
        self._tracking_tasks: set[asyncio.Task] = set()

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def store(self) -> AbstractCountingStore:
        return self._store

    def hash_client(self, identifier: str) -> str:
        """Hash an explicit identifier exactly as checks key it."""

        return self._hasher(resolve_client_identifier(None, identifier))

    async def check_rate_limit(
        self,
        request: ClientRequest | None,
        config: RateLimitConfig,
        *,
        factor: FactorType | None = None,
    ) -> RateLimitResult:
        """Count one request and decide whether it is allowed.

        Args:
            request: Request view used for identity resolution.
            config: Endpoint limit; ``config.identifier`` overrides the IP.
            factor: Identity axis for violation tracking; inferred when None.

        Returns:
            RateLimitResult. Never raises on store failures.
        """

        if self._config.bypass:
            return self._permissive_result(config)

        identifier = resolve_client_identifier(request, config.identifier)
        hashed = self._hasher(identifier)
        key = keys.counter_key(config.algorithm, config.endpoint_name, hashed)

        try:
            limit, tightened = await self._effective_limit(config, hashed)
            result = await self._limiters[config.algorithm].check(key, config, limit)
        except Exception as exc:  # noqa: BLE001 - primary path always fails open
            return self._fail_open(config, hashed, exc)

        if tightened:
            result = replace(result, adaptive_limit_applied=True)

        log_fields = {
            "endpoint": config.endpoint_name,
            "algorithm": config.algorithm.value,
            "client_hash": hashed,
            "limit": result.limit,
            "remaining": result.remaining,
            "window_s": config.window_seconds,
            "adaptive": tightened,
        }
        if result.allowed:
            logger.info("rate_limit.allowed", extra=log_fields)
        else:
            logger.warning(
                "rate_limit.exceeded",
                extra={**log_fields, "retry_after_s": result.retry_after_seconds},
            )
            self._schedule_tracking(config.endpoint_name, identifier, request, factor)

        return await self._apply_captcha(result, hashed)

    async def check_multi_factor_rate_limit(
        self,
        request: ClientRequest | None,
        config: RateLimitConfig,
        secondary: SecondaryIdentifiers | None = None,
    ) -> RateLimitResult:
        """Check the primary identity and every secondary identity; block on any.

        Wallet and email factors get ``floor(max * 0.7)`` and the device
        fingerprint ``floor(max * 0.8)`` (never below 1), all on the same
        endpoint name. A primary denial short-circuits. When every factor
        allows, the most conservative remaining/reset combination is returned.

        Returns:
            The denying factor's result, or the combined result.
        """

        primary = await self.check_rate_limit(request, config)
        if not primary.allowed or self._config.bypass or secondary is None:
            return primary

        primary_identifier = resolve_client_identifier(request, config.identifier)
        results = [primary]

        for factor, identifier in secondary.present():
            if resolve_client_identifier(None, identifier) == primary_identifier:
                # Same counter as the primary check; counting it twice would halve the budget.
                continue

            ratio = self._factor_ratio(factor)
            factor_config = config.with_identifier(identifier).with_limit(
                max(1, math.floor(config.max_requests * ratio))
            )
            result = await self.check_rate_limit(request, factor_config, factor=factor)

            if not result.allowed:
                logger.warning(
                    "rate_limit.factor_exceeded",
                    extra={
                        "endpoint": config.endpoint_name,
                        "factor_type": factor.value,
                        "client_hash": self.hash_client(identifier),
                    },
                )
                return self._merge_flags(result, results)

            results.append(result)

        combined = replace(
            primary,
            remaining=min(r.remaining for r in results),
            reset_at=max(r.reset_at for r in results),
        )
        return self._merge_flags(combined, results)

    async def get_rate_limit_status(
        self,
        request: ClientRequest | None,
        config: RateLimitConfig,
    ) -> RateLimitResult:
        """Report the caller's current standing without counting a request."""

        if self._config.bypass:
            return self._permissive_result(config)

        identifier = resolve_client_identifier(request, config.identifier)
        hashed = self._hasher(identifier)
        key = keys.counter_key(config.algorithm, config.endpoint_name, hashed)

        try:
            limit, tightened = await self._effective_limit(config, hashed)
            result = await self._limiters[config.algorithm].peek(key, config, limit)
        except Exception as exc:  # noqa: BLE001
            return self._fail_open(config, hashed, exc)

        if tightened:
            result = replace(result, adaptive_limit_applied=True)
        return await self._apply_captcha(result, hashed)

    async def reset_rate_limit(self, endpoint_name: str, identifier: str, algorithm: Algorithm) -> bool:
        """Admin reset: clear a client's counter, tightening, violation counters and CAPTCHA flag.

        Returns:
            True when the store accepted the deletion, False if it failed.
        """

        algorithm = Algorithm(algorithm)
        hashed = self.hash_client(identifier)
        try:
            deleted = await self._store.delete(keys.counter_key(algorithm, endpoint_name, hashed))
            deleted += await self.tightener.clear(endpoint_name, hashed)
            deleted += await self.tracker.clear_client(endpoint_name, hashed)
            deleted += await self.captcha.clear(hashed)
        except StoreUnavailableError as exc:
            logger.warning(
                "rate_limit.reset_failed",
                extra={"endpoint": endpoint_name, "client_hash": hashed, "error_code": exc.code},
            )
            return False

        logger.info(
            "rate_limit.reset",
            extra={
                "endpoint": endpoint_name,
                "algorithm": algorithm.value,
                "client_hash": hashed,
                "keys_deleted": deleted,
            },
        )
        return True

    async def get_rate_limit_violations(
        self,
        endpoint_name: str | None = None,
        limit: int = 100,
    ) -> list[ViolationRecord]:
        """Recent violations, newest first; empty when the store fails."""

        try:
            return await self.tracker.list_violations(endpoint_name, limit)
        except StoreUnavailableError as exc:
            logger.warning(
                "rate_limit.violations_unavailable",
                extra={"endpoint": endpoint_name, "error_code": exc.code},
            )
            return []

    async def get_rate_limit_stats(self, endpoint_name: str | None = None) -> RateLimitStats:
        """Summarize counter keys; all zeros when the store fails.

        A key is active while it still holds at least one counted request.
        """

        try:
            return await self._collect_stats(endpoint_name)
        except StoreUnavailableError as exc:
            logger.warning(
                "rate_limit.stats_unavailable",
                extra={"endpoint": endpoint_name, "error_code": exc.code},
            )
            return RateLimitStats()

    async def drain_tracking(self) -> None:
        """Wait until every scheduled violation tracking task has finished."""

        while True:
            pending = [task for task in self._tracking_tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _schedule_tracking(
        self,
        endpoint_name: str,
        identifier: str,
        request: ClientRequest | None,
        factor: FactorType | None,
    ) -> None:
        task = asyncio.create_task(
            self.tracker.record_violation(endpoint_name, identifier, request, factor=factor)
        )
        self._tracking_tasks.add(task)
        task.add_done_callback(self._tracking_done)

    def _tracking_done(self, task: asyncio.Task) -> None:
        self._tracking_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "rate_limit.tracking_failed",
                extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
            )

    async def _collect_stats(self, endpoint_name: str | None) -> RateLimitStats:
        algorithm_counts = {algorithm.value: 0 for algorithm in Algorithm}
        per_endpoint: Counter[str] = Counter()
        total = 0
        active = 0

        for algorithm in Algorithm:
            found = await self._store.scan_keys(
                keys.counter_key_pattern(algorithm, endpoint_name),
                limit=self._config.stats_scan_limit,
            )
            for key in found:
                parsed = keys.parse_counter_key(key)
                if parsed is None:
                    continue
                total += 1
                algorithm_counts[algorithm.value] += 1
                per_endpoint[parsed[1]] += 1
                if await self._key_in_use(algorithm, key):
                    active += 1

        return RateLimitStats(
            total_keys=total,
            active_keys=active,
            algorithm_counts=algorithm_counts,
            top_endpoints=[
                EndpointKeyCount(endpoint_name=name, keys=count)
                for name, count in per_endpoint.most_common(TOP_ENDPOINTS_LIMIT)
            ],
        )

    async def _key_in_use(self, algorithm: Algorithm, key: str) -> bool:
        if algorithm is Algorithm.FIXED:
            raw = await self._store.get(key)
            return bool(raw) and int(raw) > 0
        return await self._store.zcard(key) > 0

    async def _effective_limit(self, config: RateLimitConfig, hashed: str) -> tuple[int, bool]:
        if not self._config.adaptive_enabled:
            return config.max_requests, False

        adaptive = await self.tightener.get_active(config.endpoint_name, hashed)
        global_state = await self.tightener.get_global()
        limit = effective_limit(config.max_requests, adaptive, global_state)
        return limit, adaptive is not None or global_state is not None

    async def _apply_captcha(self, result: RateLimitResult, hashed: str) -> RateLimitResult:
        if await self.captcha.is_required(hashed):
            return replace(result, requires_captcha=True, captcha_provider=self.captcha.provider)
        return result

    def _factor_ratio(self, factor: FactorType) -> float:
        if factor is FactorType.WALLET:
            return self._config.wallet_factor_ratio
        if factor is FactorType.EMAIL:
            return self._config.email_factor_ratio
        return self._config.device_factor_ratio

    @staticmethod
    def _merge_flags(result: RateLimitResult, others: list[RateLimitResult]) -> RateLimitResult:
        requires_captcha = result.requires_captcha or any(r.requires_captcha for r in others)
        provider = result.captcha_provider or next(
            (r.captcha_provider for r in others if r.captcha_provider), None
        )
        return replace(
            result,
            requires_captcha=requires_captcha,
            captcha_provider=provider if requires_captcha else None,
            adaptive_limit_applied=result.adaptive_limit_applied
            or any(r.adaptive_limit_applied for r in others),
        )

    def _permissive_result(self, config: RateLimitConfig) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            remaining=config.max_requests,
            limit=config.max_requests,
            reset_at=to_datetime(self._clock() + config.window_seconds),
        )

    def _fail_open(self, config: RateLimitConfig, hashed: str, exc: Exception) -> RateLimitResult:
        level = logging.WARNING if isinstance(exc, StoreUnavailableError) else logging.ERROR
        logger.log(
            level,
            "rate_limit.store_unavailable",
            extra={
                "endpoint": config.endpoint_name,
                "algorithm": config.algorithm.value,
                "client_hash": hashed,
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
                "fail_open": True,
            },
        )
        return self._permissive_result(config)
