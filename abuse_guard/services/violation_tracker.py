"""Violation tracking and escalation triggers.

Every denial is recorded here. The tracker feeds three escalation paths:

- Adaptive tightening once a client keeps getting denied on one endpoint.
- CAPTCHA escalation for repeated wallet-factor abuse.
- Global tightening (plus an alert) when violations across the whole system
  spike within a minute.

Tracking is best-effort telemetry: every step is isolated, and failures are
logged and swallowed so they can never change an allow/deny decision.
"""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, TypeVar

from pydantic import ValidationError

from abuse_guard.adapters.alerts.base import AlertEvent
from abuse_guard.adapters.rate_limit.base import to_datetime
from abuse_guard.adapters.store.base import AbstractCountingStore
from abuse_guard.core.errors import StoreUnavailableError
from abuse_guard.core.identity import (
    ClientRequest,
    FactorType,
    hash_identifier,
    infer_factor_type,
    resolve_client_identifier,
)
from abuse_guard.schemas.rate_limit import ViolationRecord
from abuse_guard.services import keys
from abuse_guard.services.adaptive_tightener import AdaptiveTightener
from abuse_guard.services.alert_channel import AlertChannel
from abuse_guard.services.captcha_gate import CaptchaGate
from abuse_guard.services.engine_config import EngineConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Global counters are bucketed per minute; keep the previous bucket around briefly
GLOBAL_BUCKET_SECONDS = 60
GLOBAL_BUCKET_TTL = 120

MAX_USER_AGENT_CHARS = 256


class ViolationTracker:
    """Records denials and triggers adaptive, CAPTCHA and global escalation."""

    def __init__(
        self,
        store: AbstractCountingStore,
        config: EngineConfig,
        *,
        tightener: AdaptiveTightener,
        captcha: CaptchaGate,
        alerts: AlertChannel | None = None,
        clock: Callable[[], float] = time.time,
        hasher: Callable[[str], str] = hash_identifier,
    ) -> None:
        self._store = store
        self._config = config
        self._tightener = tightener
        self._captcha = captcha
        self._alerts = alerts
        self._clock = clock
        self._hasher = hasher

    async def record_violation(
        self,
        endpoint_name: str,
        identifier: str,
        request: ClientRequest | None = None,
        *,
        factor: FactorType | None = None,
    ) -> None:
        """Record one denied request. Never raises.

        Args:
            endpoint_name: Endpoint the request was denied on.
            identifier: Raw identifier that was limited; hashed before use.
            request: Request view used for the hashed IP and user agent.
            factor: Identity axis; inferred from the identifier when omitted.
        """

        factor = factor or infer_factor_type(identifier)
        hashed = self._hasher(identifier)

        await self._safely("append_record", self._append_record(endpoint_name, hashed, factor, request))
        await self._safely("client_counter", self._count_client_violation(endpoint_name, factor, hashed))
        if factor is FactorType.WALLET:
            await self._safely("captcha", self._captcha.record_wallet_violation(hashed))
        await self._safely("global_counter", self._count_global_violation())

    async def list_violations(self, endpoint_name: str | None = None, limit: int = 100) -> list[ViolationRecord]:
        """Return recent violations, newest first.

        Args:
            endpoint_name: Restrict to one endpoint; all endpoints when None.
            limit: Maximum records returned.

        Raises:
            StoreUnavailableError: If the store fails.
        """

        if limit < 1:
            return []

        if endpoint_name:
            log_keys = [keys.violation_log_key(endpoint_name)]
        else:
            log_keys = await self._store.scan_keys(keys.violation_log_key(), limit=self._config.stats_scan_limit)

        records: list[ViolationRecord] = []
        for log_key in log_keys:
            for raw in await self._store.lrange(log_key, 0, limit - 1):
                try:
                    records.append(ViolationRecord.model_validate_json(raw))
                except ValidationError:
                    logger.debug("rate_limit.violation_record_malformed", extra={"log_key": log_key})

        records.sort(key=lambda record: record.timestamp, reverse=True)
        return records[:limit]

    async def clear_client(self, endpoint_name: str, hashed_client_id: str) -> int:
        """Drop per-client violation counters for one endpoint (admin reset)."""

        return await self._store.delete(
            *(keys.violation_counter_key(endpoint_name, factor, hashed_client_id) for factor in FactorType)
        )

    async def _append_record(
        self,
        endpoint_name: str,
        hashed: str,
        factor: FactorType,
        request: ClientRequest | None,
    ) -> None:
        ip_hash = None
        user_agent = None
        if request is not None:
            ip_hash = self._hasher(resolve_client_identifier(request))
            if request.user_agent:
                user_agent = request.user_agent[:MAX_USER_AGENT_CHARS]

        record = ViolationRecord(
            timestamp=to_datetime(self._clock()),
            endpoint_name=endpoint_name,
            hashed_client_id=hashed,
            factor=factor,
            ip=ip_hash,
            user_agent=user_agent,
        )
        await self._store.push_capped(
            keys.violation_log_key(endpoint_name),
            record.model_dump_json(),
            self._config.violation_log_max_entries,
            self._config.violation_log_ttl,
        )

    async def _count_client_violation(self, endpoint_name: str, factor: FactorType, hashed: str) -> None:
        count, _ = await self._store.increment_with_ttl(
            keys.violation_counter_key(endpoint_name, factor, hashed),
            self._config.adaptive_tightening_window,
        )
        if not self._config.adaptive_enabled or count < self._config.adaptive_violation_threshold:
            return

        if await self._tightener.activate(endpoint_name, hashed):
            logger.warning(
                "rate_limit.adaptive_activated",
                extra={
                    "endpoint": endpoint_name,
                    "client_hash": hashed,
                    "factor_type": factor.value,
                    "violations": count,
                    "tightening_factor": self._config.adaptive_tightening_factor,
                    "duration_s": self._config.adaptive_tightening_duration,
                },
            )

    async def _count_global_violation(self) -> None:
        bucket = int(self._clock() // GLOBAL_BUCKET_SECONDS)
        count, _ = await self._store.increment_with_ttl(keys.global_violation_key(bucket), GLOBAL_BUCKET_TTL)
        if count < self._config.global_violation_threshold:
            return

        state = await self._tightener.activate_global(count)
        if state is None:
            return

        logger.critical(
            "rate_limit.global_tightening_activated",
            extra={
                "violations_per_minute": count,
                "tightening_factor": state.factor,
                "expires_at": state.expires_at.isoformat(),
            },
        )
        if self._alerts is not None:
            self._alerts.publish(
                AlertEvent(
                    event_type="global_tightening_activated",
                    severity="critical",
                    message=(
                        f"Rate limit violations reached {count}/min; "
                        f"all limits reduced to {int(state.factor * 100)}% until {state.expires_at.isoformat()}"
                    ),
                    context={
                        "violations_per_minute": count,
                        "threshold": self._config.global_violation_threshold,
                        "factor": state.factor,
                        "expires_at": state.expires_at.isoformat(),
                    },
                )
            )

    async def _safely(self, step: str, awaitable: Awaitable[T]) -> T | None:
        try:
            return await awaitable
        except StoreUnavailableError as exc:
            logger.warning(
                "rate_limit.tracking_failed",
                extra={"step": step, "error_code": exc.code, "error_msg": exc.message},
            )
        except Exception as exc:  # noqa: BLE001 - tracking must never affect the decision
            logger.error(
                "rate_limit.tracking_failed",
                extra={"step": step, "error_type": type(exc).__name__, "error_msg": str(exc)},
            )
        return None
