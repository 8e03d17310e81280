"""Adaptive and global tightening state.

This module only stores, reads and applies tightening. Deciding *when* to
tighten belongs to the violation tracker.

State is JSON in the counting store with a TTL matching its expiry, so it
disappears on its own; reads still compare ``expires_at`` and delete stale or
malformed records lazily.
"""

from __future__ import annotations

import logging
import math
import time
from datetime import timedelta
from typing import Callable

from pydantic import ValidationError

from abuse_guard.adapters.rate_limit.base import to_datetime
from abuse_guard.adapters.store.base import AbstractCountingStore
from abuse_guard.schemas.rate_limit import AdaptiveState, GlobalTighteningState
from abuse_guard.services import keys
from abuse_guard.services.engine_config import EngineConfig

logger = logging.getLogger(__name__)


class AdaptiveTightener:
    """Reads and creates adaptive (per client) and global tightening state."""

    def __init__(
        self,
        store: AbstractCountingStore,
        config: EngineConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._config = config
        self._clock = clock

    async def get_active(self, endpoint_name: str, hashed_client_id: str) -> AdaptiveState | None:
        """Return the active tightening for a pair, or None.

        Raises:
            StoreUnavailableError: If the store fails; callers on the request
                path treat this like any other store failure.
        """

        key = keys.adaptive_key(endpoint_name, hashed_client_id)
        raw = await self._store.get(key)
        if raw is None:
            return None

        try:
            state = AdaptiveState.model_validate_json(raw)
        except ValidationError:
            logger.warning(
                "rate_limit.adaptive_state_malformed",
                extra={"endpoint": endpoint_name, "client_hash": hashed_client_id},
            )
            await self._store.delete(key)
            return None

        if state.expires_at <= to_datetime(self._clock()):
            await self._store.delete(key)
            return None
        return state

    async def activate(self, endpoint_name: str, hashed_client_id: str) -> bool:
        """Start tightening for a pair unless it is already active.

        Uses an atomic create so concurrent violations activate it once.

        Returns:
            True if this call created the state.
        """

        now = to_datetime(self._clock())
        duration = self._config.adaptive_tightening_duration
        state = AdaptiveState(
            endpoint_name=endpoint_name,
            hashed_client_id=hashed_client_id,
            applied_at=now,
            expires_at=now + timedelta(seconds=duration),
            factor=self._config.adaptive_tightening_factor,
        )
        return await self._store.set_if_absent(
            keys.adaptive_key(endpoint_name, hashed_client_id),
            state.model_dump_json(),
            duration,
        )

    async def clear(self, endpoint_name: str, hashed_client_id: str) -> int:
        return await self._store.delete(keys.adaptive_key(endpoint_name, hashed_client_id))

    async def get_global(self) -> GlobalTighteningState | None:
        raw = await self._store.get(keys.GLOBAL_TIGHTENING_KEY)
        if raw is None:
            return None

        try:
            state = GlobalTighteningState.model_validate_json(raw)
        except ValidationError:
            logger.warning("rate_limit.global_state_malformed")
            await self._store.delete(keys.GLOBAL_TIGHTENING_KEY)
            return None

        if state.expires_at <= to_datetime(self._clock()):
            await self._store.delete(keys.GLOBAL_TIGHTENING_KEY)
            return None
        return state

    async def activate_global(self, violations_observed: int) -> GlobalTighteningState | None:
        """Start global tightening unless already active.

        Returns:
            The new state if this call created it, else None.
        """

        now = to_datetime(self._clock())
        duration = self._config.global_tightening_duration
        state = GlobalTighteningState(
            applied_at=now,
            expires_at=now + timedelta(seconds=duration),
            violations_observed=violations_observed,
            factor=self._config.global_tightening_factor,
        )
        created = await self._store.set_if_absent(
            keys.GLOBAL_TIGHTENING_KEY,
            state.model_dump_json(),
            duration,
        )
        return state if created else None


def effective_limit(
    max_requests: int,
    adaptive: AdaptiveState | None,
    global_state: GlobalTighteningState | None,
) -> int:
    """Compose per-client and global tightening.

    Each active state yields ``floor(max_requests * factor)``; the smaller of
    the two wins (they do not compound). The result never drops below 1.
    """

    candidates = [max_requests]
    if adaptive is not None:
        candidates.append(math.floor(max_requests * adaptive.factor))
    if global_state is not None:
        candidates.append(math.floor(max_requests * global_state.factor))
    return max(1, min(candidates))
