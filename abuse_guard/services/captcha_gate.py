"""CAPTCHA escalation flags.

Only the decision to require a challenge lives here; issuing and verifying it
is the caller's job. A missing flag means "not required", so a store outage
never locks clients behind a challenge.
"""

from __future__ import annotations

import logging

from abuse_guard.adapters.store.base import AbstractCountingStore
from abuse_guard.core.errors import StoreUnavailableError
from abuse_guard.services import keys
from abuse_guard.services.engine_config import EngineConfig

logger = logging.getLogger(__name__)


class CaptchaGate:
    """Tracks wallet-factor violations and flags clients for a challenge."""

    def __init__(self, store: AbstractCountingStore, config: EngineConfig) -> None:
        self._store = store
        self._config = config

    @property
    def enabled(self) -> bool:
        return self._config.captcha_enabled

    @property
    def provider(self) -> str:
        return self._config.captcha_provider

    async def record_wallet_violation(self, hashed_client_id: str) -> bool:
        """Count a wallet violation and set the flag once the threshold is hit.

        Returns:
            True if the CAPTCHA requirement is (now) set for this client.

        Raises:
            StoreUnavailableError: Propagated so the tracker can log it.
        """

        if not self.enabled:
            return False

        count, _ = await self._store.increment_with_ttl(
            keys.captcha_violation_key(hashed_client_id),
            self._config.captcha_violation_window,
        )
        if count < self._config.captcha_wallet_violation_threshold:
            return False

        created = await self._store.set_if_absent(
            keys.captcha_required_key(hashed_client_id),
            "1",
            self._config.captcha_required_ttl,
        )
        if created:
            logger.warning(
                "rate_limit.captcha_required",
                extra={
                    "client_hash": hashed_client_id,
                    "wallet_violations": count,
                    "provider": self.provider,
                },
            )
        return True

    async def is_required(self, hashed_client_id: str) -> bool:
        if not self.enabled:
            return False
        try:
            return await self._store.get(keys.captcha_required_key(hashed_client_id)) is not None
        except StoreUnavailableError as exc:
            logger.warning(
                "rate_limit.captcha_lookup_failed",
                extra={"client_hash": hashed_client_id, "error_code": exc.code},
            )
            return False

    async def clear(self, hashed_client_id: str) -> int:
        return await self._store.delete(
            keys.captcha_required_key(hashed_client_id),
            keys.captcha_violation_key(hashed_client_id),
        )
