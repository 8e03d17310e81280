"""Named limits for the security-sensitive endpoints."""

from __future__ import annotations

from abuse_guard.adapters.rate_limit.base import Algorithm, RateLimitConfig
from abuse_guard.core.errors import ValidationAppError

HOUR = 3600
MINUTE = 60

RATE_LIMITS: dict[str, RateLimitConfig] = {
    "store_key": RateLimitConfig("store-key", 10, HOUR, Algorithm.SLIDING),
    "store_payment_info": RateLimitConfig("store-payment-info", 20, HOUR, Algorithm.SLIDING),
    "send_email": RateLimitConfig("send-email", 5, HOUR, Algorithm.SLIDING),
    "decrypt_mnemonic": RateLimitConfig("decrypt-mnemonic", 3, HOUR, Algorithm.SLIDING),
    "status": RateLimitConfig("status", 60, MINUTE, Algorithm.FIXED),
    "associate_wallet": RateLimitConfig("associate-wallet", 10, HOUR, Algorithm.SLIDING),
    "general_api": RateLimitConfig("general-api", 100, MINUTE, Algorithm.SLIDING),
}


def get_endpoint_limit(name: str) -> RateLimitConfig:
    """Look up a named limit by registry name or endpoint name.

    Raises:
        ValidationAppError: If no limit has that name.
    """

    if name in RATE_LIMITS:
        return RATE_LIMITS[name]
    for config in RATE_LIMITS.values():
        if config.endpoint_name == name:
            return config
    raise ValidationAppError(
        code="rate_limit_unknown_endpoint",
        message=f"Unknown rate limited endpoint: '{name}'",
        details={"hint": f"Known endpoints: {', '.join(sorted(RATE_LIMITS))}"},
    )
