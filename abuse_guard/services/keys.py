"""Store key layout.

Every key that includes a client is built from the hashed identifier, never
the raw value.
"""

from __future__ import annotations

from abuse_guard.adapters.rate_limit.base import Algorithm
from abuse_guard.core.identity import FactorType

KEY_PREFIX = "rate_limit"

GLOBAL_TIGHTENING_KEY = f"{KEY_PREFIX}:global_tightening"


def counter_key(algorithm: Algorithm, endpoint_name: str, hashed_client_id: str) -> str:
    return f"{KEY_PREFIX}:{algorithm.value}:{endpoint_name}:{hashed_client_id}"


def counter_key_pattern(algorithm: Algorithm, endpoint_name: str | None = None) -> str:
    return f"{KEY_PREFIX}:{algorithm.value}:{endpoint_name or '*'}:*"


def parse_counter_key(key: str) -> tuple[Algorithm, str, str] | None:
    """Split a counter key into (algorithm, endpoint_name, hashed_client_id)."""

    parts = key.split(":")
    if len(parts) != 4 or parts[0] != KEY_PREFIX:
        return None
    try:
        algorithm = Algorithm(parts[1])
    except ValueError:
        return None
    return algorithm, parts[2], parts[3]


def adaptive_key(endpoint_name: str, hashed_client_id: str) -> str:
    return f"{KEY_PREFIX}:adaptive:{endpoint_name}:{hashed_client_id}"


def violation_counter_key(endpoint_name: str, factor: FactorType, hashed_client_id: str) -> str:
    return f"{KEY_PREFIX}:violation_count:{endpoint_name}:{factor.value}:{hashed_client_id}"


def violation_log_key(endpoint_name: str | None = None) -> str:
    return f"{KEY_PREFIX}:violation_log:{endpoint_name or '*'}"


def global_violation_key(minute_bucket: int) -> str:
    return f"{KEY_PREFIX}:violation_global:{minute_bucket}"


def captcha_violation_key(hashed_client_id: str) -> str:
    return f"{KEY_PREFIX}:captcha:violations:{hashed_client_id}"


def captcha_required_key(hashed_client_id: str) -> str:
    return f"{KEY_PREFIX}:captcha:required:{hashed_client_id}"
