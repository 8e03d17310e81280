"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets TESTING so no .env file is loaded, and pins the settings every
test relies on before anything imports ``abuse_guard.core.config``.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_BYPASS", "false")
os.environ.setdefault("APP_ADMIN_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_ADMIN_API_KEYS", "test-admin-key-123,test-admin-key-456")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from abuse_guard.adapters.store.base import AbstractCountingStore
from abuse_guard.adapters.store.in_memory import InMemoryCountingStore
from abuse_guard.core.errors import StoreUnavailableError
from abuse_guard.core.identity import ClientRequest
from abuse_guard.services.engine_config import EngineConfig
from abuse_guard.services.rate_limit_engine import RateLimitEngine


class FakeClock:
    """Deterministic clock shared by the store and the engine."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryCountingStore:
    return InMemoryCountingStore(clock=clock)


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def engine(store: InMemoryCountingStore, engine_config: EngineConfig, clock: FakeClock) -> RateLimitEngine:
    return RateLimitEngine(store, engine_config, clock=clock)


@pytest.fixture
def client_request() -> ClientRequest:
    return ClientRequest(
        headers={
            "x-forwarded-for": "203.0.113.7, 10.0.0.1",
            "user-agent": "pytest-agent/1.0",
            "accept-language": "en-US",
            "accept-encoding": "gzip",
        },
        client_host="10.0.0.1",
    )


async def _unavailable(*args, **kwargs):
    raise StoreUnavailableError(code="store_unavailable", message="Counting store unavailable")


class UnavailableStore(AbstractCountingStore):
    """Store whose every operation fails as if the backend were down."""

    incr = expire = ttl = _unavailable
    zadd = zremrangebyscore = zcard = zcount = zrange_with_scores = _unavailable
    get = set = set_if_absent = delete = _unavailable
    push_capped = lrange = scan_keys = ping = _unavailable


@pytest.fixture
def unavailable_store() -> UnavailableStore:
    return UnavailableStore()
