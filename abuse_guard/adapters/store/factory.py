"""Factory for creating counting store instances."""

from abuse_guard.adapters.store.base import AbstractCountingStore
from abuse_guard.adapters.store.in_memory import InMemoryCountingStore
from abuse_guard.adapters.store.redis_store import RedisCountingStore
from abuse_guard.core.config import StoreSettings, settings
from abuse_guard.core.errors import ValidationAppError


def create_counting_store(store_settings: StoreSettings | None = None) -> AbstractCountingStore:
    """Instantiate the counting store selected by configuration.

    Args:
        store_settings: Optional store settings; defaults to global settings.

    Returns:
        AbstractCountingStore: Configured store instance.

    Raises:
        ValidationAppError: If the backend name is unknown.
    """
    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    if backend == "memory":
        return InMemoryCountingStore()

    if backend == "redis":
        return RedisCountingStore.from_url(cfg.redis_url, timeout_seconds=cfg.timeout_seconds)

    raise ValidationAppError(
        code="store_unknown_backend",
        message=f"Unknown counting store backend: '{backend}'. Supported backends: memory, redis",
    )
