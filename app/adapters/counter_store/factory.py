"""Factory for creating counter store instances."""

from app.adapters.counter_store.base import AbstractCounterStore
from app.adapters.counter_store.in_memory import InMemoryCounterStore
from app.adapters.counter_store.redis_store import RedisCounterStore
from app.core.config import RateLimitSettings, settings
from app.core.errors import InvalidConfigurationError


def create_counter_store(rate_limit_settings: RateLimitSettings | None = None) -> AbstractCounterStore:
    """Instantiate the counter store selected by configuration.

    Args:
        rate_limit_settings: Optional settings; defaults to global settings.

    Returns:
        AbstractCounterStore: Store instance (not yet connected).

    Raises:
        InvalidConfigurationError: If the backend is unknown.
    """
    cfg = rate_limit_settings or settings.rate_limit
    backend = cfg.store_backend.lower()

    if backend == "redis":
        return RedisCounterStore(url=cfg.redis_url)

    if backend == "memory":
        return InMemoryCounterStore()

    raise InvalidConfigurationError(
        code="unknown_store_backend",
        message=f"Unknown counter store backend: '{backend}'. Supported backends: redis, memory",
    )
