"""Redis-backed counter store.

Shared across every process that points at the same Redis, which is what makes
limits hold for multi-worker deployments. Each increment is one Lua script
call, so reading the current total, checking the cap, incrementing and setting
the window expiry happen as a single atomic step on the server.
"""

from __future__ import annotations

import logging
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.adapters.counter_store.base import AbstractCounterStore, CounterState
from app.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


# KEYS[1] counter key; ARGV amount, ttl_ms, max_total (-1 = uncapped)
# Returns {total, pttl_ms, applied}
_INCREMENT_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local amount = tonumber(ARGV[1])
local ttl_ms = tonumber(ARGV[2])
local max_total = tonumber(ARGV[3])
if max_total >= 0 and current + amount > max_total then
  return {current, redis.call('PTTL', KEYS[1]), 0}
end
local total = redis.call('INCRBY', KEYS[1], amount)
local pttl = redis.call('PTTL', KEYS[1])
if pttl < 0 then
  redis.call('PEXPIRE', KEYS[1], ttl_ms)
  pttl = ttl_ms
end
return {total, pttl, 1}
"""

# Returns {total, pttl_ms}, or {-1, -2} when the key does not exist
_PEEK_SCRIPT = """
local value = redis.call('GET', KEYS[1])
if not value then
  return {-1, -2}
end
return {tonumber(value), redis.call('PTTL', KEYS[1])}
"""


class RedisCounterStore(AbstractCounterStore):
    """Counter store using ``redis.asyncio``.

    The connection lifecycle is owned by the caller: ``connect()`` at startup,
    ``disconnect()`` at shutdown. Using the store in between raises
    ``StoreUnavailableError`` instead of silently reconnecting.
    """

    def __init__(self, *, url: str | None = None, client: Redis | None = None) -> None:
        """Initialize the store.

        Args:
            url: Redis URL used by ``connect()`` to build a client.
            client: Pre-built client; when given the store is usable at once.

        Raises:
            ValueError: If neither url nor client is provided.
        """
        if url is None and client is None:
            raise ValueError("url or client is required")

        self._url = url
        self._client: Redis | None = None
        self._increment_script: Any = None
        self._peek_script: Any = None
        if client is not None:
            self._bind(client)

    @property
    def connected(self) -> bool:
        return self._client is not None

    def _bind(self, client: Redis) -> None:
        self._client = client
        self._increment_script = client.register_script(_INCREMENT_SCRIPT)
        self._peek_script = client.register_script(_PEEK_SCRIPT)

    def _require_client(self) -> Redis:
        if self._client is None:
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Rate limit counter store is not connected",
                details={"backend": "redis"},
            )
        return self._client

    @staticmethod
    def _unavailable(exc: Exception) -> StoreUnavailableError:
        return StoreUnavailableError(
            code="store_unavailable",
            message=f"Rate limit counter store error: {exc}",
            details={"backend": "redis"},
        )

    async def connect(self) -> None:
        built_here = self._client is None
        if built_here:
            self._bind(Redis.from_url(self._url, decode_responses=True))
        try:
            await self._require_client().ping()
        except (RedisError, OSError) as exc:
            # Only a client built by this call is ours to close; an injected
            # one stays bound so the caller can retry.
            if built_here:
                await self.disconnect()
            raise self._unavailable(exc) from exc
        logger.info("counter_store.connected", extra={"backend": "redis"})

    async def disconnect(self) -> None:
        client = self._client
        if client is None:
            return
        self._client = None
        self._increment_script = None
        self._peek_script = None
        await client.aclose()
        logger.info("counter_store.disconnected", extra={"backend": "redis"})

    async def ping(self) -> bool:
        client = self._require_client()
        try:
            return bool(await client.ping())
        except (RedisError, OSError) as exc:
            raise self._unavailable(exc) from exc

    async def increment(
        self,
        counter_key: str,
        amount: int,
        ttl_seconds: int,
        *,
        max_total: int | None = None,
    ) -> CounterState:
        self._require_client()
        try:
            total, pttl, applied = await self._increment_script(
                keys=[counter_key],
                args=[amount, ttl_seconds * 1000, -1 if max_total is None else max_total],
            )
        except (RedisError, OSError) as exc:
            raise self._unavailable(exc) from exc
        return CounterState(total=int(total), ttl_ms=max(0, int(pttl)), applied=bool(int(applied)))

    async def peek(self, counter_key: str) -> CounterState | None:
        self._require_client()
        try:
            total, pttl = await self._peek_script(keys=[counter_key])
        except (RedisError, OSError) as exc:
            raise self._unavailable(exc) from exc
        if int(total) < 0:
            return None
        return CounterState(total=int(total), ttl_ms=max(0, int(pttl)))

    async def reset(self, counter_key: str) -> None:
        client = self._require_client()
        try:
            await client.delete(counter_key)
        except (RedisError, OSError) as exc:
            raise self._unavailable(exc) from exc
