"""Fixed-window point limiter backed by a shared counter store."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, TypeVar

from app.adapters.counter_store.base import AbstractCounterStore, CounterState
from app.core.errors import RateLimitExceededError, StoreUnavailableError
from app.services.limiter_config import LimiterConfig

T = TypeVar("T")


@dataclass(frozen=True)
class ConsumeResult:
    """State of a key's window after a consume, or as seen by ``get``.

    Attributes:
        consumed_points: Points used in the active window.
        remaining_points: Points still available (never negative).
        ms_before_next: Milliseconds until the window resets.
        is_first_in_duration: True when this consume opened the window.
    """

    consumed_points: int
    remaining_points: int
    ms_before_next: int
    is_first_in_duration: bool = False


class RateLimiter:
    """Limiter bound to one configuration and one key namespace.

    Two instances built with the same ``key_prefix`` share counters, so the
    identity of a limiter is its prefix and not the Python object.

    No locking happens here: the store's conditional increment is the only
    synchronization point, which keeps limits correct across processes.
    """

    def __init__(
        self,
        store: AbstractCounterStore,
        config: LimiterConfig,
        *,
        key_prefix: str,
        namespace: str = "rate-limit",
        timeout_seconds: float | None = None,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Shared counter store.
            config: Budget and window length.
            key_prefix: Limiter identity, e.g. ``"scrape-standard"``.
            namespace: Global prefix separating limiter keys from other data.
            timeout_seconds: Upper bound for each store call (None = unbounded).
        """
        self._store = store
        self._config = config
        self._key_prefix = key_prefix
        self._namespace = namespace
        self._timeout = timeout_seconds

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"RateLimiter(key_prefix={self._key_prefix!r}, points={self.points}, "
            f"duration={self.duration})"
        )

    @property
    def points(self) -> int:
        return self._config.points

    @property
    def duration(self) -> int:
        return self._config.duration

    @property
    def config(self) -> LimiterConfig:
        return self._config

    @property
    def key_prefix(self) -> str:
        return self._key_prefix

    def counter_key(self, key: str) -> str:
        """Store key for a caller key within this limiter's namespace."""
        return f"{self._namespace}:{self._key_prefix}:{key}"

    async def _call_store(self, operation: Awaitable[T]) -> T:
        if self._timeout is None:
            return await operation
        try:
            return await asyncio.wait_for(operation, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError(
                code="store_timeout",
                message=f"Counter store did not answer within {self._timeout}s",
            ) from exc

    def _result(self, state: CounterState, *, is_first: bool = False) -> ConsumeResult:
        return ConsumeResult(
            consumed_points=state.total,
            remaining_points=max(0, self.points - state.total),
            ms_before_next=state.ttl_ms,
            is_first_in_duration=is_first,
        )

    async def consume(self, key: str, points: int = 1) -> ConsumeResult:
        """Consume ``points`` from ``key``'s budget.

        Either the whole amount is committed or nothing is: a request that
        would exceed the budget leaves the counter exactly as it was.

        Args:
            key: Caller identifier (token, IP, ...).
            points: Units to consume (default 1).

        Returns:
            ConsumeResult after the commit.

        Raises:
            ValueError: If key is empty or points is invalid.
            RateLimitExceededError: If the budget would be exceeded.
            StoreUnavailableError: If the store is unreachable or too slow.
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if isinstance(points, bool) or not isinstance(points, int) or points < 1:
            raise ValueError("points must be an integer >= 1")

        state = await self._call_store(
            self._store.increment(
                self.counter_key(key),
                points,
                self.duration,
                max_total=self.points,
            )
        )

        if not state.applied:
            raise RateLimitExceededError(
                limit=self.points,
                remaining_points=max(0, self.points - state.total),
                consumed_points=state.total,
                ms_before_next=state.ttl_ms,
            )

        return self._result(state, is_first=state.total == points)

    async def get(self, key: str) -> ConsumeResult | None:
        """Return the current window state for ``key`` without consuming.

        Returns:
            ConsumeResult, or None when no window is active (full budget).
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        state = await self._call_store(self._store.peek(self.counter_key(key)))
        if state is None:
            return None
        return self._result(state)

    async def reset(self, key: str) -> None:
        """Drop ``key``'s counter. Meant for test teardown and admin tooling."""
        if not key:
            raise ValueError("key must be a non-empty string")

        await self._call_store(self._store.reset(self.counter_key(key)))
