"""In-memory counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Each operation runs under a lock and never awaits, so it is atomic both for
  asyncio tasks and for threads sharing the instance.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from itertools import islice
from typing import Callable

from app.adapters.counter_store.base import AbstractCounterStore, CounterState


@dataclass
class _Entry:
    total: int
    expires_at: float


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store keeping fixed-window entries in a dict.

    Expired entries are dropped lazily on access, mirroring how an expiring
    key-value store behaves from the caller's point of view. Each increment
    also sweeps a bounded batch of the oldest entries.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        purge_batch_size: int = 64,
    ) -> None:
        """Initialize the store.

        Args:
            clock: Time source returning seconds; injectable for tests.
            purge_batch_size: Oldest entries checked for expiry on each
                increment, so keys that are never touched again still go away.
        """
        if purge_batch_size < 0:
            raise ValueError("purge_batch_size must be >= 0")

        self._clock = clock
        self._purge_batch_size = purge_batch_size
        self._lock = threading.RLock()
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired(self._clock())
            return len(self._entries)

    def _ttl_ms(self, entry: _Entry, now: float) -> int:
        return max(0, int(math.ceil((entry.expires_at - now) * 1000)))

    def _live_entry(self, counter_key: str, now: float) -> _Entry | None:
        entry = self._entries.get(counter_key)
        if entry is not None and entry.expires_at <= now:
            del self._entries[counter_key]
            return None
        return entry

    def _purge_expired(self, now: float, limit: int | None = None) -> None:
        candidates = islice(self._entries.items(), limit)
        expired = [key for key, entry in candidates if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]

    async def increment(
        self,
        counter_key: str,
        amount: int,
        ttl_seconds: int,
        *,
        max_total: int | None = None,
    ) -> CounterState:
        now = self._clock()
        with self._lock:
            self._purge_expired(now, self._purge_batch_size)
            entry = self._live_entry(counter_key, now)
            current = entry.total if entry is not None else 0

            if max_total is not None and current + amount > max_total:
                ttl_ms = self._ttl_ms(entry, now) if entry is not None else 0
                return CounterState(total=current, ttl_ms=ttl_ms, applied=False)

            if entry is None:
                entry = _Entry(total=0, expires_at=now + ttl_seconds)
                self._entries[counter_key] = entry
            entry.total += amount
            return CounterState(total=entry.total, ttl_ms=self._ttl_ms(entry, now))

    async def peek(self, counter_key: str) -> CounterState | None:
        now = self._clock()
        with self._lock:
            entry = self._live_entry(counter_key, now)
            if entry is None:
                return None
            return CounterState(total=entry.total, ttl_ms=self._ttl_ms(entry, now))

    async def reset(self, counter_key: str) -> None:
        with self._lock:
            self._entries.pop(counter_key, None)
