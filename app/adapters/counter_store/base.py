"""Counter store interfaces.

Limiters depend on this abstraction (not the concrete implementation) so the
same accounting runs against Redis in production and an in-process store in
tests or single-worker deployments.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class CounterState:
    """Snapshot of one counter entry.

    Attributes:
        total: Units consumed in the active window.
        ttl_ms: Milliseconds until the entry expires (0 when unknown/absent).
        applied: Whether the increment that produced this state was committed.
    """

    total: int
    ttl_ms: int
    applied: bool = True


class AbstractCounterStore(ABC):
    """Interface for atomic, expiring counters.

    Every operation is a single atomic step at the store level. Callers never
    combine a read with a later write.
    """

    @abstractmethod
    async def increment(
        self,
        counter_key: str,
        amount: int,
        ttl_seconds: int,
        *,
        max_total: int | None = None,
    ) -> CounterState:
        """Atomically add ``amount`` to a counter.

        The entry is created with ``ttl_seconds`` when absent; an existing
        entry keeps its original expiry (fixed window).

        Args:
            counter_key: Fully namespaced counter key.
            amount: Units to add (>= 1).
            ttl_seconds: Expiry applied only when the entry is created.
            max_total: When given, the increment is skipped if the new total
                would exceed it; the returned state then has ``applied=False``
                and reflects the untouched counter.

        Returns:
            CounterState after the operation.

        Raises:
            StoreUnavailableError: If the store cannot be reached.
        """
        raise NotImplementedError

    @abstractmethod
    async def peek(self, counter_key: str) -> CounterState | None:
        """Return the current state of a counter without mutating it."""
        raise NotImplementedError

    @abstractmethod
    async def reset(self, counter_key: str) -> None:
        """Delete a counter so its next increment opens a fresh window."""
        raise NotImplementedError

    async def connect(self) -> None:
        """Open the underlying connection (no-op for in-process stores)."""

    async def disconnect(self) -> None:
        """Close the underlying connection (no-op for in-process stores)."""

    async def ping(self) -> bool:
        """Return True when the store is reachable."""
        return True
