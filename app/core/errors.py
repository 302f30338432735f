"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep shapes consistent across error types without
    forcing every error to fill all of them.
    """

    code: str
    message: str
    hint: str
    limit: int
    remaining_points: int
    consumed_points: int
    ms_before_next: int
    retry_after: float
    backend: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class RateLimitExceededError(AppError):
    """Raised when a consume would push a key over its budget.

    The counter is left untouched, so ``remaining_points`` is the value
    observed before the rejected attempt.
    """

    def __init__(
        self,
        *,
        limit: int,
        remaining_points: int,
        consumed_points: int,
        ms_before_next: int,
    ) -> None:
        self.limit = limit
        self.remaining_points = remaining_points
        self.consumed_points = consumed_points
        self.ms_before_next = ms_before_next
        super().__init__(
            code="rate_limit_exceeded",
            message="Rate limit exceeded. Try again later.",
            details={
                "limit": limit,
                "remaining_points": remaining_points,
                "consumed_points": consumed_points,
                "ms_before_next": ms_before_next,
                "retry_after": ms_before_next / 1000,
            },
        )

    @property
    def retry_after_seconds(self) -> int:
        """Whole seconds until the window resets, rounded up."""
        return max(0, math.ceil(self.ms_before_next / 1000))


class StoreUnavailableError(AppError):
    """Raised when the counter store is unreachable, disconnected or too slow."""


class InvalidConfigurationError(AppError):
    """Raised when limiter configuration is invalid (startup-time only)."""
