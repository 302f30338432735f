"""Selection of the limiter that applies to a request.

The registry owns every limiter for its lifetime: one per (mode, plan) built
lazily from the rate limit table, plus two fixed ones:

- the test-suite limiter, chosen for any token carrying a test marker, with a
  large budget and its own key namespace so test traffic never touches
  production counters;
- the server limiter, chosen for unrecognized modes, with a conservative
  generic budget.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Iterable, Mapping

from app.adapters.counter_store.base import AbstractCounterStore
from app.services.limiter_config import (
    RATE_LIMITS,
    LimiterConfig,
    Plan,
    RateLimiterMode,
    RateLimitTable,
    parse_mode,
    parse_plan,
    resolve_config,
    validate_table,
)
from app.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

TEST_SUITE_KEY_PREFIX = "test-suite"
SERVER_KEY_PREFIX = "server"
DEFAULT_PLAN_KEY = "default"

DEFAULT_TEST_SUITE_LIMIT = LimiterConfig(points=10000)
DEFAULT_SERVER_LIMIT = LimiterConfig(points=100)


class LimiterRegistry:
    """Builds, caches and selects rate limiters.

    Attributes:
        table: Rate limit table the per-mode limiters are built from.
    """

    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        table: RateLimitTable = RATE_LIMITS,
        test_token_markers: Iterable[str] = (),
        test_suite_limit: LimiterConfig = DEFAULT_TEST_SUITE_LIMIT,
        server_limit: LimiterConfig = DEFAULT_SERVER_LIMIT,
        namespace: str = "rate-limit",
        timeout_seconds: float | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            store: Counter store shared by every limiter.
            table: Mode/plan rate limit table.
            test_token_markers: Substrings identifying test-suite tokens.
            test_suite_limit: Budget of the test-suite limiter.
            server_limit: Budget of the fallback limiter for unknown modes.
            namespace: Global counter key prefix.
            timeout_seconds: Per-call store timeout passed to each limiter.

        Raises:
            InvalidConfigurationError: If the table lacks a row for a known mode.
        """
        validate_table(table)

        self.table = table
        self._store = store
        self._namespace = namespace
        self._timeout = timeout_seconds
        self._test_token_markers = tuple(marker for marker in test_token_markers if marker)
        self._limiters: dict[tuple[RateLimiterMode, str], RateLimiter] = {}

        self._test_suite_limiter = self._build(test_suite_limit, TEST_SUITE_KEY_PREFIX)
        self._server_limiter = self._build(server_limit, SERVER_KEY_PREFIX)

    def _build(self, config: LimiterConfig, key_prefix: str) -> RateLimiter:
        return RateLimiter(
            self._store,
            config,
            key_prefix=key_prefix,
            namespace=self._namespace,
            timeout_seconds=self._timeout,
        )

    @property
    def store(self) -> AbstractCounterStore:
        return self._store

    @property
    def test_suite_limiter(self) -> RateLimiter:
        return self._test_suite_limiter

    @property
    def server_limiter(self) -> RateLimiter:
        return self._server_limiter

    def cached_limiters(self) -> Mapping[tuple[RateLimiterMode, str], RateLimiter]:
        """Read-only view of the per-(mode, plan) limiters built so far."""
        return MappingProxyType(self._limiters)

    def is_test_suite_token(self, token: str | None) -> bool:
        """Return True when the token carries a reserved test marker."""
        if not token:
            return False
        return any(marker in token for marker in self._test_token_markers)

    def get_rate_limiter(
        self,
        mode: RateLimiterMode | str,
        token: str | None,
        plan: Plan | str | None = None,
    ) -> RateLimiter:
        """Return the limiter that applies to a request.

        Precedence: test-suite token, then unknown mode, then the (mode, plan)
        limiter. Plans that are missing or unrecognized share the mode's
        ``default`` limiter.

        Args:
            mode: Operation mode; any string is accepted.
            token: Caller token used for the test-suite check.
            plan: Subscription plan, if known.

        Returns:
            RateLimiter: Never raises.
        """
        if self.is_test_suite_token(token):
            return self._test_suite_limiter

        parsed_mode = parse_mode(mode)
        if parsed_mode is None:
            return self._server_limiter

        parsed_plan = parse_plan(plan)
        plan_key = parsed_plan.value if parsed_plan is not None else DEFAULT_PLAN_KEY
        cache_key = (parsed_mode, plan_key)

        limiter = self._limiters.get(cache_key)
        if limiter is None:
            config = resolve_config(parsed_mode, parsed_plan, self.table)
            limiter = self._build(config, f"{parsed_mode.value}-{plan_key}")
            # setdefault keeps the first instance if two callers race here
            limiter = self._limiters.setdefault(cache_key, limiter)
            logger.debug(
                "limiter_registry.created",
                extra={
                    "mode": parsed_mode.value,
                    "plan": plan_key,
                    "points": config.points,
                    "duration_s": config.duration,
                },
            )
        return limiter
