"""Static rate limit table keyed by operation mode and subscription plan.

Each mode has a default budget plus optional per-plan overrides. The table is
immutable and built once at import; the registry receives it explicitly so
tests can substitute their own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from app.core.errors import InvalidConfigurationError

DEFAULT_DURATION_SECONDS = 60


class RateLimiterMode(str, Enum):
    """Category of API operation being limited."""

    CRAWL = "crawl"
    SCRAPE = "scrape"
    SEARCH = "search"
    PREVIEW = "preview"
    ACCOUNT = "account"
    CRAWL_STATUS = "crawlStatus"
    TEST_SUITE = "testSuite"


class Plan(str, Enum):
    """Subscription tier, ordered from smallest to largest capacity."""

    FREE = "free"
    HOBBY = "hobby"
    STARTER = "starter"
    STANDARD = "standard"
    GROWTH = "growth"


@dataclass(frozen=True)
class LimiterConfig:
    """Budget of ``points`` per fixed window of ``duration`` seconds."""

    points: int
    duration: int = DEFAULT_DURATION_SECONDS

    def __post_init__(self) -> None:
        if isinstance(self.points, bool) or not isinstance(self.points, int) or self.points < 1:
            raise InvalidConfigurationError(
                code="invalid_limiter_points",
                message=f"points must be a positive integer, got {self.points!r}",
            )
        if isinstance(self.duration, bool) or not isinstance(self.duration, int) or self.duration < 1:
            raise InvalidConfigurationError(
                code="invalid_limiter_duration",
                message=f"duration must be a positive integer, got {self.duration!r}",
            )


@dataclass(frozen=True)
class ModeLimits:
    """Default budget for a mode plus per-plan overrides."""

    default: LimiterConfig
    plans: Mapping[Plan, LimiterConfig] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Freeze the overrides so the table has no mutation path.
        object.__setattr__(self, "plans", MappingProxyType(dict(self.plans)))

    def for_plan(self, plan: Plan | None) -> LimiterConfig:
        if plan is None:
            return self.default
        return self.plans.get(plan, self.default)


RateLimitTable = Mapping[RateLimiterMode, ModeLimits]


# Used when a mode has no row at all. The registry refuses to start with such
# a table, so this only matters for direct resolve_config() callers.
GLOBAL_DEFAULT_LIMIT = LimiterConfig(points=100)


def _limits(default: int, **plans: int) -> ModeLimits:
    return ModeLimits(
        default=LimiterConfig(points=default),
        plans={Plan(name): LimiterConfig(points=points) for name, points in plans.items()},
    )


RATE_LIMITS: RateLimitTable = MappingProxyType(
    {
        RateLimiterMode.CRAWL: _limits(3, free=2, starter=3, standard=5),
        RateLimiterMode.SCRAPE: _limits(20, free=5, hobby=10, starter=20, standard=50),
        # No plan-less search row upstream; starter is the closest equivalent.
        RateLimiterMode.SEARCH: _limits(20, free=5, starter=20, standard=40, growth=500),
        RateLimiterMode.PREVIEW: _limits(5, free=5),
        RateLimiterMode.ACCOUNT: _limits(100, free=100),
        RateLimiterMode.CRAWL_STATUS: _limits(150, free=150, growth=150),
        RateLimiterMode.TEST_SUITE: _limits(10000, free=10000),
    }
)


def parse_mode(value: RateLimiterMode | str | None) -> RateLimiterMode | None:
    """Return the matching mode, or None for anything unrecognized."""

    if isinstance(value, RateLimiterMode):
        return value
    try:
        return RateLimiterMode(value)
    except ValueError:
        return None


def parse_plan(value: Plan | str | None) -> Plan | None:
    """Return the matching plan, or None when absent or unrecognized.

    Plan names are matched case-insensitively since they usually come from
    billing records rather than code.
    """

    if value is None or isinstance(value, Plan):
        return value
    try:
        return Plan(str(value).strip().lower())
    except ValueError:
        return None


def resolve_config(
    mode: RateLimiterMode | str,
    plan: Plan | str | None = None,
    table: RateLimitTable = RATE_LIMITS,
) -> LimiterConfig:
    """Resolve the limiter configuration for a mode and plan.

    Falls back to the mode default when the plan is missing or has no
    override, and to ``GLOBAL_DEFAULT_LIMIT`` when the mode has no row.

    Args:
        mode: Operation mode.
        plan: Subscription plan, if known.
        table: Rate limit table to consult.

    Returns:
        LimiterConfig: Always a usable configuration.
    """

    parsed_mode = parse_mode(mode)
    limits = table.get(parsed_mode) if parsed_mode is not None else None
    if limits is None:
        return GLOBAL_DEFAULT_LIMIT
    return limits.for_plan(parse_plan(plan))


def resolve_points(
    mode: RateLimiterMode | str,
    plan: Plan | str | None = None,
    table: RateLimitTable = RATE_LIMITS,
) -> int:
    """Shortcut for ``resolve_config(...).points``."""

    return resolve_config(mode, plan, table).points


def validate_table(table: RateLimitTable) -> None:
    """Ensure every known mode has a row.

    Raises:
        InvalidConfigurationError: If a mode is missing or a row is malformed.
    """

    missing = [mode.value for mode in RateLimiterMode if mode not in table]
    if missing:
        raise InvalidConfigurationError(
            code="rate_limit_table_incomplete",
            message=f"No rate limits configured for modes: {', '.join(missing)}",
        )

    for mode, limits in table.items():
        if not isinstance(limits, ModeLimits):
            raise InvalidConfigurationError(
                code="rate_limit_table_invalid",
                message=f"Rate limits for mode '{mode}' must be ModeLimits",
            )
