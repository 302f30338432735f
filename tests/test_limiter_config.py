"""Unit tests for the mode/plan rate limit table."""

from types import MappingProxyType

import pytest

from app.core.errors import InvalidConfigurationError
from app.services.limiter_config import (
    GLOBAL_DEFAULT_LIMIT,
    RATE_LIMITS,
    LimiterConfig,
    ModeLimits,
    Plan,
    RateLimiterMode,
    parse_mode,
    parse_plan,
    resolve_config,
    resolve_points,
    validate_table,
)


@pytest.mark.parametrize(
    ("mode", "plan", "expected"),
    [
        ("crawl", "free", 2),
        ("crawl", "starter", 3),
        ("crawl", "standard", 5),
        ("crawl", None, 3),
        ("scrape", "free", 5),
        ("scrape", "hobby", 10),
        ("scrape", "starter", 20),
        ("scrape", "standard", 50),
        ("scrape", None, 20),
        ("search", "free", 5),
        ("search", "starter", 20),
        ("search", "standard", 40),
        ("search", "growth", 500),
        ("preview", "free", 5),
        ("preview", None, 5),
        ("account", "free", 100),
        ("account", None, 100),
        ("crawlStatus", "free", 150),
        ("crawlStatus", "growth", 150),
        ("crawlStatus", None, 150),
        ("testSuite", "free", 10000),
        ("testSuite", None, 10000),
    ],
)
def test_resolve_config_matches_table(mode: str, plan: str | None, expected: int) -> None:
    config = resolve_config(mode, plan)

    assert config.points == expected
    assert config.duration == 60


def test_plan_without_override_falls_back_to_mode_default() -> None:
    assert resolve_points("crawl", "hobby") == 3
    assert resolve_points("crawl", "growth") == 3
    assert resolve_points("preview", "standard") == 5


def test_unrecognized_plan_falls_back_to_mode_default() -> None:
    assert resolve_points("scrape", "enterprise") == 20
    assert resolve_points("scrape", "") == 20


def test_plan_names_are_case_insensitive() -> None:
    assert resolve_points("scrape", "Standard") == 50
    assert resolve_points(RateLimiterMode.SEARCH, Plan.GROWTH) == 500


def test_unknown_mode_uses_global_default() -> None:
    assert resolve_config("nonexistent") is GLOBAL_DEFAULT_LIMIT


def test_mode_missing_from_table_uses_global_default() -> None:
    table = {RateLimiterMode.CRAWL: ModeLimits(default=LimiterConfig(points=1))}

    assert resolve_config("scrape", "free", table) is GLOBAL_DEFAULT_LIMIT


def test_parse_mode_and_plan_never_raise() -> None:
    assert parse_mode("crawlStatus") is RateLimiterMode.CRAWL_STATUS
    assert parse_mode("CRAWL") is None
    assert parse_mode(None) is None
    assert parse_plan(None) is None
    assert parse_plan(" hobby ") is Plan.HOBBY
    assert parse_plan("platinum") is None


def test_plans_are_monotonic_within_each_mode() -> None:
    order = list(Plan)
    for limits in RATE_LIMITS.values():
        points = [limits.for_plan(plan).points for plan in order if plan in limits.plans]
        assert points == sorted(points)


def test_table_is_immutable() -> None:
    assert isinstance(RATE_LIMITS, MappingProxyType)
    with pytest.raises(TypeError):
        RATE_LIMITS[RateLimiterMode.CRAWL] = ModeLimits(default=LimiterConfig(points=1))  # type: ignore[index]
    with pytest.raises(TypeError):
        RATE_LIMITS[RateLimiterMode.CRAWL].plans[Plan.FREE] = LimiterConfig(points=1)  # type: ignore[index]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"points": 0},
        {"points": -5},
        {"points": 10, "duration": 0},
        {"points": True},
        {"points": 1.5},
    ],
)
def test_invalid_limiter_config(kwargs: dict) -> None:
    with pytest.raises(InvalidConfigurationError):
        LimiterConfig(**kwargs)


def test_validate_table_accepts_builtin_table() -> None:
    validate_table(RATE_LIMITS)


def test_validate_table_rejects_missing_mode() -> None:
    table = dict(RATE_LIMITS)
    del table[RateLimiterMode.PREVIEW]

    with pytest.raises(InvalidConfigurationError) as exc_info:
        validate_table(table)

    assert exc_info.value.code == "rate_limit_table_incomplete"
    assert "preview" in exc_info.value.message
