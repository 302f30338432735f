"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It pins the environment so settings never reach for a real Redis or a
developer's .env file.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("RATE_LIMIT_STORE_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("RATE_LIMIT_FAIL_OPEN", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402

from app.adapters.counter_store.in_memory import InMemoryCounterStore  # noqa: E402
from app.services.limiter_registry import LimiterRegistry  # noqa: E402

TEST_SUITE_MARKERS = ("a01ccae", "6254cf9", "0f96e673", "23befa1b", "69141c4")


@pytest.fixture
def clock() -> Mock:
    """Controllable time source; advance by changing ``return_value``."""
    return Mock(return_value=1000.0)


@pytest.fixture
def store(clock: Mock) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def registry(store: InMemoryCounterStore) -> LimiterRegistry:
    return LimiterRegistry(store, test_token_markers=TEST_SUITE_MARKERS)
