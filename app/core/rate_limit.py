"""Process-wide limiter registry and FastAPI wiring.

This module is the composition root for rate limiting:

- Builds the limiter registry from settings and keeps one per process.
- Owns the counter store connection lifecycle (connect at startup,
  disconnect at shutdown).
- Exposes ``get_rate_limiter`` for in-process callers and
  ``rate_limit_dependency`` for FastAPI routes.

Keying strategy for the HTTP dependency:
- Per API key when the X-API-Key header is present.
- Otherwise per client IP.
"""

from __future__ import annotations

import logging
import math
from typing import Annotated, Awaitable, Callable

from fastapi import Header, HTTPException, Request, Response, status

from app.adapters.counter_store.factory import create_counter_store
from app.core.config import RateLimitSettings, settings
from app.core.errors import RateLimitExceededError, StoreUnavailableError
from app.core.logging import hash_key
from app.services.limiter_config import LimiterConfig, Plan, RateLimiterMode
from app.services.limiter_registry import LimiterRegistry
from app.services.rate_limiter import ConsumeResult, RateLimiter

logger = logging.getLogger(__name__)

# Resolves the subscription plan of the caller behind a request.
PlanResolver = Callable[[Request], Awaitable[Plan | str | None]]


_registry: LimiterRegistry | None = None


def build_limiter_registry(rate_limit_settings: RateLimitSettings | None = None) -> LimiterRegistry:
    """Build a registry (and its counter store) from settings.

    Args:
        rate_limit_settings: Optional settings; defaults to global settings.

    Returns:
        LimiterRegistry: New registry with a not-yet-connected store.
    """

    cfg = rate_limit_settings or settings.rate_limit
    return LimiterRegistry(
        create_counter_store(cfg),
        test_token_markers=cfg.test_suite_token_markers,
        test_suite_limit=LimiterConfig(
            points=cfg.test_suite_points,
            duration=cfg.test_suite_duration_seconds,
        ),
        server_limit=LimiterConfig(
            points=cfg.server_points,
            duration=cfg.server_duration_seconds,
        ),
        namespace=cfg.namespace,
        timeout_seconds=cfg.store_timeout_seconds,
    )


def get_limiter_registry() -> LimiterRegistry:
    """Return the process-wide registry, building it on first use."""

    global _registry

    if _registry is None:
        _registry = build_limiter_registry()
    return _registry


def set_limiter_registry(registry: LimiterRegistry | None) -> None:
    """Replace the process-wide registry (None rebuilds it from settings)."""

    global _registry
    _registry = registry


def get_rate_limiter(
    mode: RateLimiterMode | str,
    token: str | None,
    plan: Plan | str | None = None,
) -> RateLimiter:
    """Return the limiter for a request from the process-wide registry."""

    return get_limiter_registry().get_rate_limiter(mode, token, plan)


async def connect_rate_limit_store() -> None:
    """Connect the process-wide counter store.

    Raises:
        StoreUnavailableError: If the store cannot be reached.
    """

    await get_limiter_registry().store.connect()


async def disconnect_rate_limit_store() -> None:
    """Disconnect the process-wide counter store, if one was built."""

    if _registry is not None:
        await _registry.store.disconnect()


def _build_rate_limit_key(request: Request, x_api_key: str | None) -> str:
    """Build the limiter key for the current request.

    Args:
        request: FastAPI request.
        x_api_key: API key value from the X-API-Key header.

    Returns:
        str: Namespaced limiter key.
    """

    if x_api_key:
        return f"api_key:{x_api_key}"

    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


def _rate_limit_headers(
    *,
    limit: int,
    remaining: int,
    ms_before_next: int,
    retry_after: int | None = None,
) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(math.ceil(max(0, ms_before_next) / 1000)),
    }
    if retry_after is not None:
        headers["Retry-After"] = str(retry_after)
    return headers


def rate_limit_dependency(
    mode: RateLimiterMode | str,
    *,
    points: int = 1,
    plan_resolver: PlanResolver | None = None,
) -> Callable[..., Awaitable[ConsumeResult | None]]:
    """Create a FastAPI dependency consuming ``points`` for ``mode``.

    Usage:
        @router.post("/scrape", dependencies=[Depends(rate_limit_dependency("scrape"))])

    Args:
        mode: Operation mode the route belongs to.
        points: Points consumed per request.
        plan_resolver: Looks up the caller's subscription plan, typically from
            the auth or billing layer. None (or a None result) selects the
            mode default. Never read the plan from client-controlled input.

    Returns:
        Dependency callable returning the ConsumeResult (None when disabled
        or when the store is down and fail-open is configured).
    """

    async def enforce_rate_limit(
        request: Request,
        response: Response,
        x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
    ) -> ConsumeResult | None:
        """Consume from the caller's budget or reject with HTTP 429.

        Raises:
            HTTPException: 429 when the budget is exhausted, 503 when the
                counter store is unavailable and fail-open is disabled.
        """

        cfg = settings.rate_limit
        if not cfg.enabled:
            return None

        plan = await plan_resolver(request) if plan_resolver is not None else None
        limiter = get_rate_limiter(mode, x_api_key, plan)
        key = _build_rate_limit_key(request, x_api_key)
        key_hash = hash_key(key)
        key_type = "api_key" if x_api_key else "ip"

        try:
            result = await limiter.consume(key, points)
        except RateLimitExceededError as exc:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "key_type": key_type,
                    "key_hash": key_hash,
                    "limiter": limiter.key_prefix,
                    "limit": exc.limit,
                    "remaining": exc.remaining_points,
                    "retry_after_s": exc.retry_after_seconds,
                },
            )
            headers = None
            if cfg.include_headers:
                headers = _rate_limit_headers(
                    limit=exc.limit,
                    remaining=exc.remaining_points,
                    ms_before_next=exc.ms_before_next,
                    retry_after=exc.retry_after_seconds,
                )
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Rate limit exceeded. Try again later.",
                headers=headers,
            ) from exc
        except StoreUnavailableError as exc:
            if cfg.fail_open:
                logger.warning(
                    "rate_limit.store_unavailable_fail_open",
                    extra={"limiter": limiter.key_prefix, "error_code": exc.code},
                )
                return None
            logger.error(
                "rate_limit.store_unavailable",
                extra={"limiter": limiter.key_prefix, "error_code": exc.code},
            )
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Rate limiting is temporarily unavailable.",
            ) from exc

        logger.info(
            "rate_limit.allowed",
            extra={
                "key_type": key_type,
                "key_hash": key_hash,
                "limiter": limiter.key_prefix,
                "limit": limiter.points,
                "remaining": result.remaining_points,
                "window_s": limiter.duration,
            },
        )
        if cfg.include_headers:
            response.headers.update(
                _rate_limit_headers(
                    limit=limiter.points,
                    remaining=result.remaining_points,
                    ms_before_next=result.ms_before_next,
                )
            )
        return result

    return enforce_rate_limit
