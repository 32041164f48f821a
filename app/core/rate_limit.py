"""Rate limiting dependencies for FastAPI routes.

This module wires the rate limit store into the HTTP layer.

Design goals:
- Minimal coupling: routes depend on a dependency factory only.
- One store per application, owned by the app factory and reachable via
  ``app.state``; nothing here holds module-level limiter state.
- Safe defaults: the quota comes from settings unless a route overrides it.

Rate limiting strategy:
- Fixed window per ``<namespace>:<client address>`` key.
- Client address from X-Forwarded-For / X-Real-IP when trusted, else the
  socket peer, else "anonymous".
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from fastapi import HTTPException, Request, Response, status

from app.adapters.rate_limit.base import RateLimitConfig, RateLimitResult, RateLimitStore
from app.adapters.rate_limit.in_memory import hash_key
from app.core.config import settings

logger = logging.getLogger(__name__)

ANONYMOUS_CLIENT = "anonymous"


def get_rate_limit_store(request: Request) -> RateLimitStore:
    """Return the store owned by the running application."""

    return request.app.state.rate_limit_store


def default_rate_limit_config() -> RateLimitConfig:
    """Build the default quota from settings."""

    return RateLimitConfig(
        window_ms=settings.app.rate_limit_window_ms,
        max_requests=settings.app.rate_limit_max_requests,
    )


def resolve_client_address(request: Request) -> str:
    """Derive the client address used as the rate limit identity.

    Args:
        request: FastAPI request.

    Returns:
        str: First X-Forwarded-For hop, X-Real-IP, peer host or "anonymous".
    """

    if settings.app.rate_limit_trust_forwarded_headers:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            first_hop = forwarded_for.split(",")[0].strip()
            if first_hop:
                return first_hop

        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip:
            return real_ip

    if request.client and request.client.host:
        return request.client.host
    return ANONYMOUS_CLIENT


def build_rate_limit_key(namespace: str, request: Request) -> str:
    """Namespace the client address so routes keep separate quotas."""

    return f"{namespace}:{resolve_client_address(request)}"


def build_rate_limit_headers(result: RateLimitResult, config: RateLimitConfig) -> dict[str, str]:
    """Render X-RateLimit-* and Retry-After headers for a check result."""

    headers = {
        "X-RateLimit-Limit": str(config.max_requests),
        "X-RateLimit-Remaining": str(result.remaining_requests),
        "X-RateLimit-Reset": str(result.retry_after_seconds),
    }
    if not result.allowed:
        headers["Retry-After"] = str(result.retry_after_seconds)
    return headers


def rate_limit(
    namespace: str,
    config: RateLimitConfig | None = None,
) -> Callable[[Request, Response], Awaitable[RateLimitResult | None]]:
    """Create a FastAPI dependency enforcing a fixed-window quota.

    Usage:
        @router.get("/things", dependencies=[Depends(rate_limit("things"))])

    Args:
        namespace: Prefix separating this route's quota from other routes.
        config: Quota for this route; defaults to the settings quota.

    Returns:
        Async dependency raising HTTP 429 when the caller is over quota.
    """

    async def enforce_rate_limit(request: Request, response: Response) -> RateLimitResult | None:
        if not settings.app.rate_limit_enabled:
            return None

        effective = config or default_rate_limit_config()
        store = get_rate_limit_store(request)
        key = build_rate_limit_key(namespace, request)

        result = store.check(key, effective)
        log_fields = {
            "namespace": namespace,
            "key_hash": hash_key(key),
            "limit": effective.max_requests,
            "remaining": result.remaining_requests,
            "window_ms": effective.window_ms,
            "reset_in_ms": result.reset_in,
        }

        include_headers = settings.app.rate_limit_include_headers
        if result.allowed:
            logger.info("rate_limit.allowed", extra=log_fields)
            if include_headers:
                response.headers.update(build_rate_limit_headers(result, effective))
            return result

        logger.warning(
            "rate_limit.exceeded",
            extra={**log_fields, "retry_after_s": result.retry_after_seconds},
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Please try again later.",
            headers=build_rate_limit_headers(result, effective) if include_headers else None,
        )

    return enforce_rate_limit
