from __future__ import annotations

from fastapi import APIRouter, Depends

from app.adapters.rate_limit.base import RateLimitConfig, RateLimitStore
from app.core.rate_limit import default_rate_limit_config, get_rate_limit_store, rate_limit
from app.schemas.rate_limit import (
    RateLimitCheckRequest,
    RateLimitCheckResponse,
    RateLimitStatsResponse,
)

router = APIRouter(prefix="/rate-limit", tags=["Rate limit"])

# Explicit keys live under their own prefix so they can never collide with
# the "<namespace>:<client>" keys built by rate_limit().
EXPLICIT_KEY_PREFIX = "explicit:"


def explicit_store_key(key: str) -> str:
    return f"{EXPLICIT_KEY_PREFIX}{key}"


@router.post(
    "/check",
    response_model=RateLimitCheckResponse,
    dependencies=[Depends(rate_limit("check"))],
)
def check_rate_limit(
    body: RateLimitCheckRequest,
    store: RateLimitStore = Depends(get_rate_limit_store),
) -> RateLimitCheckResponse:
    """Evaluate one request for an explicit caller key.

    Lets hosts that cannot embed the store delegate admission decisions.
    A rejection is a normal outcome and is returned with status 200 and
    ``allowed=false``; non-positive quotas surface as ``invalid_config``.
    The endpoint itself is throttled per client under the ``check``
    namespace.
    """

    defaults = default_rate_limit_config()
    config = RateLimitConfig(
        window_ms=defaults.window_ms if body.window_ms is None else body.window_ms,
        max_requests=defaults.max_requests if body.max_requests is None else body.max_requests,
    )
    result = store.check(explicit_store_key(body.key), config)
    return RateLimitCheckResponse(
        allowed=result.allowed,
        remaining_requests=result.remaining_requests,
        reset_in=result.reset_in,
        retry_after_seconds=result.retry_after_seconds,
    )


@router.get(
    "/stats",
    response_model=RateLimitStatsResponse,
    dependencies=[Depends(rate_limit("stats"))],
)
def rate_limit_stats(
    store: RateLimitStore = Depends(get_rate_limit_store),
) -> RateLimitStatsResponse:
    """Report store size and sweeper activity."""

    return RateLimitStatsResponse(**store.stats())
