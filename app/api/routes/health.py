from __future__ import annotations

from fastapi import APIRouter, Depends

from app.adapters.rate_limit.base import RateLimitStore
from app.core.rate_limit import get_rate_limit_store

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(store: RateLimitStore = Depends(get_rate_limit_store)) -> dict:
    """Liveness check, never throttled.

    Returns:
        dict: ``status`` set to "ok" plus whether the expiry sweeper is alive.
    """

    return {"status": "ok", "sweeper_running": bool(store.stats()["sweeper_running"])}
