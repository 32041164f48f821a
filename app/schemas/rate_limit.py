"""Pydantic schemas for the rate limit endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from app.core.config import settings


class RateLimitCheckRequest(BaseModel):
    """Request body for an explicit rate limit check.

    Upper bounds come from settings so a caller cannot park entries the
    sweeper would never reach. Lower bounds are left to the store, which
    reports non-positive values as ``invalid_config``.
    """

    key: str = Field(
        ..., min_length=1, max_length=256, description="Opaque caller identifier to evaluate."
    )
    window_ms: int | None = Field(
        default=None,
        description="Window length in milliseconds (defaults to the configured window).",
    )
    max_requests: int | None = Field(
        default=None,
        description="Requests admitted per window (defaults to the configured quota).",
    )

    @field_validator("window_ms")
    @classmethod
    def _cap_window_ms(cls, value: int | None) -> int | None:
        cap = settings.app.rate_limit_max_window_ms
        if value is not None and value > cap:
            raise ValueError(f"window_ms must be <= {cap}")
        return value

    @field_validator("max_requests")
    @classmethod
    def _cap_max_requests(cls, value: int | None) -> int | None:
        cap = settings.app.rate_limit_max_quota
        if value is not None and value > cap:
            raise ValueError(f"max_requests must be <= {cap}")
        return value


class RateLimitCheckResponse(BaseModel):
    """Decision returned by a rate limit check."""

    allowed: bool = Field(..., description="Whether the request was admitted.")
    remaining_requests: int = Field(
        ..., description="Quota left in the current window (0 when rejected)."
    )
    reset_in: int = Field(
        ..., description="Milliseconds until the current window ends."
    )
    retry_after_seconds: int = Field(
        ..., description="reset_in rounded up to whole seconds."
    )


class RateLimitStatsResponse(BaseModel):
    """Store metrics; never includes caller keys."""

    entries: int
    sweep_interval_seconds: float
    sweeper_running: bool
    sweeps: int
    evictions: int
