"""Rate limit store interfaces and value types.

The HTTP layer depends on this abstraction (not the concrete implementation)
so the storage backend can be swapped later without touching the routes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class RateLimitConfig:
    """Fixed-window quota supplied by the caller on every check.

    Attributes:
        window_ms: Length of the fixed window in milliseconds.
        max_requests: Number of requests admitted per window.
    """

    window_ms: int
    max_requests: int


DEFAULT_RATE_LIMIT_CONFIG = RateLimitConfig(window_ms=60_000, max_requests=10)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a single check.

    Attributes:
        allowed: Whether the request may proceed.
        remaining_requests: Quota left in the current window (0 when blocked).
        reset_in: Milliseconds until the current window ends.
    """

    allowed: bool
    remaining_requests: int
    reset_in: int

    @property
    def retry_after_seconds(self) -> int:
        """Whole seconds a blocked caller should wait (rounded up)."""
        return -(-self.reset_in // 1000)


@dataclass(frozen=True)
class WindowSnapshot:
    """Read-only copy of a key's window state."""

    count: int
    reset_at: int


class RateLimitStore(ABC):
    """Interface for per-key fixed-window rate limit stores."""

    @abstractmethod
    def check(self, key: str, config: RateLimitConfig = DEFAULT_RATE_LIMIT_CONFIG) -> RateLimitResult:
        """Admit or reject one request for ``key``.

        Args:
            key: Opaque, non-empty caller identifier (IP, user id, ...).
            config: Window length and quota to evaluate against.

        Returns:
            RateLimitResult describing whether the request was admitted.

        Raises:
            InvalidConfigError: If the config carries non-positive values.
        """
        raise NotImplementedError

    @abstractmethod
    def stats(self) -> dict[str, Any]:
        """Return store metrics without exposing caller keys."""
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Release background resources owned by the store."""
        raise NotImplementedError
