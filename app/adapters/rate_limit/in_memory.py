"""In-memory fixed-window rate limit store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: a single lock guards the key -> window table.
- Windows are anchored to the first request of each cycle, not to clock
  boundaries.
- A daemon sweeper thread evicts expired windows so idle keys do not
  accumulate; admission decisions never depend on it having run.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from app.adapters.rate_limit.base import (
    DEFAULT_RATE_LIMIT_CONFIG,
    RateLimitConfig,
    RateLimitResult,
    RateLimitStore,
    WindowSnapshot,
)
from app.core.errors import InvalidConfigError

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0


def epoch_ms() -> int:
    """Wall-clock time as integer UNIX epoch milliseconds."""
    return int(time.time() * 1000)


def hash_key(key: str) -> str:
    """Hash a caller key for logging without exposing it."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


@dataclass
class _WindowEntry:
    count: int
    reset_at: int


def _validate_config(config: RateLimitConfig) -> None:
    for field in ("window_ms", "max_requests"):
        value = getattr(config, field)
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise InvalidConfigError.for_field(field, value)


class InMemoryRateLimitStore(RateLimitStore):
    """Rate limit store counting requests per key in fixed windows.

    The first check for a key opens a window of ``window_ms`` starting at
    that instant. Checks inside the window are admitted until
    ``max_requests`` is reached; further checks are rejected without
    consuming quota. The first check at or after the window end opens a
    fresh window.

    Important:
        The sweeper is started on construction and runs until ``close()`` is
        called. It is a daemon thread, so a forgotten store never keeps the
        interpreter alive.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], int] = epoch_ms,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        start_sweeper: bool = True,
    ) -> None:
        """Initialize the store.

        Args:
            clock: Time source returning UNIX epoch milliseconds.
            sweep_interval_seconds: Period between background sweeps.
            start_sweeper: Start the background sweeper immediately.

        Raises:
            ValueError: If sweep_interval_seconds is not positive.
        """
        if sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")

        self._clock = clock
        self._sweep_interval = sweep_interval_seconds
        self._lock = threading.RLock()
        self._entries: dict[str, _WindowEntry] = {}
        self._sweeps = 0
        self._evictions = 0

        self._stop = threading.Event()
        # Guards start/close only; never held while taking _lock
        self._lifecycle_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        if start_sweeper:
            self.start()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __enter__(self) -> "InMemoryRateLimitStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryRateLimitStore(entries={len(self)}, "
            f"sweep_interval_seconds={self._sweep_interval}, "
            f"sweeper_running={self.sweeper_running})"
        )

    def check(self, key: str, config: RateLimitConfig = DEFAULT_RATE_LIMIT_CONFIG) -> RateLimitResult:
        """Admit or reject one request for ``key``.

        Args:
            key: Opaque, non-empty caller identifier.
            config: Window length and quota.

        Returns:
            RateLimitResult with the decision, remaining quota and ms until
            the window resets.

        Raises:
            InvalidConfigError: If window_ms or max_requests is not positive.
            ValueError: If key is empty.
        """
        _validate_config(config)
        if not key:
            raise ValueError("key must be a non-empty string")

        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)

            if entry is None or entry.reset_at <= now:
                self._entries[key] = _WindowEntry(count=1, reset_at=now + config.window_ms)
                return RateLimitResult(
                    allowed=True,
                    remaining_requests=config.max_requests - 1,
                    reset_in=config.window_ms,
                )

            reset_in = entry.reset_at - now
            if entry.count >= config.max_requests:
                return RateLimitResult(allowed=False, remaining_requests=0, reset_in=reset_in)

            entry.count += 1
            return RateLimitResult(
                allowed=True,
                remaining_requests=max(0, config.max_requests - entry.count),
                reset_in=reset_in,
            )

    def sweep(self) -> int:
        """Evict every window whose reset time has passed.

        Returns:
            Number of keys evicted.
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.reset_at <= now]
            for key in expired:
                del self._entries[key]
            self._sweeps += 1
            self._evictions += len(expired)
            remaining = len(self._entries)

        if expired:
            logger.debug(
                "rate_limit.sweep",
                extra={"evicted": len(expired), "entries": remaining},
            )
        return len(expired)

    def peek(self, key: str) -> WindowSnapshot | None:
        """Return a copy of the window state for ``key``, if any."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            return WindowSnapshot(count=entry.count, reset_at=entry.reset_at)

    def reset(self, key: str | None = None) -> None:
        """Forget one key, or every key when ``key`` is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def stats(self) -> dict[str, Any]:
        """Return store metrics without exposing keys."""
        with self._lock:
            return {
                "entries": len(self._entries),
                "sweep_interval_seconds": self._sweep_interval,
                "sweeper_running": self.sweeper_running,
                "sweeps": self._sweeps,
                "evictions": self._evictions,
            }

    @property
    def sweeper_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background sweeper if it is not already running."""
        with self._lifecycle_lock:
            if self.sweeper_running:
                return
            self._stop.clear()
            thread = threading.Thread(
                target=self._sweep_loop, daemon=True, name="rate-limit-sweeper"
            )
            thread.start()
            self._thread = thread
        logger.info(
            "rate_limit.sweeper_started",
            extra={"sweep_interval_s": self._sweep_interval},
        )

    def close(self) -> None:
        """Stop the background sweeper and wait for it to exit."""
        with self._lifecycle_lock:
            thread = self._thread
            if thread is None:
                return
            self._stop.set()
            if thread is not threading.current_thread():
                thread.join(timeout=self._sweep_interval + 1.0)
                if thread.is_alive():
                    # Keep the reference so start() does not spawn a second sweeper
                    logger.warning("rate_limit.sweeper_stop_timeout")
                    return
            self._thread = None
        logger.info("rate_limit.sweeper_stopped")

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self._sweep_interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("rate_limit.sweep_failed")
