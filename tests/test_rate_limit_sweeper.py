"""Tests for expiry sweeping, sweeper lifecycle and concurrent access."""

import threading
import time

from app.adapters.rate_limit.base import RateLimitConfig
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore


def _wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_sweep_evicts_only_expired_windows(store, clock) -> None:
    store.check("short", RateLimitConfig(window_ms=1_000, max_requests=5))
    store.check("long", RateLimitConfig(window_ms=10_000, max_requests=5))

    clock.advance(1_000)
    evicted = store.sweep()

    assert evicted == 1
    assert store.peek("short") is None
    assert store.peek("long") is not None


def test_sweep_on_empty_store(store) -> None:
    assert store.sweep() == 0
    assert store.stats()["sweeps"] == 1


def test_stats_track_sweeps_and_evictions(store, clock) -> None:
    for key in ("a", "b", "c"):
        store.check(key, RateLimitConfig(window_ms=100, max_requests=1))
    clock.advance(100)
    store.sweep()

    stats = store.stats()
    assert stats["entries"] == 0
    assert stats["sweeps"] == 1
    assert stats["evictions"] == 3
    assert stats["sweeper_running"] is False


def test_swept_key_starts_a_fresh_window(store, clock) -> None:
    config = RateLimitConfig(window_ms=1_000, max_requests=2)
    store.check("k", config)
    store.check("k", config)

    clock.advance(1_500)
    store.sweep()
    result = store.check("k", config)

    assert result.allowed is True
    assert result.remaining_requests == 1
    assert result.reset_in == 1_000


def test_sweeper_starts_on_construction_and_stops_on_close(clock) -> None:
    store = InMemoryRateLimitStore(clock=clock, sweep_interval_seconds=30)
    try:
        assert store.sweeper_running is True
        assert store._thread.daemon is True
    finally:
        store.close()

    assert store.sweeper_running is False
    # Closing twice is harmless
    store.close()


def test_context_manager_stops_sweeper(clock) -> None:
    with InMemoryRateLimitStore(clock=clock, sweep_interval_seconds=30) as store:
        assert store.sweeper_running is True
    assert store.sweeper_running is False


def test_background_sweeper_evicts_idle_keys(clock) -> None:
    with InMemoryRateLimitStore(clock=clock, sweep_interval_seconds=0.01) as store:
        store.check("idle", RateLimitConfig(window_ms=500, max_requests=1))
        clock.advance(500)

        assert _wait_until(lambda: len(store) == 0)
        assert store.stats()["evictions"] == 1


def test_concurrent_checks_do_not_lose_updates(store) -> None:
    workers = 50
    config = RateLimitConfig(window_ms=60_000, max_requests=workers)
    barrier = threading.Barrier(workers)
    results = []
    results_lock = threading.Lock()

    def _worker() -> None:
        barrier.wait()
        result = store.check("shared", config)
        with results_lock:
            results.append(result)

    threads = [threading.Thread(target=_worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert all(r.allowed for r in results)
    assert store.peek("shared").count == workers
    assert sorted(r.remaining_requests for r in results) == list(range(workers))


def test_concurrent_checks_never_exceed_quota(store) -> None:
    workers = 40
    config = RateLimitConfig(window_ms=60_000, max_requests=7)
    barrier = threading.Barrier(workers)
    admitted = []

    def _worker() -> None:
        barrier.wait()
        if store.check("shared", config).allowed:
            admitted.append(1)

    threads = [threading.Thread(target=_worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(admitted) == 7
    assert store.peek("shared").count == 7


def test_sweep_running_alongside_checks_keeps_counts_exact(clock) -> None:
    config = RateLimitConfig(window_ms=60_000, max_requests=100)
    checks_per_worker = 20
    workers = 5

    with InMemoryRateLimitStore(clock=clock, sweep_interval_seconds=0.001) as store:
        # Expired neighbours give the sweeper real work during the run
        for i in range(200):
            store.check(f"stale-{i}", RateLimitConfig(window_ms=1, max_requests=1))
        clock.advance(1)

        results = []
        results_lock = threading.Lock()

        def _worker() -> None:
            for _ in range(checks_per_worker):
                result = store.check("hot", config)
                with results_lock:
                    results.append(result)

        threads = [threading.Thread(target=_worker) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(r.allowed and r.remaining_requests >= 0 and r.reset_in > 0 for r in results)
        assert store.peek("hot").count == workers * checks_per_worker
        assert _wait_until(lambda: all(store.peek(f"stale-{i}") is None for i in range(200)))


def _sweeper_threads() -> int:
    return sum(1 for t in threading.enumerate() if t.name == "rate-limit-sweeper")


def test_concurrent_start_spawns_a_single_sweeper(clock) -> None:
    store = InMemoryRateLimitStore(clock=clock, sweep_interval_seconds=30, start_sweeper=False)
    before = _sweeper_threads()
    starters = 20
    barrier = threading.Barrier(starters)

    def _starter() -> None:
        barrier.wait()
        store.start()

    threads = [threading.Thread(target=_starter) for _ in range(starters)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    try:
        assert store.sweeper_running is True
        assert _sweeper_threads() - before == 1
    finally:
        store.close()

    assert store.sweeper_running is False
    assert _sweeper_threads() == before


def test_close_can_be_called_concurrently(clock) -> None:
    store = InMemoryRateLimitStore(clock=clock, sweep_interval_seconds=30)
    closers = [threading.Thread(target=store.close) for _ in range(10)]
    for t in closers:
        t.start()
    for t in closers:
        t.join()

    assert store.sweeper_running is False
    assert store._thread is None
