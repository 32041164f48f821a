"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets TESTING so no .env file is loaded, and provides a deterministic
clock and isolated stores/apps.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ.setdefault("APP_RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.core.app_factory import create_app


class FakeClock:
    """Deterministic millisecond clock; advanced explicitly by tests."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.current = start

    def __call__(self) -> int:
        return self.current

    def advance(self, ms: int) -> None:
        self.current += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> Iterator[InMemoryRateLimitStore]:
    """Store on a fake clock with the background sweeper disabled."""
    with InMemoryRateLimitStore(clock=clock, start_sweeper=False) as instance:
        yield instance


@pytest.fixture
def app(store: InMemoryRateLimitStore) -> FastAPI:
    return create_app(store=store)


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client
