"""Shared fixtures for the Campus Guard test suite."""

import pytest

import campus_guard.ratelimit.factory as factory_mod
from campus_guard.config.settings import get_settings
from campus_guard.logging.audit import get_audit_logger
from campus_guard.ratelimit.limiter import RateLimiter
from campus_guard.ratelimit.models import SLIDING_WINDOW, TOKEN_BUCKET, RateLimitOptions
from campus_guard.ratelimit.store import InMemoryRateLimitStore


class ManualClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store() -> InMemoryRateLimitStore:
    return InMemoryRateLimitStore()


@pytest.fixture
def limiter(store, clock) -> RateLimiter:
    """Limiter whose monotonic and wall clocks are the same manual clock."""
    return RateLimiter(store, clock=clock, wall_clock=clock)


@pytest.fixture
def bucket_options() -> RateLimitOptions:
    return RateLimitOptions(window_ms=60_000, limit=10, algorithm=TOKEN_BUCKET)


@pytest.fixture
def window_options() -> RateLimitOptions:
    return RateLimitOptions(window_ms=1_000, limit=3, algorithm=SLIDING_WINDOW)


@pytest.fixture
def reset_singletons(monkeypatch):
    """Reset the rate limiter factory singletons around a test."""
    for name in ("_store", "_limiter", "_sweeper"):
        monkeypatch.setattr(factory_mod, name, None)
    yield
    for name in ("_store", "_limiter", "_sweeper"):
        monkeypatch.setattr(factory_mod, name, None)


@pytest.fixture
def override_settings(monkeypatch):
    """Factory fixture: set env vars and clear settings cache.

    Usage:
        override_settings(RATE_LIMIT_LIMIT="5", RATE_LIMIT_FAIL_MODE="closed")
    """
    def _override(**kwargs):
        for key, value in kwargs.items():
            monkeypatch.setenv(key.upper(), str(value))
        # Clear lru_cache so Settings re-reads env
        get_settings.cache_clear()

    yield _override

    # Always clear cache on teardown so other tests get fresh settings
    get_settings.cache_clear()


@pytest.fixture
def restore_audit_logger():
    """Drop handlers bound to pytest's captured stdout after the test."""
    yield
    logger = get_audit_logger()
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    logger.propagate = True
