"""Process-wide rate limiter singletons."""

from campus_guard.config.settings import get_settings
from campus_guard.ratelimit.limiter import RateLimiter
from campus_guard.ratelimit.store import InMemoryRateLimitStore, RateLimitStore
from campus_guard.ratelimit.sweeper import StoreSweeper

_store: RateLimitStore | None = None
_limiter: RateLimiter | None = None
_sweeper: StoreSweeper | None = None


def get_rate_limit_store() -> RateLimitStore:
    """Get the store singleton (in-memory; single process only)."""
    global _store
    if _store is None:
        _store = InMemoryRateLimitStore()
    return _store


def get_rate_limiter() -> RateLimiter:
    """Get the limiter singleton, configured from settings."""
    global _limiter
    if _limiter is not None:
        return _limiter

    settings = get_settings()
    _limiter = RateLimiter(
        get_rate_limit_store(),
        default_namespace=settings.rate_limit_namespace,
        unknown_identity=settings.rate_limit_unknown_identity,
        fail_mode=settings.rate_limit_fail_mode,
        low_confidence_factor=settings.rate_limit_low_confidence_factor,
    )
    return _limiter


def get_sweeper() -> StoreSweeper:
    """Get the sweeper singleton, sharing the limiter's store and clock."""
    global _sweeper
    if _sweeper is not None:
        return _sweeper

    settings = get_settings()
    limiter = get_rate_limiter()
    _sweeper = StoreSweeper(
        limiter.store,
        clock=limiter.clock,
        interval_seconds=settings.rate_limit_sweep_interval_seconds,
        retention_ms=settings.rate_limit_retention_ms,
    )
    return _sweeper
