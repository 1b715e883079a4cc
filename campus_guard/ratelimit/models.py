"""Rate limiter data model: keys, options, per-key state and results."""

import math
from dataclasses import dataclass, field

from campus_guard.ratelimit.errors import ConfigurationError

TOKEN_BUCKET = "token-bucket"
SLIDING_WINDOW = "sliding-window"
ALGORITHMS = (TOKEN_BUCKET, SLIDING_WINDOW)


@dataclass(frozen=True)
class RateLimitKey:
    namespace: str  # logical grouping, e.g. "ip", "user", "route"
    identifier: str

    def __str__(self) -> str:
        return f"{self.namespace}:{self.identifier}"


@dataclass(frozen=True)
class RateLimitOptions:
    """Limiter configuration for one evaluation.

    Validated on construction; bad values raise ConfigurationError instead
    of being clamped.
    """

    window_ms: float
    limit: int
    burst: int | None = None  # None = same as limit
    namespace: str | None = None  # None = settings default
    block_on_exceed_ms: int = 0  # 0 = no hard block
    algorithm: str = TOKEN_BUCKET
    require_high_confidence: bool = False

    def __post_init__(self):
        if self.window_ms is None or self.window_ms <= 0:
            raise ConfigurationError(f"window_ms must be > 0, got {self.window_ms!r}")
        if not _is_int(self.limit):
            raise ConfigurationError(f"limit must be an integer, got {self.limit!r}")
        if self.limit <= 0:
            raise ConfigurationError(f"limit must be > 0, got {self.limit!r}")
        if self.burst is not None and not _is_int(self.burst):
            raise ConfigurationError(f"burst must be an integer, got {self.burst!r}")
        if self.burst is not None and self.burst < self.limit:
            raise ConfigurationError(
                f"burst must be >= limit ({self.limit}), got {self.burst!r}"
            )
        if self.block_on_exceed_ms < 0:
            raise ConfigurationError(
                f"block_on_exceed_ms must be >= 0, got {self.block_on_exceed_ms!r}"
            )
        if self.algorithm not in ALGORITHMS:
            raise ConfigurationError(
                f"algorithm must be one of {', '.join(ALGORITHMS)}, got {self.algorithm!r}"
            )

    @property
    def capacity(self) -> int:
        """Maximum tokens a bucket may hold."""
        return self.burst if self.burst is not None else self.limit

    @classmethod
    def from_settings(cls, settings, **overrides) -> "RateLimitOptions":
        """Build the default policy from application settings."""
        values = {
            "window_ms": settings.rate_limit_window_ms,
            "limit": settings.rate_limit_limit,
            "burst": settings.rate_limit_burst or None,
            "namespace": settings.rate_limit_namespace,
            "block_on_exceed_ms": settings.rate_limit_block_on_exceed_ms,
            "algorithm": settings.rate_limit_algorithm,
        }
        values.update(overrides)
        return cls(**values)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass
class _RateStateBase:
    last_refill: float  # ms; last refill (token bucket) or last touch (sliding window)
    blocked_until: float | None = None

    def is_blocked(self, now: float) -> bool:
        return self.blocked_until is not None and self.blocked_until > now


@dataclass
class TokenBucketState(_RateStateBase):
    tokens: int = 0
    burst_capacity: int = 0


@dataclass
class SlidingWindowState(_RateStateBase):
    # Ascending request timestamps (ms) inside the trailing window
    timestamps: list[float] = field(default_factory=list)


RateState = TokenBucketState | SlidingWindowState


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at_epoch_ms: int
    retry_after_seconds: int | None = None  # set only on deny
    blocked: bool = False  # True only when denied by a hard block
    key: str = ""
    confidence: str | None = None  # resolved client IP confidence, if known
    degraded: bool = False  # True when the store failed and the fail policy decided

    @property
    def reset_epoch_seconds(self) -> int:
        return math.ceil(self.reset_at_epoch_ms / 1000)

    @property
    def reason(self) -> str | None:
        """Machine-readable deny reason: "blocked", "throttled" or None when allowed."""
        if self.allowed:
            return None
        return "blocked" if self.blocked else "throttled"
