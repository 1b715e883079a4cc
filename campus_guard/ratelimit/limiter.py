"""Rate limiter core: token bucket and sliding window accounting.

One RateLimiter instance evaluates requests against a RateLimitStore.
Each evaluation loads the key's state, applies the configured algorithm
and writes the state back without yielding to the event loop, so two
requests for the same key can never interleave between load and store.

Time is measured in milliseconds on a monotonic clock. Reset timestamps
handed to callers are translated to epoch milliseconds with a wall clock.
"""

import dataclasses
import math
import time
from collections.abc import Callable

from campus_guard.logging.audit import get_audit_logger
from campus_guard.ratelimit.errors import ConfigurationError, StoreUnavailable
from campus_guard.ratelimit.models import (
    TOKEN_BUCKET,
    RateLimitKey,
    RateLimitOptions,
    RateLimitResult,
    RateState,
    SlidingWindowState,
    TokenBucketState,
)
from campus_guard.ratelimit.store import RateLimitStore
from campus_guard.security.client_ip import HIGH, ClientIdentity

FAIL_MODES = ("open", "closed")

IP_SUBJECT = "ip"
USER_SUBJECT = "user"
ROUTE_SUBJECT = "route"


def monotonic_ms() -> float:
    return time.monotonic() * 1000


def epoch_ms() -> float:
    return time.time() * 1000


@dataclasses.dataclass
class _Decision:
    allowed: bool
    remaining: int
    reset_at: float  # monotonic ms
    retry_after_seconds: int | None = None
    blocked: bool = False


class RateLimiter:
    """Decides allow/deny per request and keeps per-key state in a store."""

    def __init__(
        self,
        store: RateLimitStore,
        *,
        default_namespace: str = "rl",
        unknown_identity: str = "unknown",
        fail_mode: str = "open",
        low_confidence_factor: float = 0.5,
        clock: Callable[[], float] = monotonic_ms,
        wall_clock: Callable[[], float] = epoch_ms,
    ):
        if fail_mode not in FAIL_MODES:
            raise ConfigurationError(f"fail_mode must be 'open' or 'closed', got {fail_mode!r}")
        if not 0 < low_confidence_factor <= 1:
            raise ConfigurationError(
                f"low_confidence_factor must be in (0, 1], got {low_confidence_factor!r}"
            )
        self.store = store
        self.clock = clock
        self._wall_clock = wall_clock
        self._default_namespace = default_namespace
        self._unknown_identity = unknown_identity
        self._fail_mode = fail_mode
        self._low_confidence_factor = low_confidence_factor

    # --- Public entry points ---

    def evaluate(
        self,
        identity: str | None,
        options: RateLimitOptions,
        *,
        confidence: str | None = None,
    ) -> RateLimitResult:
        """Evaluate one request for identity under options.

        Args:
            identity: Opaque subject identifier. None or empty falls back to
                the unknown-identity sentinel.
            options: Validated limiter configuration. options.namespace
                overrides the limiter's default namespace.
            confidence: Resolved client IP confidence, if the identity is an IP.
                Non-HIGH values tighten the limit when the options require
                high confidence.
        """
        namespace = options.namespace or self._default_namespace
        key = str(RateLimitKey(namespace, identity or self._unknown_identity))

        if options.require_high_confidence and confidence is not None and confidence != HIGH:
            options = self._tighten(options, key, confidence)

        now = self.clock()
        try:
            state = self._load_state(self.store.get(key), options, now)
            decision = self._decide(state, options, now)
            if not decision.allowed and not decision.blocked and options.block_on_exceed_ms > 0:
                decision = self._engage_block(state, options, now, key)
            self.store.set(key, state)
        except StoreUnavailable:
            return self._fail(key, options, now, confidence)

        return self._to_result(decision, options, now, key, confidence)

    # Keys are "<ns>:<kind>:<value>"; kinds never share state within a namespace

    def evaluate_ip(self, client: ClientIdentity, options: RateLimitOptions) -> RateLimitResult:
        """Limit by resolved client IP (key "<ns>:ip:<ip>").

        Unresolvable clients share the "<ns>:ip:<unknown>" sentinel key.
        """
        return self.evaluate(
            self._subject(IP_SUBJECT, client.ip), options, confidence=client.confidence,
        )

    def evaluate_user(self, user_id: str, options: RateLimitOptions) -> RateLimitResult:
        """Limit by authenticated user id (key "<ns>:user:<id>")."""
        return self.evaluate(self._subject(USER_SUBJECT, user_id), options)

    def evaluate_route(self, route: str, options: RateLimitOptions) -> RateLimitResult:
        """Limit by route name, shared by every caller of that route."""
        return self.evaluate(self._subject(ROUTE_SUBJECT, route), options)

    def reset(self, identity: str, namespace: str | None = None, kind: str | None = None) -> None:
        """Drop all state for one subject.

        Pass kind ("ip", "user" or "route") to reset a subject recorded
        through the matching evaluate_* entry point.
        """
        identifier = self._subject(kind, identity) if kind else identity
        self.store.delete(str(RateLimitKey(namespace or self._default_namespace, identifier)))

    def _subject(self, kind: str, value: str | None) -> str:
        return f"{kind}:{value or self._unknown_identity}"

    # --- State handling ---

    def _load_state(self, state: RateState | None, options: RateLimitOptions, now: float) -> RateState:
        """Return usable state for this evaluation, replacing absent or stale state.

        An active hard block is carried over into any replacement state.
        """
        state_type = TokenBucketState if options.algorithm == TOKEN_BUCKET else SlidingWindowState
        if state is not None and state.is_blocked(now):
            if isinstance(state, state_type):
                return state
            fresh = self._fresh_state(options, now)
            fresh.blocked_until = state.blocked_until
            return fresh

        if (
            state is None
            or not isinstance(state, state_type)
            or now - state.last_refill > options.window_ms
        ):
            return self._fresh_state(options, now)
        return state

    @staticmethod
    def _fresh_state(options: RateLimitOptions, now: float) -> RateState:
        if options.algorithm == TOKEN_BUCKET:
            return TokenBucketState(
                last_refill=now, tokens=options.limit, burst_capacity=options.capacity,
            )
        return SlidingWindowState(last_refill=now)

    def _tighten(self, options: RateLimitOptions, key: str, confidence: str) -> RateLimitOptions:
        limit = max(1, math.floor(options.limit * self._low_confidence_factor))
        burst = None
        if options.burst is not None:
            burst = max(limit, math.floor(options.burst * self._low_confidence_factor))
        get_audit_logger().info(
            "Low-confidence identity, applying stricter limit",
            extra={"audit_data": {
                "key": key,
                "namespace": key.split(":", 1)[0],
                "confidence": confidence,
                "limit": options.limit,
                "effective_limit": limit,
            }},
        )
        return dataclasses.replace(options, limit=limit, burst=burst)

    # --- Algorithms ---

    def _decide(self, state: RateState, options: RateLimitOptions, now: float) -> _Decision:
        if state.is_blocked(now):
            return _Decision(
                allowed=False,
                remaining=0,
                reset_at=state.blocked_until,
                retry_after_seconds=_ceil_seconds(state.blocked_until - now),
                blocked=True,
            )
        if isinstance(state, TokenBucketState):
            return self._token_bucket(state, options, now)
        return self._sliding_window(state, options, now)

    @staticmethod
    def _token_bucket(state: TokenBucketState, options: RateLimitOptions, now: float) -> _Decision:
        # Whole tokens only; fractional refill is dropped
        elapsed = now - state.last_refill
        refill = math.floor(elapsed / options.window_ms * options.limit)
        if refill > 0:
            state.tokens = min(state.burst_capacity, state.tokens + refill)
        state.last_refill = now

        ms_per_token = options.window_ms / options.limit
        if state.tokens > 0:
            state.tokens -= 1
            return _Decision(
                allowed=True,
                remaining=state.tokens,
                reset_at=now + math.ceil((state.burst_capacity - state.tokens) * ms_per_token),
            )
        return _Decision(
            allowed=False,
            remaining=0,
            reset_at=now + math.ceil(state.burst_capacity * ms_per_token),
            retry_after_seconds=_ceil_seconds(ms_per_token),
        )

    @staticmethod
    def _sliding_window(state: SlidingWindowState, options: RateLimitOptions, now: float) -> _Decision:
        window_start = now - options.window_ms
        state.timestamps = [t for t in state.timestamps if t >= window_start]
        state.last_refill = now

        count = len(state.timestamps)
        if count < options.limit:
            state.timestamps.append(now)
            return _Decision(
                allowed=True,
                remaining=options.limit - count - 1,
                reset_at=state.timestamps[0] + options.window_ms,
            )
        # Retry once the oldest request in the window expires
        reset_at = state.timestamps[0] + options.window_ms
        return _Decision(
            allowed=False,
            remaining=0,
            reset_at=reset_at,
            retry_after_seconds=_ceil_seconds(reset_at - now),
        )

    @staticmethod
    def _engage_block(state: RateState, options: RateLimitOptions, now: float, key: str) -> _Decision:
        state.blocked_until = now + options.block_on_exceed_ms
        get_audit_logger().warning(
            "Hard block engaged",
            extra={"audit_data": {
                "key": key,
                "namespace": key.split(":", 1)[0],
                "block_ms": options.block_on_exceed_ms,
            }},
        )
        return _Decision(
            allowed=False,
            remaining=0,
            reset_at=state.blocked_until,
            retry_after_seconds=_ceil_seconds(options.block_on_exceed_ms),
            blocked=True,
        )

    # --- Results ---

    def _to_result(
        self, decision: _Decision, options: RateLimitOptions, now: float, key: str,
        confidence: str | None,
    ) -> RateLimitResult:
        return RateLimitResult(
            allowed=decision.allowed,
            limit=options.limit,
            remaining=max(0, decision.remaining),
            reset_at_epoch_ms=self._to_epoch_ms(decision.reset_at, now),
            retry_after_seconds=None if decision.allowed else decision.retry_after_seconds,
            blocked=decision.blocked,
            key=key,
            confidence=confidence,
        )

    def _to_epoch_ms(self, monotonic_at: float, now: float) -> int:
        return math.ceil(self._wall_clock() + (monotonic_at - now))

    def _fail(
        self, key: str, options: RateLimitOptions, now: float, confidence: str | None,
    ) -> RateLimitResult:
        allowed = self._fail_mode == "open"
        get_audit_logger().error(
            "Rate limit store unavailable",
            exc_info=True,
            extra={"audit_data": {
                "key": key,
                "namespace": key.split(":", 1)[0],
                "fail_mode": self._fail_mode,
            }},
        )
        return RateLimitResult(
            allowed=allowed,
            limit=options.limit,
            remaining=options.limit if allowed else 0,
            reset_at_epoch_ms=self._to_epoch_ms(now + options.window_ms, now),
            retry_after_seconds=None if allowed else _ceil_seconds(options.window_ms),
            key=key,
            confidence=confidence,
            degraded=True,
        )


def _ceil_seconds(ms: float) -> int:
    """Milliseconds to whole seconds, rounded up, never below 1."""
    return max(1, math.ceil(ms / 1000))
