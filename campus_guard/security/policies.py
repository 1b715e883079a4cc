"""Per-path rate limit policies.

The most specific (longest) matching prefix wins; unmatched paths use the
default policy built from settings.
"""

from campus_guard.config.settings import Settings, get_settings
from campus_guard.ratelimit.models import SLIDING_WINDOW, TOKEN_BUCKET, RateLimitOptions

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

PATH_POLICIES: dict[str, RateLimitOptions] = {
    # Credential stuffing target: exact counting plus a hard block
    "/auth/signin": RateLimitOptions(
        window_ms=15 * MINUTE_MS,
        limit=5,
        namespace="signin",
        algorithm=SLIDING_WINDOW,
        block_on_exceed_ms=15 * MINUTE_MS,
        require_high_confidence=True,
    ),
    "/auth/signup": RateLimitOptions(
        window_ms=HOUR_MS,
        limit=3,
        namespace="signup",
        algorithm=SLIDING_WINDOW,
        block_on_exceed_ms=HOUR_MS,
    ),
    "/api/v1": RateLimitOptions(
        window_ms=HOUR_MS,
        limit=1000,
        burst=1000,
        namespace="api",
        algorithm=TOKEN_BUCKET,
    ),
}


def policy_for_path(path: str, settings: Settings | None = None) -> RateLimitOptions:
    """Pick the policy for a request path."""
    matches = [prefix for prefix in PATH_POLICIES if _matches(path, prefix)]
    if matches:
        return PATH_POLICIES[max(matches, key=len)]
    settings = settings or get_settings()
    return RateLimitOptions.from_settings(
        settings, namespace=settings.rate_limit_default_policy_namespace,
    )


def _matches(path: str, prefix: str) -> bool:
    # Segment-aware: "/api/v1" covers "/api/v1/x" but not "/api/v10"
    return path == prefix or path.startswith(prefix.rstrip("/") + "/")
