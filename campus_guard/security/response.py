"""Rate limit response headers and the 429 response.

Header values depend only on the RateLimitResult, so decorating the same
response twice yields the same headers. Bodies are never touched.
"""

from collections.abc import MutableMapping

from fastapi.responses import JSONResponse

from campus_guard.ratelimit.models import RateLimitResult


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Build the standard rate limit headers for a decision."""
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(max(0, result.remaining)),
        "X-RateLimit-Reset": str(result.reset_epoch_seconds),
    }
    if not result.allowed:
        headers["Retry-After"] = str(result.retry_after_seconds or 1)
        if result.blocked:
            headers["X-RateLimit-Blocked"] = "true"
    return headers


def apply_rate_limit_headers(
    headers: MutableMapping[str, str], result: RateLimitResult
) -> MutableMapping[str, str]:
    """Add or overwrite rate limit headers on an outgoing header set."""
    for name, value in rate_limit_headers(result).items():
        headers[name] = value
    return headers


def rate_limited_response(result: RateLimitResult) -> JSONResponse:
    """HTTP 429 carrying the decision headers and a machine-readable reason."""
    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "reason": result.reason,
            "retry_after": result.retry_after_seconds,
        },
        headers=rate_limit_headers(result),
    )
