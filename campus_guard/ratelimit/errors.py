"""Rate limiter error types.

Being rate limited is not an error: a deny is a normal RateLimitResult.
These exceptions cover misconfiguration and backend failures only.
"""


class RateLimitError(Exception):
    """Base class for rate limiter failures."""


class ConfigurationError(RateLimitError, ValueError):
    """Invalid limiter options. Raised at call time and never retried."""


class StoreUnavailable(RateLimitError):
    """The backing store could not be read or written.

    The in-memory store never raises this. External backends must, so the
    limiter can apply the configured fail-open / fail-closed policy.
    """
