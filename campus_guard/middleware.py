"""Rate limiting middleware.

Pipeline per request: resolve client identity -> pick path policy ->
evaluate limiter -> 429 or pass through with rate limit headers.
"""

from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from campus_guard.config.settings import get_settings
from campus_guard.logging.audit import (
    decision_fields,
    generate_request_id,
    get_audit_logger,
    request_id_var,
)
from campus_guard.ratelimit.factory import get_rate_limiter
from campus_guard.ratelimit.limiter import RateLimiter
from campus_guard.ratelimit.models import RateLimitOptions
from campus_guard.security.client_ip import resolve_client_identity
from campus_guard.security.policies import policy_for_path
from campus_guard.security.response import apply_rate_limit_headers, rate_limited_response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Applies the per-IP rate limit to every non-exempt request.

    The decision and resolved identity are exposed to handlers as
    request.state.rate_limit and request.state.client_identity.
    """

    def __init__(
        self,
        app,
        limiter: RateLimiter | None = None,
        policy_resolver: Callable[[str], RateLimitOptions] = policy_for_path,
    ):
        super().__init__(app)
        self._limiter = limiter
        self._policy_resolver = policy_resolver

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter or get_rate_limiter()

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        settings = get_settings()
        path = request.url.path
        if not settings.rate_limit_enabled or path in settings.exempt_paths_list:
            return await call_next(request)

        rid = request.headers.get("X-Request-Id") or generate_request_id()
        request_id_var.set(rid)

        socket_ip = request.client.host if request.client else None
        client = resolve_client_identity(request.headers, socket_ip)
        options = self._policy_resolver(path)

        # Synchronous: no other request can touch this key mid-evaluation
        result = self.limiter.evaluate_ip(client, options)

        request.state.client_identity = client
        request.state.rate_limit = result

        if not result.allowed:
            get_audit_logger().warning(
                "Rate limit exceeded",
                extra={"audit_data": {
                    **decision_fields(result),
                    "path": path,
                    "client_ip": client.ip,
                    "ip_source": client.source,
                    "confidence": client.confidence,
                }},
            )
            response = rate_limited_response(result)
            response.headers["X-Request-Id"] = rid
            return response

        response = await call_next(request)
        apply_rate_limit_headers(response.headers, result)
        response.headers["X-Request-Id"] = rid
        return response
