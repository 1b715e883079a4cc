"""Campus Guard FastAPI application entry point.

Request-edge rate limiting for the student portal: every request passes
through RateLimitMiddleware before reaching a route handler.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from campus_guard.logging.audit import get_audit_logger, setup_logging
from campus_guard.middleware import RateLimitMiddleware
from campus_guard.ratelimit.factory import get_sweeper

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks."""
    setup_logging()
    sweeper = get_sweeper()
    sweeper.start()
    get_audit_logger().info("Campus Guard started")
    yield
    await sweeper.stop()
    get_audit_logger().info("Campus Guard stopped")


app = FastAPI(
    title="Campus Guard",
    description="Adaptive rate limiting for the student portal",
    version=VERSION,
    lifespan=lifespan,
)
app.add_middleware(RateLimitMiddleware)


@app.get("/health")
async def health():
    return {"status": "healthy", "version": VERSION}


@app.get("/rate-limit/status")
async def rate_limit_status(request: Request):
    """Report the caller's resolved identity and the decision for this request."""
    result = getattr(request.state, "rate_limit", None)
    if result is None:
        return {"enabled": False}
    client = request.state.client_identity
    return {
        "enabled": True,
        "key_namespace": result.key.split(":", 1)[0],
        "confidence": client.confidence,
        "ip_source": client.source,
        "limit": result.limit,
        "remaining": result.remaining,
        "reset": result.reset_epoch_seconds,
    }
