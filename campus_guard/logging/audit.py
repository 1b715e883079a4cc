"""Structured JSON audit log for rate limiting decisions.

Every deny, hard block, degraded evaluation and sweep is written as one
JSON object per line on stdout, optionally mirrored to AUDIT_LOG_FILE.

Client addresses never reach the output unmasked: JSONFormatter
anonymizes the IP fields and the IP part of rate limit keys, whatever
the caller passed in.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone

from campus_guard.config.settings import get_settings
from campus_guard.ratelimit.models import RateLimitResult
from campus_guard.security.client_ip import anonymize_ip

AUDIT_LOGGER_NAME = "campus_guard.audit"

# Audit fields holding a bare client address
IP_FIELDS = frozenset({"client_ip", "ip"})

# Request-scoped context for correlating log entries
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def mask_key(key: str) -> str:
    """Anonymize the address in an IP-subject key ("signin:ip:203.0.113.7")."""
    namespace, sep, subject = key.partition(":")
    kind, sep2, value = subject.partition(":")
    if not sep or kind != "ip" or not sep2 or value == "unknown":
        return key
    return f"{namespace}:ip:{anonymize_ip(value)}"


def decision_fields(result: RateLimitResult) -> dict:
    """Audit fields describing one limiter decision."""
    return {
        "key": result.key,
        "namespace": result.key.split(":", 1)[0],
        "allowed": result.allowed,
        "reason": result.reason,
        "rate_limit": result.limit,
        "remaining": result.remaining,
        "retry_after": result.retry_after_seconds,
        "blocked": result.blocked,
        "degraded": result.degraded,
    }


class JSONFormatter(logging.Formatter):
    """Single-line JSON records with client addresses masked."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get(""),
        }
        audit_data = getattr(record, "audit_data", None)
        if audit_data:
            entry.update(self._mask(audit_data))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)

    @staticmethod
    def _mask(audit_data: dict) -> dict:
        masked = dict(audit_data)
        for name in masked.keys() & IP_FIELDS:
            if masked[name] is not None:
                masked[name] = anonymize_ip(masked[name])
        if isinstance(masked.get("key"), str):
            masked["key"] = mask_key(masked["key"])
        return masked


def setup_logging() -> None:
    """Attach JSON handlers to the audit logger."""
    settings = get_settings()

    logger = logging.getLogger(AUDIT_LOGGER_NAME)
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.audit_log_file:
        handlers.append(logging.FileHandler(settings.audit_log_file))

    formatter = JSONFormatter()
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    # Audit records stay out of the root logger
    logger.propagate = False


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER_NAME)


def generate_request_id() -> str:
    return uuid.uuid4().hex[:12]
