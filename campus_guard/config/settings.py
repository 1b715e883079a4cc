"""Application settings loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Default limiter policy (applies to paths without a dedicated policy)
    rate_limit_window_ms: int = 15 * 60 * 1000
    rate_limit_limit: int = 100
    rate_limit_burst: int = 0  # 0 = same as limit
    rate_limit_algorithm: str = "token-bucket"  # token-bucket | sliding-window
    rate_limit_block_on_exceed_ms: int = 0  # 0 = no hard block
    rate_limit_namespace: str = "rl"  # limiter fallback when options carry none
    rate_limit_default_policy_namespace: str = "global"

    # Store housekeeping
    rate_limit_sweep_interval_seconds: float = 300.0
    rate_limit_retention_ms: int = 60 * 60 * 1000

    # Identity handling
    rate_limit_fail_mode: str = "open"  # open | closed (only for external stores)
    rate_limit_low_confidence_factor: float = 0.5
    rate_limit_unknown_identity: str = "unknown"

    # Middleware
    rate_limit_enabled: bool = True
    # Comma-separated list of exact paths that bypass the limiter
    rate_limit_exempt_paths: str = "/health"

    # Logging
    log_level: str = "INFO"
    audit_log_file: str = ""  # Empty = stdout only

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def exempt_paths_list(self) -> list[str]:
        """Parse comma-separated exempt paths."""
        return [p.strip() for p in self.rate_limit_exempt_paths.split(",") if p.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
