"""Background eviction of idle rate limit state.

Runs as an asyncio task owned by the application lifespan: started on
startup, cancelled on shutdown so no timer outlives the app.
"""

import asyncio
import contextlib
from collections.abc import Callable

from campus_guard.logging.audit import get_audit_logger
from campus_guard.ratelimit.store import RateLimitStore


class StoreSweeper:
    """Periodically evicts store entries idle for longer than the retention period."""

    def __init__(
        self,
        store: RateLimitStore,
        clock: Callable[[], float],
        interval_seconds: float = 300.0,
        retention_ms: float = 3_600_000,
    ):
        self._store = store
        self._clock = clock
        self._interval = interval_seconds
        self._retention_ms = retention_ms
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the sweep loop on the running event loop. No-op if already running."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="rate-limit-sweeper")
        get_audit_logger().info(
            "Rate limit sweeper started",
            extra={"audit_data": {
                "interval_seconds": self._interval,
                "retention_ms": self._retention_ms,
            }},
        )

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        get_audit_logger().info("Rate limit sweeper stopped")

    def sweep_once(self) -> int:
        """Run one eviction pass immediately. Returns the number of evicted keys."""
        removed = self._store.sweep(self._clock(), self._retention_ms)
        if removed:
            get_audit_logger().info(
                "Rate limit state swept",
                extra={"audit_data": {"evicted": removed}},
            )
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self.sweep_once()
            except Exception:
                # Keep the loop alive; the next pass retries
                get_audit_logger().exception("Rate limit sweep failed")
