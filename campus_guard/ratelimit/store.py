"""Rate state store abstraction + in-memory implementation."""

from abc import ABC, abstractmethod

from campus_guard.ratelimit.models import RateState


class RateLimitStore(ABC):
    """Abstract base for per-key rate state storage.

    Implementations backed by a shared external service must make the
    limiter's load-modify-store sequence atomic (e.g. a server-side script)
    and raise StoreUnavailable when the backend cannot be reached.
    """

    @abstractmethod
    def get(self, key: str) -> RateState | None:
        """Return the state stored under key, or None."""
        ...

    @abstractmethod
    def set(self, key: str, state: RateState) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key. Missing keys are ignored."""
        ...

    @abstractmethod
    def sweep(self, now: float, retention_ms: float) -> int:
        """Evict entries idle for more than retention_ms. Returns the eviction count."""
        ...


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local dict store.

    No locking: the limiter reads and writes a key without yielding to the
    event loop, and the sweep runs on the same loop.
    """

    def __init__(self):
        self._states: dict[str, RateState] = {}

    def get(self, key: str) -> RateState | None:
        return self._states.get(key)

    def set(self, key: str, state: RateState) -> None:
        self._states[key] = state

    def delete(self, key: str) -> None:
        self._states.pop(key, None)

    def sweep(self, now: float, retention_ms: float) -> int:
        cutoff = now - retention_ms
        # Collect first; never mutate the dict while iterating it
        expired = [
            key for key, state in self._states.items()
            if state.last_refill < cutoff and not state.is_blocked(now)
        ]
        for key in expired:
            del self._states[key]
        return len(expired)

    def clear(self) -> None:
        self._states.clear()

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, key: str) -> bool:
        return key in self._states
