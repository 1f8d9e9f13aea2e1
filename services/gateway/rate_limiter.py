"""
Per-provider sliding-window rate limiter

Non-blocking: try_acquire() answers immediately. A denied caller skips to
the next provider in its fallback chain instead of queueing.
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from core.models.indicators import ProviderId

logger = logging.getLogger(__name__)


def provider_key(provider: ProviderId | str) -> str:
    return provider.value if isinstance(provider, ProviderId) else provider


@dataclass
class RateLimitWindow:
    """Request timestamps inside the trailing window for one provider"""

    limit: int
    window_seconds: float
    timestamps: deque = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def evict(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()


class RateLimiter:
    """
    Sliding-window request counter per provider

    A request is allowed iff fewer than `limit` requests are newer than
    `now - window`. try_acquire() checks and reserves a slot under the
    window lock, so concurrent callers can never dispatch more than `limit`
    requests per window. A reservation that did not lead to a successful
    call is handed back with release(). Providers without a configured
    limit are unlimited.

    Example:
        >>> limiter = RateLimiter({ProviderId.FRED: 120}, window_seconds=60)
        >>> slot = limiter.try_acquire(ProviderId.FRED)
        >>> if slot is not None:
        ...     try:
        ...         quote = await adapter.fetch_one("WALCL")
        ...     except ProviderError:
        ...         limiter.release(ProviderId.FRED, slot)
    """

    def __init__(
        self,
        limits: Mapping[ProviderId | str, int] | None = None,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self.clock = clock
        self._windows: dict[str, RateLimitWindow] = {}
        for provider, limit in (limits or {}).items():
            self.configure(provider, limit)

    def configure(
        self, provider: ProviderId | str, limit: int, window_seconds: float | None = None
    ) -> None:
        """Set (or replace) a provider's limit"""
        if limit < 1:
            raise ValueError(f"Rate limit for {provider_key(provider)} must be >= 1, got {limit}")
        self._windows[provider_key(provider)] = RateLimitWindow(
            limit=limit, window_seconds=window_seconds or self.window_seconds
        )

    def allow(self, provider: ProviderId | str) -> bool:
        """Whether a request may be dispatched now (does not consume a slot)"""
        window = self._windows.get(provider_key(provider))
        if window is None:
            return True
        with window.lock:
            window.evict(self.clock())
            allowed = len(window.timestamps) < window.limit

        if not allowed:
            logger.debug(f"Rate limit reached for {provider_key(provider)} ({window.limit}/{window.window_seconds}s)")
        return allowed

    def try_acquire(self, provider: ProviderId | str) -> float | None:
        """
        Atomically check the window and reserve one slot

        Returns:
            Reservation timestamp (pass it to release()), or None when the
            window is full
        """
        window = self._windows.get(provider_key(provider))
        now = self.clock()
        if window is None:
            return now
        with window.lock:
            window.evict(now)
            if len(window.timestamps) >= window.limit:
                acquired = False
            else:
                window.timestamps.append(now)
                acquired = True

        if not acquired:
            logger.debug(f"Rate limit reached for {provider_key(provider)} ({window.limit}/{window.window_seconds}s)")
            return None
        return now

    def release(self, provider: ProviderId | str, reserved_at: float) -> None:
        """Hand back a reservation whose request did not succeed"""
        window = self._windows.get(provider_key(provider))
        if window is None:
            return
        with window.lock:
            try:
                window.timestamps.remove(reserved_at)
            except ValueError:
                pass  # already evicted

    def record(self, provider: ProviderId | str) -> None:
        """Mark one slot consumed (may exceed the limit; eviction restores it)"""
        window = self._windows.get(provider_key(provider))
        if window is None:
            return
        with window.lock:
            now = self.clock()
            window.evict(now)
            window.timestamps.append(now)

    def usage(self, provider: ProviderId | str) -> int:
        """Requests recorded inside the current window"""
        window = self._windows.get(provider_key(provider))
        if window is None:
            return 0
        with window.lock:
            window.evict(self.clock())
            return len(window.timestamps)

    def remaining(self, provider: ProviderId | str) -> int | None:
        """Free slots in the current window (None when unlimited)"""
        window = self._windows.get(provider_key(provider))
        if window is None:
            return None
        return max(0, window.limit - self.usage(provider))

    def limit_for(self, provider: ProviderId | str) -> int | None:
        window = self._windows.get(provider_key(provider))
        return window.limit if window else None

    def snapshot(self) -> dict[str, int]:
        """Remaining capacity for every limited provider"""
        return {key: self.remaining(key) or 0 for key in self._windows}

    def reset(self) -> None:
        for window in self._windows.values():
            with window.lock:
                window.timestamps.clear()
