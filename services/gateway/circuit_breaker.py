"""
Circuit breaker per provider (or per provider:indicator)

CLOSED -> OPEN after `failure_threshold` consecutive transient failures.
OPEN -> HALF_OPEN lazily, on the first check at or after retry_after.
HALF_OPEN admits exactly one trial request; its outcome closes or re-opens
the circuit.
"""

import logging
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Requests skipped until retry_after
    HALF_OPEN = "HALF_OPEN"  # One trial request allowed


StateListener = Callable[[str, CircuitState, CircuitState], None]


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker

    Non-blocking: allow_request() answers immediately and the caller reports
    the outcome afterwards with record_success / record_failure /
    record_rejection (or release() if it never dispatched).

    Example:
        >>> breaker = CircuitBreaker("fred", failure_threshold=5, cooldown_seconds=60)
        >>> if breaker.allow_request():
        ...     try:
        ...         quote = await adapter.fetch_one("WALCL")
        ...         breaker.record_success()
        ...     except TransientProviderError:
        ...         breaker.record_failure()
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: StateListener | None = None,
    ):
        """
        Args:
            name: Breaker key for logging (provider or provider:indicator)
            failure_threshold: Consecutive failures before opening
            cooldown_seconds: Seconds OPEN before a trial is allowed
            clock: Monotonic time source
            on_state_change: Called as (name, old_state, new_state) after each transition
        """
        if failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1, got {failure_threshold}")

        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self.on_state_change = on_state_change

        self._state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.opened_at: float | None = None
        self.retry_after: float | None = None
        self._trial_in_flight = False

        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        """Current state (OPEN reads as HALF_OPEN once the cooldown elapsed)"""
        with self._lock:
            transition = self._refresh()
            state = self._state
        self._notify(transition)
        return state

    def allow_request(self) -> bool:
        """
        Whether a request may be dispatched

        In HALF_OPEN this reserves the single trial slot; the caller must
        report an outcome or call release().
        """
        with self._lock:
            transition = self._refresh()
            if self._state == CircuitState.CLOSED:
                allowed = True
            elif self._state == CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                allowed = True
            else:
                allowed = False
        self._notify(transition)
        return allowed

    def release(self) -> None:
        """Give back a reserved trial that was never dispatched"""
        with self._lock:
            self._trial_in_flight = False

    def record_success(self) -> None:
        with self._lock:
            self.consecutive_failures = 0
            transition = None
            if self._state != CircuitState.CLOSED:
                transition = self._transition(CircuitState.CLOSED)
        self._notify(transition)

    def record_failure(self) -> None:
        """Transient failure (network, timeout, 5xx)"""
        with self._lock:
            self.consecutive_failures += 1
            transition = None
            if self._state == CircuitState.HALF_OPEN:
                transition = self._transition(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self.consecutive_failures >= self.failure_threshold
            ):
                transition = self._transition(CircuitState.OPEN)
        self._notify(transition)

    def record_rejection(self) -> None:
        """
        Permanent rejection (bad symbol, 4xx)

        The provider answered, so this is not a health signal: a half-open
        trial closes the circuit, otherwise nothing changes.
        """
        with self._lock:
            transition = None
            if self._state == CircuitState.HALF_OPEN:
                self.consecutive_failures = 0
                transition = self._transition(CircuitState.CLOSED)
            self._trial_in_flight = False
        self._notify(transition)

    def reset(self) -> None:
        with self._lock:
            self.consecutive_failures = 0
            transition = None
            if self._state != CircuitState.CLOSED:
                transition = self._transition(CircuitState.CLOSED)
        self._notify(transition)

    def snapshot(self) -> dict[str, Any]:
        state = self.state
        with self._lock:
            return {
                "name": self.name,
                "state": state.value,
                "consecutive_failures": self.consecutive_failures,
                "opened_at": self.opened_at,
                "retry_after": self.retry_after,
            }

    def _refresh(self) -> tuple[CircuitState, CircuitState] | None:
        """OPEN -> HALF_OPEN once retry_after passed (lock held)"""
        if (
            self._state == CircuitState.OPEN
            and self.retry_after is not None
            and self.clock() >= self.retry_after
        ):
            return self._transition(CircuitState.HALF_OPEN)
        return None

    def _transition(self, new_state: CircuitState) -> tuple[CircuitState, CircuitState]:
        """Apply a state change (lock held)"""
        old_state = self._state
        self._state = new_state
        self._trial_in_flight = False

        if new_state == CircuitState.OPEN:
            now = self.clock()
            self.opened_at = now
            self.retry_after = now + self.cooldown_seconds
        elif new_state == CircuitState.CLOSED:
            self.opened_at = None
            self.retry_after = None

        return old_state, new_state

    def _notify(self, transition: tuple[CircuitState, CircuitState] | None) -> None:
        if transition is None:
            return
        old_state, new_state = transition

        if new_state == CircuitState.OPEN:
            logger.warning(
                f"⚡ Circuit {self.name} OPEN after {self.consecutive_failures} failures "
                f"(retry in {self.cooldown_seconds}s)"
            )
        elif new_state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit {self.name} HALF_OPEN, allowing one trial request")
        else:
            logger.info(f"✓ Circuit {self.name} CLOSED")

        if self.on_state_change is not None:
            self.on_state_change(self.name, old_state, new_state)


class CircuitBreakerStore:
    """
    Lazily-created breakers sharing one configuration

    Example:
        >>> store = CircuitBreakerStore(failure_threshold=5, cooldown_seconds=60)
        >>> store.get("fred").allow_request()
        True
        >>> store.states()
        {'fred': 'CLOSED'}
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._listeners: list[StateListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def get(self, key: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(
                    key,
                    failure_threshold=self.failure_threshold,
                    cooldown_seconds=self.cooldown_seconds,
                    clock=self.clock,
                    on_state_change=self._dispatch,
                )
                self._breakers[key] = breaker
            return breaker

    def states(self) -> dict[str, str]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {breaker.name: breaker.state.value for breaker in breakers}

    def reset(self, key: str | None = None) -> None:
        """Reset one breaker, or all of them"""
        with self._lock:
            breakers = list(self._breakers.values()) if key is None else [self._breakers.get(key)]
        for breaker in breakers:
            if breaker is not None:
                breaker.reset()

    def _dispatch(self, name: str, old_state: CircuitState, new_state: CircuitState) -> None:
        for listener in self._listeners:
            listener(name, old_state, new_state)

    def __len__(self) -> int:
        return len(self._breakers)
