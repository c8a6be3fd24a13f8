"""Circuit breaker guarding calls to flaky dependent operations."""

import time
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from gatewarden.errors import CircuitOpenError

T = TypeVar("T")

StateChangeCallback = Callable[["CircuitState", "CircuitState"], Any]


class CircuitState(str, Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls
    HALF_OPEN = "half-open"  # Probing for recovery


class CircuitBreaker:
    """
    Failure-threshold circuit breaker with lazy recovery probing.

    closed -> open after ``failure_threshold`` consecutive failures.
    open -> half-open once ``recovery_timeout_ms`` has passed since the last
    failure; this is evaluated lazily by ``execute()`` and ``get_state()``,
    there is no background timer. half-open -> closed after
    ``success_threshold`` successes; any failure in half-open reopens.

    One instance per protected resource, used from a single thread of
    control. Under asyncio the bookkeeping never spans an ``await``.
    """

    def __init__(
        self,
        failure_threshold: int,
        recovery_timeout_ms: int,
        success_threshold: int = 2,
        name: str = "default",
        on_state_change: StateChangeCallback | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be positive")
        if recovery_timeout_ms < 0:
            raise ValueError("recovery_timeout_ms cannot be negative")
        if success_threshold <= 0:
            raise ValueError("success_threshold must be positive")

        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout_ms = recovery_timeout_ms
        self.success_threshold = success_threshold
        self.on_state_change = on_state_change
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_ms: float | None = None

    @classmethod
    def from_config(cls, config, name: str = "default", **kwargs) -> "CircuitBreaker":
        """Build a breaker from a ``CircuitBreakerConfig``."""
        return cls(
            failure_threshold=config.failure_threshold,
            recovery_timeout_ms=config.recovery_timeout_ms,
            success_threshold=config.success_threshold,
            name=name,
            **kwargs,
        )

    def _now_ms(self) -> float:
        return self._clock() * 1000

    # ========== Public API ==========

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` under breaker protection.

        Raises:
            CircuitOpenError: The breaker is open and not yet eligible for a
                recovery attempt; ``operation`` was not called.
            Exception: Whatever ``operation`` raised, after it was counted.
        """
        if self._state == CircuitState.OPEN:
            if self._should_attempt_recovery():
                self._transition_to(CircuitState.HALF_OPEN)
            else:
                raise CircuitOpenError(f"Circuit breaker '{self.name}' is open")

        try:
            result = await operation()
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def get_state(self) -> CircuitState:
        """Current state, applying a due open -> half-open transition first."""
        if self._state == CircuitState.OPEN and self._should_attempt_recovery():
            self._transition_to(CircuitState.HALF_OPEN)
        return self._state

    def reset(self) -> None:
        """Force the breaker closed and clear all counters."""
        previous = self._state
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_ms = None
        if previous != CircuitState.CLOSED:
            logger.info(f"Circuit {self.name}: reset to CLOSED")

    def get_failure_count(self) -> int:
        return self._failure_count

    def get_success_count(self) -> int:
        return self._success_count

    def get_time_since_last_failure(self) -> float | None:
        """Milliseconds since the last recorded failure, or None if none."""
        if self._last_failure_ms is None:
            return None
        return self._now_ms() - self._last_failure_ms

    # ========== Internals ==========

    def _should_attempt_recovery(self) -> bool:
        if self._last_failure_ms is None:
            return False
        return self._now_ms() - self._last_failure_ms >= self.recovery_timeout_ms

    def _on_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.success_threshold:
                self._transition_to(CircuitState.CLOSED)
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def _on_failure(self) -> None:
        self._last_failure_ms = self._now_ms()

        if self._state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.OPEN)
        elif self._state == CircuitState.CLOSED:
            self._failure_count += 1
            if self._failure_count >= self.failure_threshold:
                self._transition_to(CircuitState.OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        previous = self._state
        self._state = new_state

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
        elif new_state == CircuitState.HALF_OPEN:
            self._success_count = 0
        elif new_state == CircuitState.OPEN:
            self._success_count = 0

        if previous == new_state:
            return

        if new_state == CircuitState.OPEN:
            logger.warning(
                f"Circuit {self.name}: {previous.value.upper()} -> OPEN "
                f"(failures={self._failure_count})"
            )
        else:
            logger.info(f"Circuit {self.name}: {previous.value.upper()} -> {new_state.value.upper()}")

        if self.on_state_change:
            try:
                self.on_state_change(previous, new_state)
            except Exception as e:
                logger.debug(f"Circuit {self.name}: state change callback failed: {e}")


def service_health(breaker: CircuitBreaker, is_running: bool) -> str:
    """Map a breaker plus a liveness check to healthy / degraded / unavailable."""
    state = breaker.get_state()
    if not is_running or state == CircuitState.OPEN:
        return "unavailable"
    if state == CircuitState.HALF_OPEN:
        return "degraded"
    return "healthy"
