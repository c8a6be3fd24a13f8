"""Circuit breaker package."""

from gatewarden.breaker.circuit import CircuitBreaker, CircuitState, service_health
from gatewarden.errors import CircuitOpenError

__all__ = ["CircuitBreaker", "CircuitState", "CircuitOpenError", "service_health"]
