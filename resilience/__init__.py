"""
Resilience patterns for the GeoTrack ingestion service.

Circuit breaking around the storage backend and retry with exponential
backoff for conflicts and startup.
"""

from resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenException,
    CircuitState,
)
from resilience.retry import (
    RetryConfig,
    RetryExhaustedException,
    calculate_delay,
    retry_async,
)

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitOpenException",
    "CircuitState",
    # Retry
    "RetryConfig",
    "RetryExhaustedException",
    "calculate_delay",
    "retry_async",
]
