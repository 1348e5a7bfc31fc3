"""
Circuit breaker for calls into the storage backend.

States:
- CLOSED: calls pass through; consecutive failures are counted
- OPEN: calls are refused with CircuitOpenException until the
  recovery timeout has elapsed
- HALF_OPEN: a limited number of probe calls decide whether the
  backend has recovered

Exceptions listed in ``CircuitBreakerConfig.excluded_exceptions`` are
business outcomes (for example an optimistic-concurrency conflict) and
pass through without counting as failures.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """
    Circuit breaker states.

    - CLOSED -> OPEN: after failure_threshold consecutive failures
    - OPEN -> HALF_OPEN: once recovery_timeout has elapsed
    - HALF_OPEN -> CLOSED: on a successful probe
    - HALF_OPEN -> OPEN: on a failed probe
    """
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """
    Configuration for a circuit breaker.

    Attributes:
        failure_threshold: Consecutive failures that open the circuit
        recovery_timeout: How long the circuit stays open before probing
        half_open_max_calls: Probe calls allowed while half-open
        excluded_exceptions: Exception types that never count as failures
    """
    failure_threshold: int = 3
    recovery_timeout: timedelta = field(default_factory=lambda: timedelta(seconds=30))
    half_open_max_calls: int = 1
    excluded_exceptions: Tuple[Type[BaseException], ...] = ()


class CircuitOpenException(Exception):
    """Raised instead of calling the backend while the circuit is open."""

    def __init__(self, circuit_name: str, retry_after: Optional[float] = None):
        self.circuit_name = circuit_name
        self.retry_after = retry_after

        message = f"Circuit breaker '{circuit_name}' is open"
        if retry_after is not None:
            message += f", retry in {int(retry_after)} seconds"
        super().__init__(message)


class CircuitBreaker:
    """
    Async circuit breaker.

    Example:
        breaker = CircuitBreaker("elasticsearch")

        async def _do_search():
            return client.search(index="gps_fixes", query=query)

        result = await breaker.execute(_do_search)

    Args:
        name: Name used in logs and in CircuitOpenException
        config: Thresholds and timeouts; defaults when omitted
        clock: Monotonic time source in seconds, replaceable in tests
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._half_open_calls = 0
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def _seconds_until_probe(self) -> float:
        if self._opened_at is None:
            return 0.0
        elapsed = self._clock() - self._opened_at
        return max(0.0, self.config.recovery_timeout.total_seconds() - elapsed)

    def _trip(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._half_open_calls = 0
        logger.warning(
            f"Circuit breaker '{self.name}' opened",
            extra={"extra_data": {
                "circuit": self.name,
                "failure_count": self._failure_count,
            }}
        )

    async def _admit(self) -> None:
        async with self._lock:
            if self._state == CircuitState.OPEN:
                remaining = self._seconds_until_probe()
                if remaining > 0:
                    raise CircuitOpenException(self.name, remaining)
                self._state = CircuitState.HALF_OPEN
                self._half_open_calls = 0

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.config.half_open_max_calls:
                    raise CircuitOpenException(self.name, self._seconds_until_probe())
                self._half_open_calls += 1

    async def _record_success(self) -> None:
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                logger.info(f"Circuit breaker '{self.name}' closed after successful probe")
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._half_open_calls = 0
            self._opened_at = None

    async def _record_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN:
                self._trip()
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.config.failure_threshold
            ):
                self._trip()

    async def execute(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any
    ) -> T:
        """
        Run ``func`` under the breaker.

        Args:
            func: The async callable to run
            *args: Positional arguments for func
            **kwargs: Keyword arguments for func

        Returns:
            Whatever func returns

        Raises:
            CircuitOpenException: If the circuit refuses the call
            Exception: Anything func raises, after it has been recorded
        """
        await self._admit()
        try:
            result = await func(*args, **kwargs)
        except self.config.excluded_exceptions:
            await self._record_success()
            raise
        except Exception:
            await self._record_failure()
            raise
        await self._record_success()
        return result

    def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._half_open_calls = 0

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker(name={self.name!r}, state={self._state.value}, "
            f"failure_count={self._failure_count})"
        )
