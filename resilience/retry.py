"""
Async retry with exponential backoff.

Used for two things: re-running an ingestion unit of work after an
optimistic-concurrency conflict, and creating storage indices while the
backend is still coming up at startup.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_attempts: Total attempts including the first one
        initial_delay: Delay in seconds after the first failure
        exponential_base: Multiplier applied per further failure
        max_delay: Upper bound for a single delay, None for unbounded
        retryable_exceptions: Exception types that trigger another attempt;
            anything else propagates immediately
        sleep: Awaitable sleep function, replaceable in tests
    """
    max_attempts: int = 3
    initial_delay: float = 1.0
    exponential_base: float = 2.0
    max_delay: Optional[float] = None
    retryable_exceptions: Tuple[Type[Exception], ...] = field(
        default_factory=lambda: (Exception,)
    )
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep


class RetryExhaustedException(Exception):
    """
    Raised when every attempt failed with a retryable exception.

    Attributes:
        attempts: Number of attempts made
        last_exception: The exception raised by the final attempt
        operation_name: Name of the operation, for logs and errors
    """

    def __init__(
        self,
        message: str,
        attempts: int,
        last_exception: Exception,
        operation_name: Optional[str] = None
    ):
        self.attempts = attempts
        self.last_exception = last_exception
        self.operation_name = operation_name
        super().__init__(message)


def calculate_delay(
    attempt: int,
    initial_delay: float,
    exponential_base: float,
    max_delay: Optional[float] = None
) -> float:
    """
    Delay before the retry that follows failed attempt ``attempt`` (0-indexed).

    ``initial_delay * exponential_base ** attempt``, capped by ``max_delay``.
    With initial_delay=0.05 and base 2 this gives 0.05, 0.1, 0.2, ...
    """
    delay = initial_delay * (exponential_base ** attempt)
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: Optional[RetryConfig] = None,
    operation_name: Optional[str] = None,
    **kwargs: Any
) -> T:
    """
    Await ``func(*args, **kwargs)`` until it succeeds or attempts run out.

    Example:
        result = await retry_async(
            self._commit_batch,
            tenant_id,
            winners,
            config=RetryConfig(max_attempts=3, initial_delay=0.05,
                               retryable_exceptions=(ConcurrencyConflict,)),
            operation_name="commit_batch",
        )

    Args:
        func: The async callable to run
        *args: Positional arguments for func
        config: Retry settings, defaults when omitted
        operation_name: Name used in logs, defaults to func.__name__
        **kwargs: Keyword arguments for func

    Returns:
        The result of the first successful attempt

    Raises:
        RetryExhaustedException: When the last attempt also failed
            with a retryable exception
    """
    effective_config = config or RetryConfig()
    op_name = operation_name or getattr(func, "__name__", "operation")
    attempts = max(1, effective_config.max_attempts)

    for attempt in range(attempts):
        try:
            return await func(*args, **kwargs)
        except effective_config.retryable_exceptions as e:
            if attempt == attempts - 1:
                logger.error(
                    f"Retry exhausted for operation '{op_name}' after {attempts} attempts",
                    extra={"extra_data": {
                        "operation": op_name,
                        "attempts": attempts,
                        "last_error": str(e),
                        "error_type": type(e).__name__,
                    }}
                )
                raise RetryExhaustedException(
                    f"Operation '{op_name}' failed after {attempts} attempts",
                    attempts=attempts,
                    last_exception=e,
                    operation_name=op_name
                ) from e

            delay = calculate_delay(
                attempt,
                effective_config.initial_delay,
                effective_config.exponential_base,
                effective_config.max_delay
            )
            logger.warning(
                f"Attempt {attempt + 1}/{attempts} of '{op_name}' failed, "
                f"retrying in {delay:.2f}s",
                extra={"extra_data": {
                    "operation": op_name,
                    "attempt": attempt + 1,
                    "max_attempts": attempts,
                    "delay_seconds": delay,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                }}
            )
            await effective_config.sleep(delay)

    # unreachable: the loop either returns or raises
    raise RuntimeError(f"retry loop for '{op_name}' exited without a result")
