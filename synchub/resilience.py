"""
Resilience patterns for platform API clients.

Provides:
- Exponential backoff retry for transient failures
- Token bucket rate limiter (per platform client)
"""
import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Optional, Callable, Any

from synchub.observability import get_logger

logger = get_logger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 2
    base_delay: float = 0.5  # seconds
    max_delay: float = 5.0  # seconds
    exponential_base: float = 2.0
    jitter: float = 0.1  # random jitter factor

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the given (1-based) failed attempt."""
        delay = min(
            self.base_delay * (self.exponential_base ** (attempt - 1)),
            self.max_delay
        )
        return delay + delay * self.jitter * random.random()


async def retry_with_backoff(
    func: Callable[..., Any],
    *args,
    config: Optional[RetryConfig] = None,
    retryable_exceptions: tuple = (Exception,),
    **kwargs
) -> Any:
    """
    Execute an async function with exponential backoff retry.

    Only ``retryable_exceptions`` are retried; anything else propagates
    immediately (authentication failures must never be retried).

    Raises:
        Last exception if all retries fail
    """
    config = config or RetryConfig()

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            if attempt == config.max_attempts:
                logger.error(
                    f"All {config.max_attempts} retry attempts failed",
                    extra={"error": str(e)}
                )
                raise

            delay = config.delay_for(attempt)
            retry_after = getattr(e, "retry_after", None)
            if retry_after:
                delay = min(max(delay, float(retry_after)), config.max_delay)

            logger.warning(
                f"Attempt {attempt} failed, retrying in {delay:.2f}s",
                extra={"attempt": attempt, "delay": delay, "error": str(e)}
            )
            await asyncio.sleep(delay)


@dataclass
class RateLimiter:
    """
    Token bucket rate limiter.

    Args:
        rate: Requests per second
        burst: Maximum burst size
    """
    rate: float = 10.0
    burst: int = 20
    tokens: float = field(default=0, init=False)
    last_update: float = field(default=0, init=False)

    def __post_init__(self):
        self.tokens = float(self.burst)
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self, timeout: float = 10.0) -> bool:
        """
        Acquire a token, waiting if necessary.

        Returns:
            True if token acquired, False if timeout
        """
        start_time = time.monotonic()

        while True:
            async with self._lock:
                now = time.monotonic()
                elapsed = now - self.last_update
                self.tokens = min(self.burst, self.tokens + elapsed * self.rate)
                self.last_update = now

                if self.tokens >= 1:
                    self.tokens -= 1
                    return True

                wait_time = (1 - self.tokens) / self.rate

            if time.monotonic() - start_time >= timeout:
                return False

            await asyncio.sleep(min(wait_time, 0.1))
