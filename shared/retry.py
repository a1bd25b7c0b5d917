"""
Retry mechanism for resilient operations.
"""

import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from shared.logging import get_logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 4,
                 base_delay: float = 1.0,
                 max_delay: float = 10.0,
                 exponential_base: float = 2.0,
                 jitter: bool = False,
                 backoff_strategy: str = "exponential"):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy

    @classmethod
    def from_retries(cls, retries: int, base_delay: float = 1.0, max_delay: float = 10.0) -> "RetryConfig":
        """Build a config for one initial attempt followed by ``retries`` retries."""
        return cls(max_attempts=max(0, retries) + 1, base_delay=base_delay, max_delay=max_delay)


@dataclass
class RetryState:
    """Per-request retry bookkeeping, discarded once the request settles."""

    attempt: int
    max_attempts: int
    backoff_ms: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Delay in seconds after the given (1-based) failed attempt."""
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    else:
        delay = config.base_delay

    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)


async def retry_async(func: Callable[[], Awaitable[Any]],
                      config: RetryConfig,
                      *,
                      exceptions: tuple = (Exception,),
                      should_retry: Optional[Callable[[BaseException], bool]] = None,
                      sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                      name: str = "operation") -> Any:
    """Run ``func`` until it succeeds or attempts are exhausted.

    The last exception is re-raised unchanged so callers can still inspect
    status codes and error types.
    """
    logger = get_logger(f"retry.{name}")
    state = RetryState(attempt=0, max_attempts=max(1, config.max_attempts))

    while True:
        state.attempt += 1
        try:
            result = await func()
            if state.attempt > 1:
                logger.info("Retry succeeded", attempt=state.attempt, operation=name)
            return result

        except exceptions as e:
            if state.exhausted or (should_retry is not None and not should_retry(e)):
                if state.attempt > 1:
                    logger.error(
                        "All retry attempts exhausted",
                        attempt=state.attempt,
                        max_attempts=state.max_attempts,
                        operation=name,
                        error=str(e)
                    )
                raise

            delay = calculate_delay(state.attempt, config)
            state.backoff_ms = int(delay * 1000)

            logger.warning(
                "Retry attempt failed, waiting before next attempt",
                attempt=state.attempt,
                backoff_ms=state.backoff_ms,
                operation=name,
                error=str(e)
            )

            await sleep(delay)


def retry_on_exception(exceptions: tuple = (Exception,),
                       config: Optional[RetryConfig] = None) -> Callable:
    """Decorator for retrying async functions on exceptions."""

    if config is None:
        config = RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            return await retry_async(
                lambda: func(*args, **kwargs),
                config,
                exceptions=exceptions,
                name=func.__name__
            )

        return wrapper

    return decorator
