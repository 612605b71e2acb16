"""Retry policy with exponential backoff.

The same RetryConfig drives every retried stage; it can be tested without
running any external process.
"""

import asyncio
import logging
import math
import random
from typing import Awaitable, Callable, Optional, TypeVar

from abrpipe.core.config import Settings
from abrpipe.modules.transcoding.errors import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig:
    """Configuration for retry behavior with exponential backoff.

    max_attempts counts every attempt, the first one included.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 300.0,
        backoff_multiplier: float = 2.0,
        jitter: bool = True,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier
        self.jitter = jitter

    def __repr__(self) -> str:
        return (
            f"RetryConfig(max_attempts={self.max_attempts}, "
            f"initial_delay={self.initial_delay}, max_delay={self.max_delay}, "
            f"backoff_multiplier={self.backoff_multiplier}, jitter={self.jitter})"
        )

    @classmethod
    def for_renditions(cls, config: Settings) -> "RetryConfig":
        """Build the rendition retry policy from settings."""
        return cls(
            max_attempts=config.RENDITION_MAX_ATTEMPTS,
            initial_delay=config.RENDITION_RETRY_INITIAL_DELAY,
            max_delay=config.RENDITION_RETRY_MAX_DELAY,
            backoff_multiplier=config.RENDITION_RETRY_BACKOFF_MULTIPLIER,
            jitter=config.RENDITION_RETRY_JITTER,
        )

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt using exponential backoff.

        Args:
            attempt: The attempt that just failed (1-indexed).

        Returns:
            The delay in seconds, capped at max_delay. With jitter the capped
            delay is scaled by a random factor in [0.75, 1.25].
        """
        if attempt < 1:
            delay = self.initial_delay
        else:
            delay = self.initial_delay * math.pow(self.backoff_multiplier, attempt - 1)
        delay = min(delay, self.max_delay)
        if self.jitter:
            delay *= random.uniform(0.75, 1.25)
        return delay

    def should_retry(self, attempt: int) -> bool:
        """Whether another attempt is allowed after the given one failed."""
        return attempt < self.max_attempts


async def retry_async(
    operation: Callable[[int], Awaitable[T]],
    config: RetryConfig,
    *,
    operation_name: str,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    on_failure: Optional[Callable[[int, BaseException], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run operation until it succeeds or the policy is exhausted.

    Cancellation is never retried.

    Args:
        operation: Coroutine factory receiving the 1-indexed attempt number
        config: Retry policy
        operation_name: Name used in logs and errors
        retry_on: Exception types that count as a failed attempt
        on_failure: Called with (attempt, error) after each failed attempt
        sleep: Awaitable used for backoff delays

    Returns:
        The operation's result

    Raises:
        RetryExhaustedError: After max_attempts failed attempts
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation(attempt)
        except retry_on as exc:
            if on_failure is not None:
                on_failure(attempt, exc)

            if not config.should_retry(attempt):
                logger.warning(
                    "%s failed after %d attempts (max retries exceeded): %s",
                    operation_name, attempt, exc,
                )
                raise RetryExhaustedError(operation_name, attempt, exc) from exc

            delay = config.calculate_delay(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s. Retrying in %.2fs",
                operation_name, attempt, config.max_attempts, exc, delay,
            )
            await sleep(delay)
