"""
Retry policy configuration and decorator.

Provides exponential backoff with jitter for in-process retries, used around
asset compare-and-swap writes. Queue-level retries are configured on the
Celery tasks themselves.
"""

from __future__ import annotations

import functools
import random
import time
from typing import Any, Callable, TypeVar

from loguru import logger
from pydantic import BaseModel

from .errors import RetryableError, ServiceError

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Configuration for retry behavior.

    The delay for attempt N is:
    min(base_delay * (exponential_base ** N), max_delay) plus up to 25% jitter.

    Attributes:
        max_attempts: Maximum number of attempts (including initial).
        base_delay: Initial delay in seconds between retries.
        max_delay: Maximum delay in seconds (caps backoff).
        exponential_base: Base for exponential backoff calculation.
        jitter: Whether to add random jitter to delays.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True

    model_config = {"frozen": True}

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt number (0-indexed)."""
        delay = self.base_delay * (self.exponential_base**attempt)
        delay = min(delay, self.max_delay)

        if self.jitter:
            jitter_amount = delay * 0.25 * random.random()
            delay += jitter_amount

        return delay


DEFAULT_RETRY_POLICY = RetryPolicy()

# Version conflicts resolve quickly; keep the backoff short.
CONFLICT_RETRY_POLICY = RetryPolicy(max_attempts=5, base_delay=0.05, max_delay=1.0)


def sync_with_retry(
    policy: RetryPolicy | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for retrying synchronous functions on RetryableError.

    Non-retryable ServiceErrors and unexpected exceptions propagate
    immediately.

    Args:
        policy: Retry policy to use. Defaults to DEFAULT_RETRY_POLICY.

    Example:
        @sync_with_retry(CONFLICT_RETRY_POLICY)
        def save(asset): ...
    """
    retry_policy = policy or DEFAULT_RETRY_POLICY

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            last_exception: Exception | None = None

            for attempt in range(retry_policy.max_attempts):
                try:
                    return func(*args, **kwargs)
                except RetryableError as e:
                    last_exception = e
                    if attempt + 1 >= retry_policy.max_attempts:
                        logger.warning(
                            f"[{e.debug_id}] Max retries ({retry_policy.max_attempts}) "
                            f"exceeded for {func.__name__}: {e.message_safe}"
                        )
                        raise

                    delay = retry_policy.calculate_delay(attempt)
                    logger.info(
                        f"[{e.debug_id}] Retry {attempt + 1}/{retry_policy.max_attempts} "
                        f"for {func.__name__} in {delay:.2f}s: {e.message_safe}"
                    )

                    time.sleep(delay)
                except ServiceError:
                    raise
                except Exception as e:
                    logger.error(f"Unexpected error in {func.__name__}: {e}")
                    raise

            if last_exception:
                raise last_exception
            raise RuntimeError(f"Retry loop exited unexpectedly in {func.__name__}")

        return wrapper  # type: ignore

    return decorator
