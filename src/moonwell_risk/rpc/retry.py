"""Retry logic with exponential backoff for chain and API calls."""

import logging
import time
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class RetryConfig:
    """
    Configuration for retry behavior.

    Parameters
    ----------
    max_retries : int
        Maximum number of retry attempts
    base_delay : float
        Initial delay in seconds before first retry
    max_delay : float
        Maximum delay between retries
    exponential_base : float
        Base for exponential backoff calculation
    retry_on : tuple[type[BaseException], ...]
        Exception types worth retrying; anything else propagates at once

    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
    ) -> None:
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.retry_on = retry_on

    def get_delay(self, attempt: int) -> float:
        """
        Calculate delay for a given retry attempt using exponential backoff.

        Parameters
        ----------
        attempt : int
            Current attempt number (0-indexed)

        Returns
        -------
        float
            Delay in seconds

        """
        delay = self.base_delay * (self.exponential_base**attempt)
        return min(delay, self.max_delay)


def call_with_retry(
    func: Callable[..., T],
    *args: Any,
    config: RetryConfig | None = None,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """
    Call ``func`` and retry it on failure with exponential backoff.

    The last exception is re-raised once every attempt is exhausted.
    """
    config = config or RetryConfig()

    for attempt in range(config.max_retries + 1):
        try:
            return func(*args, **kwargs)
        except config.retry_on as e:
            # Don't retry on last attempt
            if attempt == config.max_retries:
                logger.debug("%s failed after %d attempts", getattr(func, "__name__", func), attempt + 1)
                raise

            delay = config.get_delay(attempt)
            logger.debug(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                getattr(func, "__name__", func),
                attempt + 1,
                config.max_retries + 1,
                e,
                delay,
            )
            sleep(delay)

    msg = "max_retries must not be negative"
    raise ValueError(msg)


def with_retry(config: RetryConfig | None = None) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator to add retry logic with exponential backoff to a function.

    Parameters
    ----------
    config : RetryConfig | None
        Retry configuration. Uses default config if None.

    Returns
    -------
    Callable
        Decorated function with retry logic

    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return call_with_retry(func, *args, config=config, **kwargs)

        return wrapper

    return decorator
