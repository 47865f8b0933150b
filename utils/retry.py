# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Retry Utilities - Exponential backoff for storage reads and plan item fetches
"""
import time
import logging
from functools import wraps
from typing import Callable, TypeVar, Any, Optional

logger = logging.getLogger(__name__)

T = TypeVar('T')


def backoff_delay(attempt: int, base_delay: float, max_delay: float,
                  exponential_base: float = 2.0) -> float:
    """Delay before retry number ``attempt`` (0-based), capped at max_delay"""
    return min(base_delay * (exponential_base ** attempt), max_delay)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    retry_on: tuple = (Exception,)
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry the wrapped call on ``retry_on`` exceptions, up to ``max_retries``
    extra attempts. Used for idempotent storage reads, where a dropped
    connection is worth a second try and a 4xx answer is not.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    if attempt == max_retries:
                        logger.error(f"{func.__name__} gave up after {attempt + 1} attempts: "
                                     f"{type(e).__name__}: {e}")
                        raise
                    delay = backoff_delay(attempt, base_delay, max_delay, exponential_base)
                    logger.warning(f"⚠️ {func.__name__} attempt {attempt + 1} failed "
                                   f"({type(e).__name__}); retrying in {delay:.1f}s")
                    time.sleep(delay)

        return wrapper
    return decorator


class RetryContext:
    """
    Retry a block of code with exponential backoff

    Example:
        retry = RetryContext(max_attempts=3, base_delay=1.0)
        while retry.should_retry():
            try:
                result = fetch()
                break
            except UpstreamError as e:
                retry.record_failure(e)
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        sleep: Optional[Callable[[float], None]] = None,
        label: str = "operation"
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.sleep = sleep or time.sleep
        self.label = label
        self.attempt = 0
        self.last_exception = None

    def should_retry(self) -> bool:
        """Check if another attempt is allowed"""
        return self.attempt < self.max_attempts

    def record_failure(self, exception: Exception):
        """Record a failure; re-raise on the last attempt, else sleep"""
        self.last_exception = exception
        self.attempt += 1

        if self.attempt >= self.max_attempts:
            logger.error(f"{self.label} failed after {self.max_attempts} attempts: {exception}")
            raise exception

        delay = backoff_delay(self.attempt - 1, self.base_delay, self.max_delay, self.exponential_base)
        logger.warning(
            f"{self.label} attempt {self.attempt}/{self.max_attempts} failed: {exception}. "
            f"Retrying in {delay:.1f} seconds..."
        )
        self.sleep(delay)
