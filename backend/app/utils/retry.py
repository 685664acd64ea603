"""
Capped exponential backoff for calls to external services.
"""
import logging
from typing import Callable

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


def async_retrying(
    *,
    max_attempts: int,
    min_wait: float,
    max_wait: float,
    should_retry: Callable[[BaseException], bool],
) -> AsyncRetrying:
    """
    Build an AsyncRetrying controller.

    Usage:
        async for attempt in async_retrying(max_attempts=3, min_wait=1, max_wait=8, should_retry=is_transient):
            with attempt:
                return await call()

    The last exception is re-raised unchanged once attempts run out.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max(1, int(max_attempts))),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception(should_retry),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
