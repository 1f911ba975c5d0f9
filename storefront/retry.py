"""Retry executor — bounded exponential backoff for any async operation.

Delay before attempt n+1 is base_delay * 2**n (n is 0-indexed), uncapped
and without jitter. After max_retries + 1 failed attempts the last error
is raised again wrapped in RetryExhaustedError, tagged with the operation
name. Exceptions outside retry_on are not retried and propagate as-is.

Usage:
    items = await with_retry(lambda: connector.search_page(cursor), "catalog search")
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger

T = TypeVar("T")


class RetryExhaustedError(Exception):
    """Every attempt of a retried operation failed."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{operation} failed after {attempts} attempts: {last_error}")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    name: str,
    max_retries: int = 3,
    base_delay: float = 1.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> T:
    last_error: BaseException | None = None

    for attempt in range(max_retries + 1):
        try:
            result = await operation()
        except retry_on as e:
            last_error = e
            if attempt == max_retries:
                break
            delay = base_delay * 2**attempt
            logger.warning(
                "{} failed (attempt {}/{}): {}, retrying in {:.2f}s",
                name, attempt + 1, max_retries + 1, e, delay,
            )
            await asyncio.sleep(delay)
            continue

        if attempt > 0:
            logger.info("{} succeeded after {} retries", name, attempt)
        return result

    logger.error("{} failed after {} attempts: {}", name, max_retries + 1, last_error)
    raise RetryExhaustedError(name, max_retries + 1, last_error) from last_error
