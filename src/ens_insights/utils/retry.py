"""Retry bookkeeping and timeout helpers for external calls."""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, TypeVar

import httpx

from ..exceptions import OperationTimeoutError

T = TypeVar('T')


def backoff_delay(retry_index: int, base_delay: float = 1.0, max_delay: float = 5.0) -> float:
    """Exponential backoff delay for the given retry (0-based), capped at ``max_delay``."""
    return min(base_delay * (2 ** retry_index), max_delay)


def is_timeout_error(error: BaseException) -> bool:
    """Classify an error as a provider timeout."""
    if isinstance(error, httpx.TimeoutException):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in (408, 504)
    return 'timeout' in str(error).lower()


@dataclass(frozen=True)
class RetryState:
    """Position in a bounded retry loop for one page fetch.

    ``attempt`` counts attempts already made; ``current_limit`` is the page
    size the next attempt will request.
    """

    attempt: int
    current_limit: int
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 5.0

    @classmethod
    def initial(cls, limit: int, max_retries: int = 3,
                base_delay: float = 1.0, max_delay: float = 5.0) -> 'RetryState':
        return cls(attempt=0, current_limit=limit, max_retries=max_retries,
                   base_delay=base_delay, max_delay=max_delay)

    @property
    def exhausted(self) -> bool:
        """True once the first attempt and every retry have been used."""
        return self.attempt > self.max_retries

    @property
    def delay(self) -> float:
        """Delay to wait before the next attempt."""
        return backoff_delay(self.attempt - 1, self.base_delay, self.max_delay)

    def after_failure(self, timed_out: bool) -> 'RetryState':
        """State for the next attempt after a failed one.

        Only a timeout on the very first attempt halves the page size.
        """
        limit = self.current_limit
        if timed_out and self.attempt == 0 and limit > 1:
            limit = max(1, limit // 2)
        return RetryState(
            attempt=self.attempt + 1,
            current_limit=limit,
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )


async def with_timeout(awaitable: Awaitable[T], timeout_seconds: float, operation_name: str) -> T:
    """Race an operation against a timer.

    Raises:
        OperationTimeoutError: if the timer wins
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        raise OperationTimeoutError(f"{operation_name} timed out after {timeout_seconds}s")
