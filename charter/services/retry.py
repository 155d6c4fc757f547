"""Bounded retry with backoff for store write conflicts."""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from charter.logging import get_logger
from charter.storage.document_store import WriteConflictError

logger = get_logger(__name__)

T = TypeVar("T")

WRITE_CONFLICT_CODE = 112


def is_write_conflict(exc: BaseException) -> bool:
    """Recognise concurrent-modification errors from any store backend."""
    if isinstance(exc, WriteConflictError):
        return True
    if getattr(exc, "code", None) == WRITE_CONFLICT_CODE:
        return True
    if getattr(exc, "code_name", None) == "WriteConflict" or getattr(exc, "codeName", None) == "WriteConflict":
        return True
    return "conflict" in str(exc).lower()


@dataclass
class RetryPolicy:
    """Retry an async operation on write conflicts.

    Attempt ``n`` (0-based) that fails with a conflict waits
    ``base_delay * (n + 1)`` plus up to ``jitter`` seconds before the next
    attempt. After ``max_retries`` retries, or on any other error, the last
    exception is re-raised.
    """

    max_retries: int = 4
    base_delay: float = 0.15
    jitter: float = 0.1
    should_retry: Callable[[BaseException], bool] = is_write_conflict
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def delay_for(self, attempt: int) -> float:
        """Backoff before the retry following failed ``attempt``."""
        return self.base_delay * (attempt + 1) + random.uniform(0, self.jitter)

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` until it succeeds or retries are exhausted."""
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as e:
                if not self.should_retry(e) or attempt >= self.max_retries:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "write_conflict_retry",
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay_seconds=round(delay, 3),
                    error=str(e),
                )
                await self.sleep(delay)
                attempt += 1
