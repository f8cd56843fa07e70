from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

T = TypeVar("T")

log = logging.getLogger("retry")


class RetryExecutor:
    """
    Bounded retry with a fixed delay between attempts.

    This wraps a whole unit of ingestion work. It sits above the provider's own
    per-request exponential backoff, so one cycle-level attempt may already
    contain several request-level retries.
    """

    def __init__(self, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: int,
        delay: float,
        name: str = "operation",
    ) -> T:
        """
        Run `operation` up to max_retries + 1 times.
        Returns its result on the first success; re-raises the last error when attempts run out.
        """
        attempt = 0
        while True:
            try:
                result = await operation()
            except Exception as e:
                if attempt >= max_retries:
                    log.error("Failed to %s after %d retries: %s", name, max_retries, e)
                    raise
                attempt += 1
                log.warning("Failed to %s (attempt %d): %s", name, attempt, e)
                await self._sleep(delay)
                continue

            log.info("Successfully completed %s", name)
            return result
