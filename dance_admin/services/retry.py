"""Bounded retry with exponential backoff for optimistic writes."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from dance_admin.errors import Cancelled, Conflict, LedgerError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3  # retries after the first try
    backoff_factor: float = 1.5
    base_delay: float = 0.1

    def delay(self, retry_number: int) -> float:
        return self.base_delay * (self.backoff_factor ** retry_number)


def check_cancelled(signal: Optional[asyncio.Event], what: str) -> None:
    """Raise Cancelled if the caller aborted before anything was persisted."""
    if signal is not None and signal.is_set():
        raise Cancelled(f"{what} cancelled before it was persisted")


async def run_with_retries(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str,
) -> T:
    """
    Run ``operation`` and re-run it on retryable errors (Conflict, Unavailable).

    Each attempt must re-read whatever state it depends on. Non-retryable
    errors propagate on the first occurrence.
    """
    last_error: Optional[LedgerError] = None
    for attempt in range(policy.attempts + 1):
        try:
            return await operation()
        except LedgerError as e:
            if not e.retryable:
                raise
            last_error = e
            if attempt < policy.attempts:
                wait_time = policy.delay(attempt)
                logger.warning(
                    f"{description} failed (attempt {attempt + 1}/{policy.attempts + 1}), "
                    f"retrying in {wait_time:.2f}s: {e}"
                )
                await asyncio.sleep(wait_time)

    logger.error(f"{description} gave up after {policy.attempts + 1} attempts: {last_error}")
    if isinstance(last_error, Conflict):
        raise Conflict(
            f"{description} lost to concurrent writers after {policy.attempts} retries",
            last_error.details,
        ) from last_error
    raise last_error
