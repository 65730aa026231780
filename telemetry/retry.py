from __future__ import annotations

import asyncio
import random
import time
from typing import Awaitable, Callable, Iterable, Optional, Type, TypeVar

from telemetry.logging_utils import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


def _compute_backoff(attempt: int, base_delay: float, factor: float, jitter: float) -> float:
    delay = base_delay * (factor ** attempt)
    if jitter:
        delay += random.uniform(0, jitter)
    return delay


def _log_retry(label: Optional[str], attempt: int, retries: int, delay: float, exc: BaseException) -> None:
    logger.warning(
        "retry_scheduled",
        extra={
            "operation": label or "unnamed",
            "attempt": attempt + 1,
            "retries": retries,
            "delay_s": round(delay, 3),
            "error": str(exc)[:200],
        },
    )


def retry_with_backoff(
    fn: Callable[[], T],
    *,
    retries: int = 3,
    base_delay: float = 0.5,
    factor: float = 2.0,
    jitter: float = 0.1,
    retry_exceptions: Iterable[Type[BaseException]] = (Exception,),
    label: Optional[str] = None,
) -> T:
    """Call ``fn`` until it succeeds; the last failure is re-raised after ``retries`` attempts."""
    retry_on = tuple(retry_exceptions)
    attempt = 0
    while True:
        try:
            return fn()
        except retry_on as exc:
            if attempt >= retries - 1:
                raise
            delay = _compute_backoff(attempt, base_delay, factor, jitter)
            _log_retry(label, attempt, retries, delay, exc)
            time.sleep(delay)
            attempt += 1


async def retry_async_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    retries: int = 3,
    base_delay: float = 0.5,
    factor: float = 2.0,
    jitter: float = 0.1,
    retry_exceptions: Iterable[Type[BaseException]] = (Exception,),
    label: Optional[str] = None,
) -> T:
    """Async twin of :func:`retry_with_backoff`; sleeps without blocking the loop."""
    retry_on = tuple(retry_exceptions)
    attempt = 0
    while True:
        try:
            return await fn()
        except retry_on as exc:
            if attempt >= retries - 1:
                raise
            delay = _compute_backoff(attempt, base_delay, factor, jitter)
            _log_retry(label, attempt, retries, delay, exc)
            await asyncio.sleep(delay)
            attempt += 1
