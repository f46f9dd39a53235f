"""Retry policy for transient fetch failures."""

import asyncio
from typing import Awaitable, Callable, Sequence

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_chain,
    wait_fixed,
)

from wholesale.core.exceptions import TransientFetchError

logger = structlog.get_logger(__name__)

DEFAULT_TRANSIENT_BACKOFF = (0.3, 0.9)


def _log_before_sleep(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "transient_fetch_retry",
        attempt=retry_state.attempt_number,
        sleep_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(exc),
    )


def transient_retrying(
    backoff: Sequence[float] = DEFAULT_TRANSIENT_BACKOFF,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AsyncRetrying:
    """Build a tenacity controller that retries only TransientFetchError.

    One retry is made per backoff entry, waiting each delay in turn
    (300ms then 900ms by default). Any other exception, and the last
    transient one, is re-raised unchanged.

    Args:
        backoff: Delays in seconds between consecutive attempts
        sleep: Awaitable sleep function, replaceable in tests
    """
    waits = [wait_fixed(delay) for delay in backoff] or [wait_fixed(0)]
    return AsyncRetrying(
        stop=stop_after_attempt(len(backoff) + 1),
        wait=wait_chain(*waits),
        retry=retry_if_exception_type(TransientFetchError),
        before_sleep=_log_before_sleep,
        sleep=sleep,
        reraise=True,
    )
