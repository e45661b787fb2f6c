"""Tenacity reconnect policy driven by ``connection_retry_ms``."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_never,
    wait_fixed,
)

from .errors import MailConnectionError

logger = structlog.get_logger()


def _log_reconnect(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    logger.error(
        "imap_connection_error",
        error=str(outcome.exception()) if outcome else None,
        attempt=retry_state.attempt_number,
        reconnect_in_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
    )


def reconnect_policy(
    delay_ms: int,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AsyncRetrying:
    """Return an ``AsyncRetrying`` that reconnects after a fixed delay.

    Only :class:`MailConnectionError` is retried; there is no backoff,
    no jitter, and no cap on the number of attempts.  Any other exception
    propagates from the first attempt that raises it.

    Usage::

        async for attempt in reconnect_policy(config.connection_retry_ms):
            with attempt:
                await serve()
    """
    return AsyncRetrying(
        stop=stop_never,
        wait=wait_fixed(max(delay_ms, 0) / 1000),
        retry=retry_if_exception_type(MailConnectionError),
        before_sleep=_log_reconnect,
        sleep=sleep,
        reraise=True,
    )
