"""Graceful shutdown handling via SIGTERM / SIGINT."""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Callable

import structlog

logger = structlog.get_logger()

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def install_signal_handlers(on_shutdown: Callable[[], None]) -> Callable[[], None]:
    """Register SIGTERM and SIGINT handlers that call *on_shutdown*.

    Call this once from the running event loop.  The callback runs on the
    loop thread, so it may touch loop-bound state directly.  Returns a
    function that removes the handlers again.
    """
    loop = asyncio.get_running_loop()

    def _handle(sig: signal.Signals) -> None:
        logger.info("shutdown_signal_received", signal=sig.name)
        on_shutdown()

    for sig in SHUTDOWN_SIGNALS:
        loop.add_signal_handler(sig, _handle, sig)

    def _remove() -> None:
        for sig in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)

    return _remove
