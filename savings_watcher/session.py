"""ConnectionManager: owns the mail session and its lifecycle state machine.

::

    DISCONNECTED -> CONNECTING -> READY -> CLOSING -> DISCONNECTED
                        |           |         |
                        +---------> ERROR <---+
                                      |
                       CONNECTING <---+---> DISCONNECTED

ERROR goes back to CONNECTING after ``connection_retry_ms`` (tenacity
drives the loop) or, when retrying is disabled, ends the process.
"""

from __future__ import annotations

import asyncio

import structlog

from .config import ImapConfig
from .context import PipelineContext
from .errors import FatalError, HookError, MailConnectionError, MailOperationError
from .models import (
    ALLOWED_TRANSITIONS,
    MailArrived,
    SessionClosed,
    SessionFailed,
    SessionState,
)
from .retry import reconnect_policy
from .searcher import MailboxSearcher

logger = structlog.get_logger()


class ConnectionManager:
    """Connects, opens the mailbox, and dispatches session events."""

    def __init__(self, context: PipelineContext, searcher: MailboxSearcher) -> None:
        self._context = context
        self._searcher = searcher
        self._state = SessionState.DISCONNECTED
        self._shutdown = asyncio.Event()
        self._reached_ready = False

    @property
    def state(self) -> SessionState:
        return self._state

    def _transition(self, new: SessionState) -> None:
        if new not in ALLOWED_TRANSITIONS[self._state]:
            raise RuntimeError(f"invalid session transition {self._state.value} -> {new.value}")
        logger.debug("session_state_changed", previous=self._state.value, current=new.value)
        self._state = new

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Serve until a graceful shutdown completes.

        Raises:
            FatalError: On missing credentials, an unopenable mailbox, or a
                connection error while retrying is disabled.
        """
        config, hooks = self._context.config, self._context.hooks
        settings = hooks.resolve_pre_connect(config.imap)
        if not settings.has_credentials():
            logger.critical("imap_credentials_missing", host=settings.host)
            raise FatalError("IMAP username and password are required")

        try:
            async for attempt in reconnect_policy(config.connection_retry_ms, sleep=self._sleep):
                with attempt:
                    await self._serve(settings)
        except (FatalError, HookError):
            await self._context.session.abort()
            raise

    async def _serve(self, settings: ImapConfig) -> None:
        session = self._context.session
        if self._shutdown.is_set():
            if self._state is SessionState.ERROR:
                self._transition(SessionState.DISCONNECTED)
            return

        self._transition(SessionState.CONNECTING)
        logger.info("imap_connecting", host=settings.host, port=settings.port)
        try:
            await session.connect(settings)
        except MailConnectionError as exc:
            await self._on_error(exc)

        if self._shutdown.is_set():
            self._transition(SessionState.CLOSING)
            session.request_close()
        else:
            self._transition(SessionState.READY)
            self._reached_ready = True
            await self._open_mailbox()

        while True:
            event = await session.next_event()
            if isinstance(event, MailArrived):
                await self._on_mail(event.count)
            elif isinstance(event, SessionFailed):
                await self._on_error(event.error)
            elif isinstance(event, SessionClosed):
                if self._state is SessionState.READY:
                    self._transition(SessionState.CLOSING)
                self._notify_disconnect(event.had_error)
                self._transition(SessionState.DISCONNECTED)
                logger.info("imap_connection_closed", had_error=event.had_error)
                return

    async def _open_mailbox(self) -> None:
        name = self._context.hooks.resolve_pre_open_mailbox(self._context.config.mailbox)
        try:
            await self._context.session.open_mailbox(name)
        except (MailOperationError, MailConnectionError) as exc:
            logger.critical("open_mailbox_failed", mailbox=name, error=str(exc))
            self._transition(SessionState.ERROR)
            self._transition(SessionState.DISCONNECTED)
            raise FatalError(f"Could not open mailbox {name!r}: {exc}") from exc

    async def _on_mail(self, count: int) -> None:
        logger.info("new_mail", count=count)
        if self._state is not SessionState.READY:
            logger.debug("new_mail_ignored", state=self._state.value)
            return
        try:
            await self._searcher.search()
        except HookError as exc:
            logger.error("search_cycle_aborted", stage=exc.stage)
        except MailConnectionError as exc:
            await self._on_error(exc)

    async def _on_error(self, error: BaseException) -> None:
        """Tear the session down, then raise for the retry loop or as fatal."""
        self._transition(SessionState.ERROR)
        await self._context.session.abort()
        if self._reached_ready:
            self._reached_ready = False
            self._notify_disconnect(True)

        if self._context.config.connection_retry_ms <= 0:
            logger.critical("imap_connection_error", error=str(error), retry=False)
            self._transition(SessionState.DISCONNECTED)
            raise FatalError(f"IMAP connection error: {error}") from error
        if isinstance(error, MailConnectionError):
            raise error
        raise MailConnectionError(str(error)) from error

    def _notify_disconnect(self, had_error: bool) -> None:
        try:
            self._context.hooks.notify_post_disconnect(had_error)
        except HookError as exc:
            # observational only; the registry already logged the traceback
            logger.debug("post_disconnect_ignored", error=str(exc))

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
        except TimeoutError:
            pass

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def request_shutdown(self) -> None:
        """Ask for a graceful close; an in-flight batch is allowed to finish."""
        if self._shutdown.is_set():
            return
        self._shutdown.set()
        logger.info("shutdown_requested", state=self._state.value)
        if self._state is SessionState.READY:
            self._transition(SessionState.CLOSING)
            self._context.session.request_close()
