"""MailSession: the ABC the pipeline drives the mail server through."""

from __future__ import annotations

import abc
from collections.abc import AsyncIterator, Sequence
from typing import Any

from .config import FetchSpec, ImapConfig
from .models import FetchEvent, SessionEvent


class MailSession(abc.ABC):
    """Abstract mail-protocol session.

    Implementations translate server-side failures into
    :class:`~savings_watcher.errors.MailConnectionError` (the session is
    gone; reconnect) or :class:`~savings_watcher.errors.MailOperationError`
    (one command failed; the session is still usable).
    """

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def connect(self, settings: ImapConfig) -> None:
        """Connect and log in."""

    @abc.abstractmethod
    async def open_mailbox(self, name: str) -> int:
        """Select *name* read-write and return its message count."""

    @abc.abstractmethod
    async def next_event(self) -> SessionEvent:
        """Wait for the next session signal (mail, error, or close)."""

    @abc.abstractmethod
    def request_close(self) -> None:
        """Ask for a graceful close.

        Must not interrupt an operation in flight.  ``next_event`` returns
        ``SessionClosed`` once the session has logged out.
        """

    @abc.abstractmethod
    async def abort(self) -> None:
        """Drop the connection without a protocol-level goodbye."""

    def server_supports(self, capability: str) -> bool:
        """Whether the server advertised *capability* (e.g. ``X-GM-EXT-1``)."""
        return False

    # ------------------------------------------------------------------
    # Mailbox operations
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def search(self, criteria: Sequence[Any]) -> list[int]:
        """Return the UIDs matching *criteria*."""

    @abc.abstractmethod
    def fetch(self, uids: Sequence[int], spec: FetchSpec) -> AsyncIterator[FetchEvent]:
        """Fetch *uids* as one batch, yielding per-message events.

        The iterator is exhausted when the whole batch has been delivered.
        """

    @abc.abstractmethod
    async def add_flags(self, uids: Sequence[int], flags: Sequence[str]) -> None: ...

    @abc.abstractmethod
    async def move(self, uids: Sequence[int], mailbox: str) -> None: ...

    @abc.abstractmethod
    async def add_labels(self, uids: Sequence[int], labels: Sequence[str]) -> None: ...

    @abc.abstractmethod
    async def expunge(self) -> None: ...
