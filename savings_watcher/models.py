"""Session states and the events exchanged with the mail session."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SessionState(str, Enum):
    """Lifecycle state of the mail session owned by the ConnectionManager."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    CLOSING = "closing"
    ERROR = "error"


# Forward-only lifecycle plus the CONNECTING -> READY -> ERROR -> CONNECTING retry cycle.
ALLOWED_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.DISCONNECTED: frozenset({SessionState.CONNECTING}),
    SessionState.CONNECTING: frozenset(
        {SessionState.READY, SessionState.ERROR, SessionState.CLOSING}
    ),
    SessionState.READY: frozenset({SessionState.CLOSING, SessionState.ERROR}),
    SessionState.CLOSING: frozenset({SessionState.DISCONNECTED, SessionState.ERROR}),
    SessionState.ERROR: frozenset({SessionState.CONNECTING, SessionState.DISCONNECTED}),
}


# ------------------------------------------------------------------
# Session-level signals
# ------------------------------------------------------------------


@dataclass(frozen=True)
class MailArrived:
    """New mail was announced in the open mailbox."""

    count: int


@dataclass(frozen=True)
class SessionFailed:
    """The session hit a connection-level error and is no longer usable."""

    error: BaseException


@dataclass(frozen=True)
class SessionClosed:
    """The session finished closing."""

    had_error: bool = False


SessionEvent = MailArrived | SessionFailed | SessionClosed


# ------------------------------------------------------------------
# Per-fetch signals, keyed by sequence number
# ------------------------------------------------------------------


@dataclass(frozen=True)
class MessageStarted:
    seqno: int
    uid: int | None = None


@dataclass(frozen=True)
class BodyReceived:
    seqno: int
    section: str
    text: str


@dataclass(frozen=True)
class AttributesReceived:
    seqno: int
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MessageEnded:
    seqno: int


FetchEvent = MessageStarted | BodyReceived | AttributesReceived | MessageEnded
