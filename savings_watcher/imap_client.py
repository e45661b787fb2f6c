"""IMAP implementation of :class:`MailSession` wrapping stdlib imaplib with asyncio.to_thread."""

from __future__ import annotations

import asyncio
import imaplib
import re
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any, TypeVar

import structlog

from .config import FetchSpec, ImapConfig
from .errors import MailConnectionError, MailOperationError
from .interface import MailSession
from .models import (
    AttributesReceived,
    BodyReceived,
    FetchEvent,
    MailArrived,
    MessageEnded,
    MessageStarted,
    SessionClosed,
    SessionEvent,
    SessionFailed,
)

logger = structlog.get_logger()

T = TypeVar("T")

SYSTEM_FLAGS = frozenset({"SEEN", "ANSWERED", "FLAGGED", "DELETED", "DRAFT", "RECENT"})

_FETCH_START = re.compile(rb"^(\d+) \(")
_LITERAL_SECTION = re.compile(rb"BODY\[([^\]]*)\](?:<\d+>)? \{\d+\}$")
_UID = re.compile(rb"UID (\d+)")
_FLAGS = re.compile(rb"FLAGS \(([^)]*)\)")
_NEEDS_QUOTING = re.compile(r'[\s()"{}%*\\]')


@dataclass
class FetchedMessage:
    """One message of a FETCH response, split into its body sections."""

    seqno: int
    uid: int | None = None
    flags: list[str] = field(default_factory=list)
    sections: list[tuple[str, bytes]] = field(default_factory=list)


# ------------------------------------------------------------------
# Wire formatting helpers
# ------------------------------------------------------------------


def quote(token: str) -> str:
    """Quote *token* as an IMAP string when it is not a plain atom."""
    if token.startswith('"') and token.endswith('"') and len(token) > 1:
        return token
    if not token or _NEEDS_QUOTING.search(token):
        escaped = token.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return token


def format_flag(flag: str) -> str:
    """``Seen`` -> ``\\Seen``; keywords and already-prefixed flags are kept."""
    if flag.startswith("\\"):
        return flag
    if flag.upper() in SYSTEM_FLAGS:
        return "\\" + flag.capitalize()
    return flag


def format_uid_set(uids: Iterable[int]) -> str:
    return ",".join(str(uid) for uid in uids)


def format_criteria(criteria: Iterable[Any]) -> list[str]:
    """Flatten nested criteria (``["UNSEEN", ["FROM", "bank"]]``) into IMAP tokens."""
    tokens: list[str] = []
    for item in criteria:
        if isinstance(item, (list, tuple)):
            tokens.extend(format_criteria(item))
        elif isinstance(item, date):
            tokens.append(item.strftime("%d-%b-%Y"))
        elif isinstance(item, int):
            tokens.append(str(item))
        else:
            tokens.append(quote(str(item)))
    return tokens


def format_fetch_items(spec: FetchSpec) -> str:
    body = "BODY" if spec.mark_seen else "BODY.PEEK"
    items = ["UID", "FLAGS", *(f"{body}[{section}]" for section in spec.bodies)]
    return "(" + " ".join(items) + ")"


def parse_fetch_response(data: Sequence[Any]) -> list[FetchedMessage]:
    """Split raw ``imaplib`` FETCH data into per-message records.

    ``imaplib`` delivers each literal as a ``(prefix, payload)`` tuple and
    the text between/after literals as plain bytes, so one message may span
    several entries.
    """
    messages: list[FetchedMessage] = []
    current: FetchedMessage | None = None

    for entry in data:
        if entry is None:
            continue
        if isinstance(entry, tuple):
            head, payload = entry[0], entry[1]
        else:
            head, payload = entry, None

        start = _FETCH_START.match(head)
        if start:
            current = FetchedMessage(seqno=int(start.group(1)))
            messages.append(current)
        if current is None:
            continue

        uid = _UID.search(head)
        if uid:
            current.uid = int(uid.group(1))
        flags = _FLAGS.search(head)
        if flags:
            current.flags = flags.group(1).decode("ascii", errors="replace").split()
        if payload is not None:
            section = _LITERAL_SECTION.search(head)
            name = section.group(1).decode("ascii", errors="replace") if section else ""
            current.sections.append((name, payload))

    return [m for m in messages if m.uid is not None or m.sections]


# ------------------------------------------------------------------
# Session
# ------------------------------------------------------------------


class ImapSession(MailSession):
    """Async-friendly IMAP session.

    All blocking ``imaplib`` operations are wrapped with
    ``asyncio.to_thread()``.  New mail is detected by polling ``NOOP``
    every ``poll_interval_seconds`` and watching the ``EXISTS`` count.
    """

    def __init__(self) -> None:
        self._conn: imaplib.IMAP4_SSL | imaplib.IMAP4 | None = None
        self._settings: ImapConfig | None = None
        self._capabilities: frozenset[str] = frozenset()
        self._exists = 0
        self._announce: int | None = None
        self._close_requested = asyncio.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self, settings: ImapConfig) -> None:
        self._settings = settings
        self._close_requested = asyncio.Event()
        try:
            await asyncio.to_thread(self._connect_sync, settings)
        except (imaplib.IMAP4.error, OSError) as exc:
            self._conn = None
            raise MailConnectionError(f"Could not connect to {settings.host}: {exc}") from exc
        logger.info("imap_connected", host=settings.host, port=settings.port)

    def _connect_sync(self, settings: ImapConfig) -> None:
        if settings.use_ssl:
            self._conn = imaplib.IMAP4_SSL(settings.host, settings.port)
        else:
            self._conn = imaplib.IMAP4(settings.host, settings.port)
        assert settings.username is not None and settings.password is not None
        self._conn.login(settings.username, settings.password.get_secret_value())
        typ, data = self._conn.capability()
        if typ == "OK" and data and data[-1]:
            self._capabilities = frozenset(data[-1].decode("ascii", errors="replace").upper().split())
        else:
            self._capabilities = frozenset(cap.upper() for cap in self._conn.capabilities)

    async def open_mailbox(self, name: str) -> int:
        count = await self._run(self._select_sync, name)
        self._exists = count
        self._announce = count if count > 0 else None
        logger.info("mailbox_opened", mailbox=name, messages=count)
        return count

    def _select_sync(self, name: str) -> int:
        conn = self._require_conn()
        typ, data = conn.select(quote(name))
        if typ != "OK":
            raise imaplib.IMAP4.error(f"SELECT {name} failed: {_describe(data)}")
        return int(data[0]) if data and data[0] else 0

    async def next_event(self) -> SessionEvent:
        if self._announce is not None and not self._close_requested.is_set():
            count, self._announce = self._announce, None
            return MailArrived(count)

        interval = self._settings.poll_interval_seconds if self._settings else 30.0
        while True:
            if self._close_requested.is_set():
                await self._logout()
                return SessionClosed(had_error=False)
            try:
                await asyncio.wait_for(self._close_requested.wait(), timeout=interval)
                continue
            except TimeoutError:
                pass
            try:
                arrived = await self._run(self._poll_sync)
            except (MailConnectionError, MailOperationError) as exc:
                return SessionFailed(exc)
            if arrived:
                return MailArrived(arrived)

    def _poll_sync(self) -> int:
        conn = self._require_conn()
        typ, data = conn.noop()
        if typ != "OK":
            raise imaplib.IMAP4.abort(f"NOOP failed: {_describe(data)}")
        _, expunged = conn.response("EXPUNGE")
        self._exists -= sum(1 for item in expunged if item is not None)
        _, exists = conn.response("EXISTS")
        latest = [int(item) for item in exists if item is not None]
        if not latest:
            return 0
        count = latest[-1]
        arrived = max(count - self._exists, 0)
        self._exists = count
        return arrived

    def request_close(self) -> None:
        self._close_requested.set()

    async def _logout(self) -> None:
        if self._conn is None:
            return
        try:
            await asyncio.to_thread(self._conn.logout)
        except (imaplib.IMAP4.error, OSError) as exc:
            logger.debug("imap_logout_failed", error=str(exc))
        self._conn = None
        logger.info("imap_disconnected")

    async def abort(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            await asyncio.to_thread(conn.shutdown)
        except (imaplib.IMAP4.error, OSError) as exc:
            logger.debug("imap_shutdown_failed", error=str(exc))

    def server_supports(self, capability: str) -> bool:
        return capability.upper() in self._capabilities

    # ------------------------------------------------------------------
    # Mailbox operations
    # ------------------------------------------------------------------

    async def search(self, criteria: Sequence[Any]) -> list[int]:
        return await self._run(self._search_sync, format_criteria(criteria))

    def _search_sync(self, tokens: list[str]) -> list[int]:
        conn = self._require_conn()
        typ, data = conn.uid("SEARCH", None, *tokens)
        if typ != "OK":
            raise imaplib.IMAP4.error(f"SEARCH failed: {_describe(data)}")
        if not data or not data[0]:
            return []
        return [int(uid) for uid in data[0].split()]

    async def fetch(self, uids: Sequence[int], spec: FetchSpec) -> AsyncIterator[FetchEvent]:
        messages = await self._run(self._fetch_sync, format_uid_set(uids), format_fetch_items(spec))
        for message in messages:
            yield MessageStarted(message.seqno, message.uid)
            for section, payload in message.sections:
                yield BodyReceived(
                    message.seqno, section, payload.decode("utf-8", errors="replace")
                )
            yield AttributesReceived(message.seqno, {"uid": message.uid, "flags": message.flags})
            yield MessageEnded(message.seqno)

    def _fetch_sync(self, uid_set: str, items: str) -> list[FetchedMessage]:
        conn = self._require_conn()
        typ, data = conn.uid("FETCH", uid_set, items)
        if typ != "OK":
            raise imaplib.IMAP4.error(f"FETCH failed: {_describe(data)}")
        messages = parse_fetch_response(data)
        logger.debug("imap_fetch_complete", requested=uid_set, fetched=len(messages))
        return messages

    async def add_flags(self, uids: Sequence[int], flags: Sequence[str]) -> None:
        flag_list = "(" + " ".join(format_flag(flag) for flag in flags) + ")"
        await self._run(self._store_sync, format_uid_set(uids), "+FLAGS", flag_list)

    async def add_labels(self, uids: Sequence[int], labels: Sequence[str]) -> None:
        label_list = "(" + " ".join(quote(label) for label in labels) + ")"
        await self._run(self._store_sync, format_uid_set(uids), "+X-GM-LABELS", label_list)

    def _store_sync(self, uid_set: str, item: str, value: str) -> None:
        conn = self._require_conn()
        typ, data = conn.uid("STORE", uid_set, item, value)
        if typ != "OK":
            raise imaplib.IMAP4.error(f"STORE {item} failed: {_describe(data)}")

    async def move(self, uids: Sequence[int], mailbox: str) -> None:
        await self._run(self._move_sync, format_uid_set(uids), mailbox)

    def _move_sync(self, uid_set: str, mailbox: str) -> None:
        conn = self._require_conn()
        if "MOVE" in self._capabilities:
            typ, data = conn.uid("MOVE", uid_set, quote(mailbox))
            if typ != "OK":
                raise imaplib.IMAP4.error(f"MOVE failed: {_describe(data)}")
            _, expunged = conn.response("EXPUNGE")
            self._exists -= sum(1 for item in expunged if item is not None)
            return
        typ, data = conn.uid("COPY", uid_set, quote(mailbox))
        if typ != "OK":
            raise imaplib.IMAP4.error(f"COPY failed: {_describe(data)}")
        self._store_sync(uid_set, "+FLAGS", "(\\Deleted)")
        if "UIDPLUS" in self._capabilities:
            typ, data = conn.uid("EXPUNGE", uid_set)
        else:
            # also removes any other \Deleted message in the mailbox
            typ, data = conn.expunge()
        if typ != "OK":
            raise imaplib.IMAP4.error(f"EXPUNGE failed: {_describe(data)}")
        self._exists -= sum(1 for item in data if item is not None)

    async def expunge(self) -> None:
        await self._run(self._expunge_sync)

    def _expunge_sync(self) -> None:
        conn = self._require_conn()
        typ, data = conn.expunge()
        if typ != "OK":
            raise imaplib.IMAP4.error(f"EXPUNGE failed: {_describe(data)}")
        self._exists -= sum(1 for item in data if item is not None)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_conn(self) -> imaplib.IMAP4:
        if self._conn is None:
            raise imaplib.IMAP4.abort("not connected")
        return self._conn

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        """Run a blocking imaplib call in a thread, mapping its errors."""
        try:
            return await asyncio.to_thread(func, *args)
        except imaplib.IMAP4.abort as exc:
            raise MailConnectionError(str(exc)) from exc
        except imaplib.IMAP4.error as exc:
            raise MailOperationError(str(exc)) from exc
        except OSError as exc:
            raise MailConnectionError(str(exc)) from exc


def _describe(data: Any) -> str:
    if not data:
        return ""
    return " ".join(
        item.decode("utf-8", errors="replace") if isinstance(item, bytes) else str(item)
        for item in data
        if item is not None
    )
