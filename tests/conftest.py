"""Shared test fixtures for the savings_watcher test suite."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator, Callable, Sequence
from pathlib import Path
from typing import Any

import pytest

from savings_watcher.config import FetchSpec, ImapConfig, SavingsConfig
from savings_watcher.context import PipelineContext
from savings_watcher.hooks import HookRegistry
from savings_watcher.interface import MailSession
from savings_watcher.models import (
    AttributesReceived,
    BodyReceived,
    FetchEvent,
    MessageEnded,
    MessageStarted,
    SessionClosed,
    SessionEvent,
)
from savings_watcher.store import JsonFileStore, PersistentAggregate


class FakeMailSession(MailSession):
    """Scripted in-memory mail session.

    ``events`` are returned by ``next_event`` in order.  Once they run out
    the session either closes on its own or, with ``block_when_idle``,
    waits until ``request_close`` is called.
    """

    def __init__(
        self,
        *,
        events: Sequence[SessionEvent] = (),
        search_results: Sequence[int] = (),
        fetch_events: Sequence[FetchEvent] = (),
        capabilities: Sequence[str] = (),
        connect_errors: Sequence[BaseException] = (),
        block_when_idle: bool = False,
    ) -> None:
        self.events: deque[SessionEvent] = deque(events)
        self.search_results = list(search_results)
        self.search_error: BaseException | None = None
        self.fetch_events = list(fetch_events)
        self.fetch_error: BaseException | None = None
        self.failures: dict[str, BaseException] = {}
        self.capabilities = {cap.upper() for cap in capabilities}
        self.connect_errors: deque[BaseException] = deque(connect_errors)
        self.block_when_idle = block_when_idle
        self.calls: list[tuple[Any, ...]] = []
        self._close = asyncio.Event()

    @property
    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.failures:
            raise self.failures[operation]

    async def connect(self, settings: ImapConfig) -> None:
        self.calls.append(("connect", settings.host))
        if self.connect_errors:
            raise self.connect_errors.popleft()

    async def open_mailbox(self, name: str) -> int:
        self.calls.append(("open_mailbox", name))
        self._maybe_fail("open_mailbox")
        return len(self.events)

    async def next_event(self) -> SessionEvent:
        if not self._close.is_set() and self.events:
            return self.events.popleft()
        if self.block_when_idle:
            await self._close.wait()
        self.calls.append(("logout",))
        return SessionClosed(had_error=False)

    def request_close(self) -> None:
        self.calls.append(("request_close",))
        self._close.set()

    async def abort(self) -> None:
        self.calls.append(("abort",))

    def server_supports(self, capability: str) -> bool:
        return capability.upper() in self.capabilities

    async def search(self, criteria: Sequence[Any]) -> list[int]:
        self.calls.append(("search", list(criteria)))
        if self.search_error is not None:
            raise self.search_error
        return list(self.search_results)

    async def fetch(self, uids: Sequence[int], spec: FetchSpec) -> AsyncIterator[FetchEvent]:
        self.calls.append(("fetch", list(uids), spec))
        for event in self.fetch_events:
            yield event
        if self.fetch_error is not None:
            raise self.fetch_error

    async def add_flags(self, uids: Sequence[int], flags: Sequence[str]) -> None:
        self.calls.append(("add_flags", list(uids), list(flags)))
        self._maybe_fail("add_flags")

    async def move(self, uids: Sequence[int], mailbox: str) -> None:
        self.calls.append(("move", list(uids), mailbox))
        self._maybe_fail("move")

    async def add_labels(self, uids: Sequence[int], labels: Sequence[str]) -> None:
        self.calls.append(("add_labels", list(uids), list(labels)))
        self._maybe_fail("add_labels")

    async def expunge(self) -> None:
        self.calls.append(("expunge",))
        self._maybe_fail("expunge")


def message_events(
    seqno: int,
    uid: int | None,
    *,
    sender: str | None = "Bank <alerts@bank.example>",
    text: str = "",
) -> list[FetchEvent]:
    """Fetch events for one message with a From header and a TEXT body."""
    events: list[FetchEvent] = [MessageStarted(seqno, uid)]
    if sender is not None:
        events.append(BodyReceived(seqno, "HEADER.FIELDS (FROM)", f"From: {sender}\r\n\r\n"))
    if text:
        events.append(BodyReceived(seqno, "TEXT", text))
    events.append(AttributesReceived(seqno, {"uid": uid, "flags": []}))
    events.append(MessageEnded(seqno))
    return events


@pytest.fixture
def make_message() -> Callable[..., list[FetchEvent]]:
    return message_events


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(
        host="imap.test.com",
        port=993,
        use_ssl=True,
        username="testuser",
        password="testpass",
        poll_interval_seconds=0.01,
    )


@pytest.fixture
def save_path(tmp_path: Path) -> Path:
    return tmp_path / "saveFile.json"


@pytest.fixture
def savings_config(imap_config: ImapConfig, save_path: Path) -> SavingsConfig:
    return SavingsConfig(
        imap=imap_config,
        from_list=["alerts@bank.example"],
        message_patterns=[r"\$(\d+\.\d{2})"],
        save_file=str(save_path),
        connection_retry_ms=10,
    )


@pytest.fixture
def fake_session() -> FakeMailSession:
    return FakeMailSession()


@pytest.fixture
def hooks() -> HookRegistry:
    return HookRegistry()


@pytest.fixture
def context(
    savings_config: SavingsConfig, hooks: HookRegistry, fake_session: FakeMailSession
) -> PipelineContext:
    return PipelineContext(config=savings_config, hooks=hooks, session=fake_session)


@pytest.fixture
def store(save_path: Path) -> JsonFileStore:
    return JsonFileStore(save_path)


@pytest.fixture
def aggregate() -> PersistentAggregate:
    return PersistentAggregate({"total": 0})


@pytest.fixture
def make_session() -> type[FakeMailSession]:
    return FakeMailSession
