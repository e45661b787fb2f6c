"""Tests for savings_watcher.fetcher."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from savings_watcher.context import PipelineContext
from savings_watcher.errors import MailOperationError
from savings_watcher.fetcher import MessageFetcher
from savings_watcher.models import BodyReceived, MessageEnded, MessageStarted
from savings_watcher.parser import MessageParser
from savings_watcher.postprocess import PostProcessCoordinator
from savings_watcher.store import JsonFileStore, PersistentAggregate


def _queue_everything(matches, envelope, aggregate):
    aggregate.data["total"] += float(matches[0].group(1))
    return True


@pytest.fixture
def coordinator(
    context: PipelineContext, aggregate: PersistentAggregate, store: JsonFileStore
) -> PostProcessCoordinator:
    coordinator = PostProcessCoordinator(context, aggregate, store)
    coordinator.run = AsyncMock(return_value=True)
    return coordinator


@pytest.fixture
def fetcher(
    context: PipelineContext, aggregate: PersistentAggregate, coordinator: PostProcessCoordinator
) -> MessageFetcher:
    parser = MessageParser(context.config.compile_patterns(), context.hooks, aggregate)
    return MessageFetcher(context, parser, coordinator)


class TestMessageFetcher:
    @pytest.mark.asyncio
    async def test_matching_messages_queued(
        self, fetcher, context, fake_session, coordinator, aggregate, make_message
    ):
        context.hooks.post_parse = _queue_everything
        fake_session.fetch_events = [
            *make_message(1, 10, text="You saved $5.00"),
            *make_message(2, 11, text="You saved $2.50"),
        ]

        await fetcher.fetch([10, 11])

        assert coordinator.queue.uids == [10, 11]
        assert aggregate.data["total"] == 7.5
        coordinator.run.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_requests_configured_spec(self, fetcher, fake_session):
        await fetcher.fetch([10])
        _, uids, spec = fake_session.calls[0]
        assert uids == [10]
        assert spec.bodies == ["HEADER.FIELDS (FROM)", "TEXT"]

    @pytest.mark.asyncio
    async def test_pre_fetch_override_used(self, fetcher, context, fake_session):
        context.hooks.pre_fetch = lambda spec: {"bodies": ["TEXT"]}
        await fetcher.fetch([10])
        assert fake_session.calls[0][2].bodies == ["TEXT"]

    @pytest.mark.asyncio
    async def test_unlisted_sender_not_parsed(
        self, fetcher, context, fake_session, coordinator, make_message
    ):
        context.hooks.post_parse = _queue_everything
        fake_session.fetch_events = make_message(1, 10, sender="x@y.z", text="$5.00")

        await fetcher.fetch([10])
        assert coordinator.queue.uids == []

    @pytest.mark.asyncio
    async def test_pre_message_false_skips_message(
        self, fetcher, context, fake_session, coordinator, make_message
    ):
        context.hooks.post_parse = _queue_everything
        context.hooks.pre_message = lambda uid, seqno: uid != 10
        fake_session.fetch_events = [
            *make_message(1, 10, text="$5.00"),
            *make_message(2, 11, text="$1.00"),
        ]

        await fetcher.fetch([10, 11])
        assert coordinator.queue.uids == [11]

    @pytest.mark.asyncio
    async def test_interleaved_messages_kept_apart(
        self, fetcher, context, fake_session, coordinator, aggregate
    ):
        context.hooks.pre_parse = lambda envelope, from_list: True
        context.hooks.post_parse = _queue_everything
        fake_session.fetch_events = [
            MessageStarted(1, 10),
            MessageStarted(2, 11),
            BodyReceived(2, "TEXT", "$2.00"),
            BodyReceived(1, "TEXT", "$1.00"),
            MessageEnded(2),
            MessageEnded(1),
        ]

        await fetcher.fetch([10, 11])
        assert coordinator.queue.uids == [11, 10]
        assert aggregate.data["total"] == 3.0

    @pytest.mark.asyncio
    async def test_message_without_uid_not_queued(
        self, fetcher, context, fake_session, coordinator, make_message
    ):
        context.hooks.post_parse = _queue_everything
        fake_session.fetch_events = make_message(1, None, text="$5.00")

        with patch("savings_watcher.fetcher.logger") as mock_logger:
            await fetcher.fetch([10])
        assert coordinator.queue.uids == []
        mock_logger.warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_fetch_error_aborts_but_processes_queue(
        self, fetcher, context, fake_session, coordinator, make_message
    ):
        context.hooks.post_parse = _queue_everything
        fake_session.fetch_events = make_message(1, 10, text="$5.00")
        fake_session.fetch_error = MailOperationError("FETCH failed")

        with patch("savings_watcher.fetcher.logger") as mock_logger:
            await fetcher.fetch([10, 11])
        assert coordinator.queue.uids == [10]
        coordinator.run.assert_awaited_once()
        mock_logger.error.assert_called_once()

    @pytest.mark.asyncio
    async def test_hook_error_aborts_batch(
        self, fetcher, context, fake_session, coordinator, make_message
    ):
        def explode(matches, envelope, aggregate):
            raise KeyError("total")

        context.hooks.post_parse = explode
        fake_session.fetch_events = make_message(1, 10, text="$5.00")

        with patch("savings_watcher.hooks.logger"), patch("savings_watcher.fetcher.logger"):
            await fetcher.fetch([10])
        coordinator.run.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_uid_list_skips_request(self, fetcher, fake_session, coordinator):
        await fetcher.fetch([])
        assert fake_session.calls == []
        coordinator.run.assert_awaited_once()
