"""Fetches a batch of messages and feeds each completed envelope to the parser."""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import aclosing

import structlog

from .config import FetchSpec
from .context import PipelineContext
from .envelope import MessageEnvelope
from .errors import HookError, MailOperationError
from .models import AttributesReceived, BodyReceived, MessageEnded, MessageStarted
from .parser import MessageParser
from .postprocess import PostProcessCoordinator

logger = structlog.get_logger()


class MessageFetcher:
    """Consumes one fetch stream per batch, keyed by message sequence number."""

    def __init__(
        self,
        context: PipelineContext,
        parser: MessageParser,
        coordinator: PostProcessCoordinator,
    ) -> None:
        self._context = context
        self._parser = parser
        self._coordinator = coordinator

    async def fetch(self, uids: Sequence[int]) -> None:
        """Fetch *uids*, parse what qualifies, then run the end-of-batch sequence.

        A fetch or hook error aborts the rest of the stream; whatever was
        queued up to that point is still post-processed.
        """
        config, hooks = self._context.config, self._context.hooks
        try:
            spec = hooks.resolve_pre_fetch(config.fetch_fields)
            if uids:
                await self._consume(list(uids), spec)
            else:
                logger.debug("fetch_skipped_no_uids")
        except (MailOperationError, HookError) as exc:
            logger.error("fetch_failed", uids=list(uids), error=str(exc))
        finally:
            await self._coordinator.run()

    async def _consume(self, uids: list[int], spec: FetchSpec) -> None:
        envelopes: dict[int, MessageEnvelope] = {}
        skipped: set[int] = set()
        hooks = self._context.hooks

        logger.debug("fetch_started", uids=uids, bodies=spec.bodies)
        stream = self._context.session.fetch(uids, spec)
        async with aclosing(stream):
            async for event in stream:
                if isinstance(event, MessageStarted):
                    if not hooks.resolve_pre_message(event.uid, event.seqno):
                        logger.debug("message_skipped", seqno=event.seqno, uid=event.uid)
                        skipped.add(event.seqno)
                        continue
                    envelopes[event.seqno] = MessageEnvelope(seqno=event.seqno, uid=event.uid)
                elif event.seqno in skipped:
                    if isinstance(event, MessageEnded):
                        skipped.discard(event.seqno)
                elif isinstance(event, BodyReceived):
                    self._envelope(envelopes, event.seqno).add_body(event.section, event.text)
                elif isinstance(event, AttributesReceived):
                    self._envelope(envelopes, event.seqno).set_attributes(event.attributes)
                elif isinstance(event, MessageEnded):
                    envelope = envelopes.pop(event.seqno, None)
                    if envelope is not None:
                        self._finish(envelope)
        logger.debug("fetch_finished", uids=uids)

    @staticmethod
    def _envelope(envelopes: dict[int, MessageEnvelope], seqno: int) -> MessageEnvelope:
        if seqno not in envelopes:
            envelopes[seqno] = MessageEnvelope(seqno=seqno)
        return envelopes[seqno]

    def _finish(self, envelope: MessageEnvelope) -> None:
        config, hooks = self._context.config, self._context.hooks
        if not hooks.resolve_pre_parse(envelope, config.from_list):
            logger.debug("message_not_parsed", seqno=envelope.seqno, from_=envelope.from_header)
            return
        if not self._parser.process(envelope):
            return
        if envelope.uid is None:
            logger.warning("cannot_queue_without_uid", seqno=envelope.seqno)
            return
        if self._coordinator.queue.add(envelope.uid):
            logger.debug("message_queued", uid=envelope.uid)
