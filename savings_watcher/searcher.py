"""Search cycle run on every mail notification."""

from __future__ import annotations

import structlog

from .context import PipelineContext
from .errors import MailOperationError
from .fetcher import MessageFetcher

logger = structlog.get_logger()


class MailboxSearcher:
    def __init__(self, context: PipelineContext, fetcher: MessageFetcher) -> None:
        self._context = context
        self._fetcher = fetcher

    async def search(self) -> bool:
        """Search, gate on ``post_search``, and fetch the results.

        Returns True when a fetch batch ran.
        """
        hooks = self._context.hooks
        criteria = hooks.resolve_pre_search(self._context.config.search_criteria)

        error: MailOperationError | None = None
        uids: list[int] = []
        try:
            uids = await self._context.session.search(criteria)
        except MailOperationError as exc:
            logger.error("search_failed", criteria=criteria, error=str(exc))
            error = exc

        if not hooks.resolve_post_search(error, uids):
            logger.debug("nothing_to_fetch", criteria=criteria, found=len(uids))
            return False

        logger.info("messages_found", count=len(uids))
        await self._fetcher.fetch(uids)
        return True
