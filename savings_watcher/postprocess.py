"""End-of-batch sequence: flag, relocate, expunge, persist."""

from __future__ import annotations

from collections.abc import Iterator

import structlog

from .context import PipelineContext
from .errors import MailOperationError
from .store import JsonFileStore, PersistentAggregate

logger = structlog.get_logger()

GMAIL_EXTENSION = "X-GM-EXT-1"


class PostProcessQueue:
    """Insertion-ordered set of UIDs marked during the current batch."""

    def __init__(self) -> None:
        self._uids: dict[int, None] = {}

    def add(self, uid: int) -> bool:
        """Queue *uid*; returns False if it was already queued."""
        if uid in self._uids:
            return False
        self._uids[uid] = None
        return True

    @property
    def uids(self) -> list[int]:
        return list(self._uids)

    def clear(self) -> None:
        self._uids.clear()

    def __len__(self) -> int:
        return len(self._uids)

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._uids))


def _is_deleted_flag(flag: str) -> bool:
    return flag.lstrip("\\").lower() == "deleted"


class PostProcessCoordinator:
    """Runs once per fetch batch over the queued UIDs, then persists the aggregate."""

    def __init__(
        self,
        context: PipelineContext,
        aggregate: PersistentAggregate,
        store: JsonFileStore,
        queue: PostProcessQueue | None = None,
    ) -> None:
        self._config = context.config
        self._hooks = context.hooks
        self._session = context.session
        self._aggregate = aggregate
        self._store = store
        self.queue = queue if queue is not None else PostProcessQueue()

    async def run(self) -> bool:
        """Run the sequence; returns False if a step failed and aborted the rest."""
        uids = self.queue.uids
        try:
            if uids:
                if not await self._flag(uids):
                    return False
                if not await self._relocate(uids):
                    return False
                await self._expunge()
            await self._persist()
            return True
        finally:
            self.queue.clear()

    async def _flag(self, uids: list[int]) -> bool:
        flags = self._config.processed_flags
        if not flags:
            return True
        try:
            await self._session.add_flags(uids, flags)
        except MailOperationError as exc:
            logger.error("add_flags_failed", uids=uids, flags=flags, error=str(exc))
            return False
        logger.debug("flags_added", uids=uids, flags=flags)
        return True

    async def _relocate(self, uids: list[int]) -> bool:
        box = self._config.processed_box
        if not box:
            return True
        try:
            if self._session.server_supports(GMAIL_EXTENSION):
                await self._session.add_labels(uids, [box])
                logger.debug("labels_added", uids=uids, label=box)
            else:
                await self._session.move(uids, box)
                logger.debug("messages_moved", uids=uids, mailbox=box)
        except MailOperationError as exc:
            logger.error("relocate_failed", uids=uids, mailbox=box, error=str(exc))
            return False
        return True

    async def _expunge(self) -> None:
        if not any(_is_deleted_flag(flag) for flag in self._config.processed_flags):
            return
        try:
            await self._session.expunge()
        except MailOperationError as exc:
            logger.error("expunge_failed", error=str(exc))
            return
        logger.debug("mailbox_expunged")

    async def _persist(self) -> None:
        data = self._hooks.resolve_pre_save(self._aggregate.data)
        try:
            await self._store.save(data)
        except (TypeError, ValueError) as exc:
            logger.error("save_data_not_serializable", path=str(self._store.path), error=str(exc))
        except OSError as exc:
            logger.error("save_file_write_failed", path=str(self._store.path), error=str(exc))
