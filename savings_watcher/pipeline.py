"""SavingsWatcher: builds the pipeline and runs it until shutdown."""

from __future__ import annotations

from pathlib import Path
from types import ModuleType

import structlog

from .config import SavingsConfig
from .context import PipelineContext
from .errors import FatalError, SavingsWatcherError
from .fetcher import MessageFetcher
from .hooks import HookRegistry
from .imap_client import ImapSession
from .interface import MailSession
from .logging import setup_logging
from .mailer import Mailer
from .parser import MessageParser
from .plugin import SavingsPlugin
from .postprocess import PostProcessCoordinator
from .searcher import MailboxSearcher
from .session import ConnectionManager
from .shutdown import install_signal_handlers
from .store import JsonFileStore, PersistentAggregate, resolve_save_path

logger = structlog.get_logger()


class SavingsWatcher:
    """Owns every pipeline component for one watched mailbox.

    ``await watcher.run()`` serves until SIGINT/SIGTERM and returns the
    process exit code.
    """

    def __init__(
        self,
        config: SavingsConfig,
        hooks: HookRegistry | None = None,
        *,
        plugin: object | None = None,
        session: MailSession | None = None,
        base_dir: Path | None = None,
    ) -> None:
        self.config = config
        self.context = PipelineContext(
            config=config,
            hooks=hooks or HookRegistry(),
            session=session or ImapSession(),
        )

        self.store = JsonFileStore(resolve_save_path(config.save_file, base_dir))
        self.aggregate = PersistentAggregate.load(self.store)
        self.mailer = Mailer(config.mailer)
        if isinstance(plugin, SavingsPlugin):
            plugin.bind(extras=config.extras, mailer=self.mailer)
        elif isinstance(plugin, ModuleType):
            # module-level hooks reach these as globals
            plugin.extras = dict(config.extras)
            plugin.mailer = self.mailer

        self.coordinator = PostProcessCoordinator(self.context, self.aggregate, self.store)
        self.parser = MessageParser(config.compile_patterns(), self.context.hooks, self.aggregate)
        self.fetcher = MessageFetcher(self.context, self.parser, self.coordinator)
        self.searcher = MailboxSearcher(self.context, self.fetcher)
        self.manager = ConnectionManager(self.context, self.searcher)

    async def run(self) -> int:
        setup_logging(json=self.config.log_json, level="DEBUG" if self.config.debug else "INFO")
        logger.info(
            "savings_watcher_starting",
            mailbox=self.config.mailbox,
            save_file=str(self.store.path),
            hooks=self.context.hooks.registered,
        )
        remove_handlers = install_signal_handlers(self.manager.request_shutdown)
        try:
            await self.manager.run()
        except FatalError as exc:
            logger.critical("savings_watcher_fatal", error=str(exc), exit_code=exc.exit_code)
            return exc.exit_code
        except SavingsWatcherError as exc:
            logger.critical("savings_watcher_fatal", error=str(exc), exit_code=1)
            return 1
        finally:
            remove_handlers()
            await self.mailer.drain()
        logger.info("savings_watcher_stopped")
        return 0
