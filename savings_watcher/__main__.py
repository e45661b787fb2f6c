"""Entry point for the savings watcher.

Usage::

    python -m savings_watcher [CONFIG]   # CONFIG defaults to savings_config.py
"""

from __future__ import annotations

import asyncio
import sys

import structlog

from .errors import ConfigurationError
from .loader import load_config_module, resolve_config_path
from .logging import setup_logging
from .pipeline import SavingsWatcher

logger = structlog.get_logger()


def main() -> None:
    if len(sys.argv) > 2:
        print("Usage: python -m savings_watcher [CONFIG]", file=sys.stderr)
        sys.exit(1)

    setup_logging()
    path = resolve_config_path(sys.argv[1] if len(sys.argv) == 2 else None)
    try:
        loaded = load_config_module(path)
    except ConfigurationError as exc:
        logger.critical("config_load_failed", path=str(path), error=str(exc))
        sys.exit(1)

    plugin = loaded.plugin if loaded.plugin is not None else loaded.module
    watcher = SavingsWatcher(loaded.config, loaded.hooks, plugin=plugin)
    sys.exit(asyncio.run(watcher.run()))


if __name__ == "__main__":
    main()
