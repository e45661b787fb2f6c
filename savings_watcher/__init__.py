"""Savings watcher: hook-driven IMAP pipeline that turns notification mails into totals.

Public API re-exported here for convenience::

    from savings_watcher import SavingsConfig, SavingsPlugin, SavingsWatcher
"""

from .config import FetchSpec, ImapConfig, MailerConfig, SavingsConfig
from .context import PipelineContext
from .envelope import MessageEnvelope, check_from
from .errors import (
    ConfigurationError,
    FatalError,
    HookError,
    MailConnectionError,
    MailOperationError,
    MailTransportError,
    SavingsWatcherError,
)
from .hooks import (
    NO_OVERRIDE,
    FromListOverride,
    HookRegistry,
    NoOverride,
    Override,
    ParseDecision,
)
from .imap_client import ImapSession
from .interface import MailSession
from .loader import load_config_module, resolve_config_path
from .logging import setup_logging
from .mailer import Mailer, Recipients
from .models import SessionState
from .pipeline import SavingsWatcher
from .plugin import SavingsPlugin
from .store import JsonFileStore, PersistentAggregate, resolve_save_path

__all__ = [
    "NO_OVERRIDE",
    "ConfigurationError",
    "FatalError",
    "FetchSpec",
    "FromListOverride",
    "HookError",
    "HookRegistry",
    "ImapConfig",
    "ImapSession",
    "JsonFileStore",
    "MailConnectionError",
    "MailOperationError",
    "MailSession",
    "MailTransportError",
    "Mailer",
    "MailerConfig",
    "MessageEnvelope",
    "NoOverride",
    "Override",
    "ParseDecision",
    "PersistentAggregate",
    "PipelineContext",
    "Recipients",
    "SavingsConfig",
    "SavingsPlugin",
    "SavingsWatcher",
    "SavingsWatcherError",
    "SessionState",
    "check_from",
    "load_config_module",
    "resolve_config_path",
    "resolve_save_path",
    "setup_logging",
]
