"""Exception hierarchy for the savings watcher."""

from __future__ import annotations


class SavingsWatcherError(Exception):
    """Base exception for all savings watcher errors."""


class ConfigurationError(SavingsWatcherError):
    """Missing credentials, unloadable config module, or invalid settings."""


class MailConnectionError(SavingsWatcherError):
    """The mail session was lost or could not be established (retryable)."""


class MailOperationError(SavingsWatcherError):
    """A single mailbox operation (search, fetch, flag, move...) failed."""


class MailTransportError(SavingsWatcherError):
    """Outbound mail could not be delivered."""


class HookError(SavingsWatcherError):
    """A caller-supplied hook raised while being resolved."""

    def __init__(self, stage: str, error: BaseException) -> None:
        super().__init__(f"{stage} hook failed: {error}")
        self.stage = stage


class FatalError(SavingsWatcherError):
    """Unrecoverable error; the process exits with ``exit_code``."""

    def __init__(self, message: str, exit_code: int = 1) -> None:
        super().__init__(message)
        self.exit_code = exit_code
