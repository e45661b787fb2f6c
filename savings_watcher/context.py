"""Explicit pipeline context shared by the processing components."""

from __future__ import annotations

from dataclasses import dataclass

from .config import SavingsConfig
from .hooks import HookRegistry
from .interface import MailSession


@dataclass
class PipelineContext:
    """Configuration, hooks and the live session, built once at startup.

    Hooks never see this object; they only receive their stage inputs and
    the persistent aggregate.
    """

    config: SavingsConfig
    hooks: HookRegistry
    session: MailSession
