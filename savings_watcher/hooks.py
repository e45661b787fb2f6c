"""Hook registry and the override-resolution protocol.

Every pipeline stage has a default value or decision.  A caller may
register an override for a stage; the override is called with the stage's
inputs and its return value replaces the default unless it is ``None``.

Overrides may return plain values or the explicit tagged variants below.
Plain values are coerced at this boundary, so the pipeline itself only
ever sees ``NoOverride``/``Override`` (and, for ``pre_parse``,
``ParseDecision``/``FromListOverride``).
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, fields
from typing import Any, Generic, TypeVar

import structlog
from pydantic import ValidationError

from .config import FetchSpec, ImapConfig
from .envelope import MessageEnvelope, check_from
from .errors import HookError

logger = structlog.get_logger()

T = TypeVar("T")

HOOK_NAMES = (
    "pre_connect",
    "pre_open_mailbox",
    "pre_search",
    "post_search",
    "pre_fetch",
    "pre_message",
    "pre_parse",
    "post_parse",
    "pre_save",
    "post_disconnect",
)


# ------------------------------------------------------------------
# Tagged hook results
# ------------------------------------------------------------------


@dataclass(frozen=True)
class NoOverride:
    """The hook declined to override; the default stands."""


NO_OVERRIDE = NoOverride()


@dataclass(frozen=True)
class Override(Generic[T]):
    """The hook's value replaces the default."""

    value: T


@dataclass(frozen=True)
class ParseDecision:
    """``pre_parse`` decided directly; the from-list check is skipped."""

    parse: bool


@dataclass(frozen=True)
class FromListOverride:
    """``pre_parse`` replaced the from-list the sender is checked against."""

    from_list: list[str]


HookResult = NoOverride | Override[Any]
PreParseResult = NoOverride | ParseDecision | FromListOverride


def as_override(value: Any) -> HookResult:
    """Coerce a raw hook return value into ``NoOverride`` or ``Override``."""
    if value is None or isinstance(value, NoOverride):
        return NO_OVERRIDE
    if isinstance(value, Override):
        return value
    return Override(value)


def as_pre_parse_result(value: Any) -> PreParseResult:
    """Coerce a ``pre_parse`` return into its two-mode variant.

    ``True``/``False`` decide directly, a list replaces the from-list, and
    anything else is ignored with a warning.
    """
    if isinstance(value, Override):
        value = value.value
    if value is None or isinstance(value, NoOverride):
        return NO_OVERRIDE
    if isinstance(value, (ParseDecision, FromListOverride)):
        return value
    if isinstance(value, bool):
        return ParseDecision(value)
    if isinstance(value, (list, tuple)):
        return FromListOverride([str(entry) for entry in value])
    logger.warning("pre_parse_return_ignored", returned_type=type(value).__name__)
    return NO_OVERRIDE


# ------------------------------------------------------------------
# Registry
# ------------------------------------------------------------------


@dataclass
class HookRegistry:
    """Optional override callable per pipeline stage.

    Build one directly (``HookRegistry(post_parse=fn)``) or collect the
    stage-named callables of a plugin object or config module with
    :meth:`from_object`.
    """

    pre_connect: Callable[[ImapConfig], Any] | None = None
    pre_open_mailbox: Callable[[str], Any] | None = None
    pre_search: Callable[[list[Any]], Any] | None = None
    post_search: Callable[[BaseException | None, list[int]], Any] | None = None
    pre_fetch: Callable[[FetchSpec], Any] | None = None
    pre_message: Callable[[int | None, int], Any] | None = None
    pre_parse: Callable[[MessageEnvelope, list[str]], Any] | None = None
    post_parse: Callable[[list[Any], MessageEnvelope, Any], Any] | None = None
    pre_save: Callable[[Any], Any] | None = None
    post_disconnect: Callable[[bool], Any] | None = None

    @classmethod
    def from_object(cls, source: object) -> HookRegistry:
        found = {}
        for name in HOOK_NAMES:
            candidate = getattr(source, name, None)
            if callable(candidate):
                found[name] = candidate
        return cls(**found)

    @property
    def registered(self) -> list[str]:
        return [f.name for f in fields(self) if getattr(self, f.name) is not None]

    def _call(self, stage: str, *args: Any) -> Any:
        hook = getattr(self, stage)
        try:
            result = hook(*args)
        except Exception as exc:
            logger.exception("hook_failed", stage=stage)
            raise HookError(stage, exc) from exc
        if inspect.isawaitable(result):
            # hooks are synchronous; the awaitable is discarded unawaited
            logger.warning("hook_returned_awaitable", stage=stage)
            if inspect.iscoroutine(result):
                result.close()
            return None
        return result

    def _resolve(self, stage: str, default: T, *args: Any) -> T:
        if getattr(self, stage) is None:
            return default
        result = as_override(self._call(stage, *args))
        if isinstance(result, Override):
            logger.debug("hook_override_applied", stage=stage)
            return result.value
        return default

    # ------------------------------------------------------------------
    # Connection stages
    # ------------------------------------------------------------------

    def resolve_pre_connect(self, settings: ImapConfig) -> ImapConfig:
        resolved = self._resolve("pre_connect", settings, settings)
        if isinstance(resolved, ImapConfig):
            return resolved
        if isinstance(resolved, Mapping):
            try:
                return ImapConfig.model_validate(dict(resolved))
            except ValidationError as exc:
                logger.warning("pre_connect_return_invalid", error=str(exc))
                return settings
        logger.warning("pre_connect_return_ignored", returned_type=type(resolved).__name__)
        return settings

    def resolve_pre_open_mailbox(self, mailbox: str) -> str:
        return str(self._resolve("pre_open_mailbox", mailbox, mailbox))

    def notify_post_disconnect(self, had_error: bool) -> None:
        if self.post_disconnect is not None:
            self._call("post_disconnect", had_error)

    # ------------------------------------------------------------------
    # Search / fetch stages
    # ------------------------------------------------------------------

    def resolve_pre_search(self, criteria: Sequence[Any]) -> list[Any]:
        resolved = self._resolve("pre_search", list(criteria), list(criteria))
        if isinstance(resolved, str):
            return [resolved]
        return list(resolved)

    def resolve_post_search(self, error: BaseException | None, uids: Sequence[int]) -> bool:
        default = error is None and len(uids) > 0
        return bool(self._resolve("post_search", default, error, list(uids)))

    def resolve_pre_fetch(self, spec: FetchSpec) -> FetchSpec:
        resolved = self._resolve("pre_fetch", spec, spec.model_copy(deep=True))
        if isinstance(resolved, FetchSpec):
            return resolved
        if isinstance(resolved, Mapping):
            try:
                return FetchSpec.model_validate(dict(resolved))
            except ValidationError as exc:
                logger.warning("pre_fetch_return_invalid", error=str(exc))
                return spec
        logger.warning("pre_fetch_return_ignored", returned_type=type(resolved).__name__)
        return spec

    def resolve_pre_message(self, uid: int | None, seqno: int) -> bool:
        return bool(self._resolve("pre_message", True, uid, seqno))

    # ------------------------------------------------------------------
    # Parse stages
    # ------------------------------------------------------------------

    def resolve_pre_parse(self, envelope: MessageEnvelope, from_list: Sequence[str]) -> bool:
        """Decide whether *envelope* is parsed.

        Without a hook this is ``check_from(envelope, from_list)``.  A hook
        may decide directly with a boolean or swap in a different from-list.
        """
        candidates = list(from_list)
        if self.pre_parse is not None:
            result = as_pre_parse_result(self._call("pre_parse", envelope, list(candidates)))
            if isinstance(result, ParseDecision):
                return result.parse
            if isinstance(result, FromListOverride):
                candidates = result.from_list
        return check_from(envelope, candidates)

    def resolve_post_parse(self, matches: list[Any], envelope: MessageEnvelope, aggregate: Any) -> bool:
        """Return True only when the hook explicitly asks to queue the message."""
        if self.post_parse is None:
            logger.debug("no_post_parse_hook", seqno=envelope.seqno)
            return False
        result = self._call("post_parse", matches, envelope, aggregate)
        if isinstance(result, Override):
            result = result.value
        return result is True

    def resolve_pre_save(self, data: Any) -> Any:
        return self._resolve("pre_save", data, data)
