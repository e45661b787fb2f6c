"""Applies the configured message patterns to a fetched envelope."""

from __future__ import annotations

import re
from collections.abc import Sequence

import structlog

from .envelope import MessageEnvelope
from .hooks import HookRegistry
from .store import PersistentAggregate

logger = structlog.get_logger()


class MessageParser:
    """Runs each pattern once over the message text, keeping its first match."""

    def __init__(
        self,
        patterns: Sequence[re.Pattern[str]],
        hooks: HookRegistry,
        aggregate: PersistentAggregate,
    ) -> None:
        self._patterns = list(patterns)
        self._hooks = hooks
        self._aggregate = aggregate

    def parse(self, envelope: MessageEnvelope) -> list[re.Match[str]]:
        text = envelope.text
        if not text:
            logger.warning("message_without_text", seqno=envelope.seqno, uid=envelope.uid)
            return []
        matches = []
        for pattern in self._patterns:
            match = pattern.search(text)
            if match:
                matches.append(match)
        return matches

    def process(self, envelope: MessageEnvelope) -> bool:
        """Parse *envelope* and ask ``post_parse`` whether to queue it.

        Returns True when the message should be post-processed.
        """
        matches = self.parse(envelope)
        if not matches:
            logger.debug("no_patterns_matched", seqno=envelope.seqno, uid=envelope.uid)
            return False
        logger.debug("patterns_matched", seqno=envelope.seqno, matches=len(matches))
        return self._hooks.resolve_post_parse(matches, envelope, self._aggregate)
