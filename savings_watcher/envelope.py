"""Per-message envelope built incrementally from fetch events.

Header sections are parsed with ``email.parser.HeaderParser`` (headers
only, no MIME walk); every other section is kept as plain text.
"""

from __future__ import annotations

import email.parser
import email.policy
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger()

_NAME_ADDRESS = re.compile(r"(.*?) <(.*?)>", re.IGNORECASE)


def parse_header(raw: str) -> dict[str, list[str]]:
    """Parse a raw header block into lower-cased names mapped to their values."""
    parser = email.parser.HeaderParser(policy=email.policy.default)
    headers = parser.parsestr(raw)
    fields: dict[str, list[str]] = {}
    for name, value in headers.items():
        fields.setdefault(name.lower(), []).append(str(value))
    return fields


@dataclass
class MessageEnvelope:
    """In-memory reconstruction of one fetched message."""

    seqno: int
    uid: int | None = None
    header: dict[str, list[str]] | None = None
    parts: dict[str, str] = field(default_factory=dict)
    attributes: dict[str, Any] = field(default_factory=dict)
    _body: list[str] = field(default_factory=list, repr=False)

    @property
    def text(self) -> str:
        """All non-header body sections, concatenated in arrival order."""
        return "".join(self._body)

    @property
    def from_header(self) -> str | None:
        if not self.header or not self.header.get("from"):
            return None
        return ", ".join(self.header["from"])

    def add_body(self, section: str, payload: str) -> None:
        if "header" in section.lower():
            fields = parse_header(payload)
            if self.header is None:
                self.header = fields
            else:
                for name, values in fields.items():
                    self.header.setdefault(name, []).extend(values)
            return
        self.parts[section.lower()] = payload
        self._body.append(payload)

    def set_attributes(self, attributes: dict[str, Any]) -> None:
        self.attributes = dict(attributes)
        uid = attributes.get("uid")
        if uid is not None:
            self.uid = int(uid)


def check_from(envelope: MessageEnvelope, from_list: Iterable[str]) -> bool:
    """Return True if the From header, its display name, or its address is listed.

    Each entry must equal the raw header value, the parsed name, or the
    parsed bare address exactly.  Messages without a From header never match.
    """
    from_header = envelope.from_header
    if not from_header:
        logger.warning("message_without_from_header", seqno=envelope.seqno, uid=envelope.uid)
        return False

    match = _NAME_ADDRESS.search(from_header)
    name = match.group(1) if match else None
    address = match.group(2) if match else None

    for entry in from_list:
        if entry == from_header or (name and entry == name) or (address and entry == address):
            return True
    return False
