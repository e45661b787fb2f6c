"""Watcher configuration loaded from environment variables and the config module.

Uses pydantic-settings so every field can also be supplied via env vars;
values given by the config module take precedence.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings

DEFAULT_FETCH_BODIES = ["HEADER.FIELDS (FROM)", "TEXT"]
PATTERN_FLAGS = re.IGNORECASE | re.MULTILINE


class ImapConfig(BaseSettings):
    """IMAP server connection settings."""

    model_config = {"env_prefix": "IMAP_"}

    host: str = Field(description="IMAP server hostname")
    port: int = Field(default=993, description="IMAP server port")
    use_ssl: bool = Field(default=True, description="Use SSL/TLS connection")
    username: str | None = Field(default=None, description="IMAP login username")
    password: SecretStr | None = Field(default=None, description="IMAP login password")
    poll_interval_seconds: float = Field(
        default=30.0,
        description="Seconds between NOOP polls used to detect new mail",
    )

    def has_credentials(self) -> bool:
        return bool(self.username) and bool(self.password and self.password.get_secret_value())


class MailerConfig(BaseSettings):
    """SMTP settings for outbound mail sent from hook logic."""

    model_config = {"env_prefix": "SMTP_"}

    host: str = Field(description="SMTP server hostname")
    port: int = Field(default=465, description="SMTP server port")
    use_ssl: bool = Field(default=True, description="Connect with implicit TLS")
    starttls: bool = Field(default=False, description="Upgrade a plain connection with STARTTLS")
    username: str | None = Field(default=None, description="SMTP login username")
    password: SecretStr | None = Field(default=None, description="SMTP login password")
    timeout_seconds: float = Field(default=30.0, description="SMTP socket timeout")


class FetchSpec(BaseModel):
    """Which parts of each message to request from the server."""

    bodies: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FETCH_BODIES),
        description="Body sections to fetch, e.g. 'HEADER.FIELDS (FROM)' or 'TEXT'",
    )
    mark_seen: bool = Field(
        default=False,
        description="Fetch with BODY[] instead of BODY.PEEK[] so the server sets \\Seen",
    )


class SavingsConfig(BaseSettings):
    """Root configuration for a watcher instance.

    Nested IMAP and SMTP configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "SAVINGS_"}

    debug: bool = Field(default=False, description="Log pipeline chatter at DEBUG level")
    log_json: bool = Field(default=True, description="Render log lines as JSON")

    imap: ImapConfig = Field(default_factory=ImapConfig)
    mailer: MailerConfig | None = Field(
        default=None,
        description="Outbound SMTP settings; sending mail is disabled when unset",
    )

    mailbox: str = Field(default="INBOX", description="Mailbox to open and watch")
    processed_flags: list[str] = Field(
        default_factory=lambda: ["Seen", "Deleted"],
        description="Flags added to messages marked for post-processing",
    )
    processed_box: str | None = Field(
        default=None,
        description="Mailbox (or Gmail label) processed messages are moved to",
    )
    search_criteria: list[Any] = Field(
        default_factory=lambda: ["UNSEEN"],
        description="IMAP search criteria tokens",
    )
    fetch_fields: FetchSpec = Field(default_factory=FetchSpec)
    from_list: list[str] = Field(
        default_factory=list,
        description="Sender names, addresses, or full From headers to accept",
    )
    message_patterns: list[str] = Field(
        default_factory=list,
        description="Regular expressions applied, in order, to each message body",
    )
    save_file: str = Field(default="saveFile", description="JSON file holding persistent data")
    connection_retry_ms: int = Field(
        default=5000,
        description="Delay before reconnecting after a session error; 0 disables retry",
    )
    extras: dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form values made available to plugins",
    )

    @field_validator("mailbox", "save_file", mode="before")
    @classmethod
    def _blank_uses_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value in (None, ""):
            return cls.model_fields[info.field_name].default
        return value

    @field_validator("processed_box", mode="before")
    @classmethod
    def _blank_box_is_unset(cls, value: Any) -> Any:
        return value or None

    @field_validator("message_patterns")
    @classmethod
    def _patterns_compile(cls, value: list[str]) -> list[str]:
        for pattern in value:
            try:
                re.compile(pattern, PATTERN_FLAGS)
            except re.error as exc:
                raise ValueError(f"invalid message pattern {pattern!r}: {exc}") from exc
        return value

    def compile_patterns(self) -> list[re.Pattern[str]]:
        return [re.compile(pattern, PATTERN_FLAGS) for pattern in self.message_patterns]
