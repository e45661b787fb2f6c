"""Outbound mail for hook logic, over stdlib ``smtplib``.

All blocking SMTP calls are wrapped with ``asyncio.to_thread()``.
"""

from __future__ import annotations

import asyncio
import smtplib
import ssl
from collections.abc import Callable, Mapping
from email.message import EmailMessage
from typing import Any

import structlog
from pydantic import BaseModel, Field, field_validator

from .config import MailerConfig
from .errors import MailTransportError

logger = structlog.get_logger()


class Recipients(BaseModel):
    """To/Cc/Bcc address lists.  Strings are split on commas."""

    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)

    @field_validator("to", "cc", "bcc", mode="before")
    @classmethod
    def _split_addresses(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [addr.strip() for addr in value.split(",") if addr.strip()]
        return value

    @property
    def all(self) -> list[str]:
        return [*self.to, *self.cc, *self.bcc]


def as_recipients(addresses: str | Mapping[str, Any] | Recipients) -> Recipients:
    if isinstance(addresses, Recipients):
        return addresses
    if isinstance(addresses, str):
        return Recipients(to=addresses)
    return Recipients.model_validate(dict(addresses))


def build_message(recipients: Recipients, from_addr: str, subject: str, text: str) -> EmailMessage:
    """Build the outgoing message; the text doubles as its HTML alternative."""
    message = EmailMessage()
    message["From"] = from_addr
    message["Reply-To"] = from_addr
    message["Subject"] = subject
    if recipients.to:
        message["To"] = ", ".join(recipients.to)
    if recipients.cc:
        message["Cc"] = ", ".join(recipients.cc)
    message.set_content(text)
    message.add_alternative(text, subtype="html")
    return message


class Mailer:
    """Sends plain notification mails with the configured SMTP server."""

    def __init__(self, config: MailerConfig | None) -> None:
        self._config = config
        self._pending: set[asyncio.Task[bool]] = set()

    @property
    def configured(self) -> bool:
        return self._config is not None

    async def send_mail(
        self,
        addresses: str | Mapping[str, Any] | Recipients,
        from_addr: str,
        subject: str,
        text: str,
    ) -> bool:
        """Send *text* to *addresses*.

        Returns False (after logging) when no SMTP settings are configured.

        Raises:
            MailTransportError: If the SMTP exchange fails.
        """
        if self._config is None:
            logger.error("mailer_not_configured", subject=subject)
            return False

        recipients = as_recipients(addresses)
        message = build_message(recipients, from_addr, subject, text)

        logger.debug("sending_mail", to=recipients.to, subject=subject)
        try:
            await asyncio.to_thread(self._send_sync, message, recipients.all)
        except (smtplib.SMTPException, OSError) as exc:
            raise MailTransportError(f"Failed to send mail: {exc}") from exc
        logger.info("mail_sent", recipients=len(recipients.all), subject=subject)
        return True

    def send_mail_soon(
        self,
        addresses: str | Mapping[str, Any] | Recipients,
        from_addr: str,
        subject: str,
        text: str,
        callback: Callable[[BaseException | None, bool], Any] | None = None,
    ) -> asyncio.Task[bool]:
        """Schedule :meth:`send_mail` on the running loop and return at once.

        This is the entry point for hooks, which are called synchronously.
        Failures are logged.  *callback*, if given, receives the error (or
        ``None``) and whether the mail went out.
        """
        task = asyncio.get_running_loop().create_task(
            self.send_mail(addresses, from_addr, subject, text)
        )
        self._pending.add(task)
        task.add_done_callback(lambda done: self._on_sent(done, subject, callback))
        return task

    def _on_sent(
        self,
        task: asyncio.Task[bool],
        subject: str,
        callback: Callable[[BaseException | None, bool], Any] | None,
    ) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("mail_send_cancelled", subject=subject)
            return
        error = task.exception()
        if error is not None:
            logger.error("mail_send_failed", subject=subject, error=str(error))
        sent = error is None and task.result()
        if callback is None:
            return
        try:
            callback(error, sent)
        except Exception:
            logger.exception("mail_callback_failed", subject=subject)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for scheduled sends to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def _send_sync(self, message: EmailMessage, to_addrs: list[str]) -> None:
        assert self._config is not None
        config = self._config
        smtp: smtplib.SMTP
        if config.use_ssl:
            smtp = smtplib.SMTP_SSL(
                config.host,
                config.port,
                timeout=config.timeout_seconds,
                context=ssl.create_default_context(),
            )
        else:
            smtp = smtplib.SMTP(config.host, config.port, timeout=config.timeout_seconds)
        with smtp:
            if config.starttls and not config.use_ssl:
                smtp.starttls(context=ssl.create_default_context())
            if config.username and config.password is not None:
                smtp.login(config.username, config.password.get_secret_value())
            smtp.send_message(message, to_addrs=to_addrs)
