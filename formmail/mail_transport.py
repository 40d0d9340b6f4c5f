from __future__ import annotations

import logging
import smtplib
import ssl
import subprocess
from email import policy
from email.message import EmailMessage
from email.utils import formataddr, parseaddr
from typing import Callable

from formmail.models import AppSettings, RelaySettings, SmtpSettings, TransportKind

logger = logging.getLogger(__name__)

Headers = tuple[tuple[str, str], ...]
MailTransport = Callable[[str, str, str, Headers], bool]


BODY_HEADERS = frozenset({"mime-version", "content-type"})
ADDRESS_HEADERS = frozenset({"from", "reply-to"})


def build_email(recipient: str, subject: str, body_html: str, headers: Headers) -> EmailMessage:
    """Assemble the outbound message with the stdlib MIME machinery.

    ``set_content`` owns MIME-Version, Content-Type and the transfer
    encoding, so long lines and non-ASCII text are encoded rather than sent
    raw. Address headers go through ``formataddr`` so display names are
    encoded-words when needed.
    """
    msg = EmailMessage(policy=policy.SMTP)
    msg["To"] = recipient
    msg["Subject"] = subject
    for name, value in headers:
        lowered = name.lower()
        if lowered in BODY_HEADERS:
            continue
        if lowered in ADDRESS_HEADERS:
            value = formataddr(parseaddr(value))
        msg[name] = value
    msg.set_content(body_html, subtype="html", charset="utf-8")
    return msg


class SmtpTransport:
    def __init__(self, smtp: SmtpSettings, envelope_from: str) -> None:
        self.smtp = smtp
        self.envelope_from = envelope_from

    def __call__(self, recipient: str, subject: str, body_html: str, headers: Headers) -> bool:
        msg = build_email(recipient, subject, body_html, headers)
        try:
            with self._connect() as client:
                if self.smtp.user and self.smtp.password:
                    client.login(self.smtp.user, self.smtp.password)
                client.send_message(msg, from_addr=self.envelope_from, to_addrs=[recipient])
        except (smtplib.SMTPException, OSError):
            logger.exception("smtp delivery failed host=%s port=%s", self.smtp.host, self.smtp.port)
            return False
        return True

    def _connect(self) -> smtplib.SMTP:
        mode = self.smtp.tls_mode
        if mode == "ssl":
            return smtplib.SMTP_SSL(
                self.smtp.host,
                self.smtp.port,
                timeout=self.smtp.timeout_sec,
                context=ssl.create_default_context(),
            )
        client = smtplib.SMTP(self.smtp.host, self.smtp.port, timeout=self.smtp.timeout_sec)
        if mode == "starttls":
            client.ehlo()
            client.starttls(context=ssl.create_default_context())
            client.ehlo()
        return client


class SendmailTransport:
    """Hands the message to the local MTA, the way PHP's ``mail()`` does."""

    def __init__(self, sendmail_path: str, envelope_from: str, timeout_sec: int = 30) -> None:
        self.sendmail_path = sendmail_path
        self.envelope_from = envelope_from
        self.timeout_sec = timeout_sec

    def __call__(self, recipient: str, subject: str, body_html: str, headers: Headers) -> bool:
        msg = build_email(recipient, subject, body_html, headers)
        # local MTAs expect native line endings on stdin
        raw = msg.as_bytes(policy=msg.policy.clone(linesep="\n"))
        command = [self.sendmail_path, "-t", "-i", "-f", self.envelope_from]
        try:
            completed = subprocess.run(
                command,
                input=raw,
                capture_output=True,
                timeout=self.timeout_sec,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired):
            logger.exception("sendmail invocation failed path=%s", self.sendmail_path)
            return False
        if completed.returncode != 0:
            logger.error(
                "sendmail exited with code=%s stderr=%s",
                completed.returncode,
                completed.stderr.decode("utf-8", errors="replace").strip(),
            )
            return False
        return True


class NullTransport:
    def __call__(self, recipient: str, subject: str, body_html: str, headers: Headers) -> bool:
        logger.info("null transport accepted message recipient=%s bytes=%s", recipient, len(body_html))
        return True


def build_transport(settings: AppSettings) -> MailTransport:
    relay: RelaySettings = settings.relay
    if settings.transport == TransportKind.SMTP:
        return SmtpTransport(settings.smtp, relay.from_email)
    if settings.transport == TransportKind.SENDMAIL:
        return SendmailTransport(settings.sendmail_path, relay.from_email)
    return NullTransport()
