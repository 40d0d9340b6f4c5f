from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ResultStatus(str, Enum):
    OK = "ok"
    ERROR = "error"


class TransportKind(str, Enum):
    SMTP = "smtp"
    SENDMAIL = "sendmail"
    NULL = "null"


@dataclass(frozen=True)
class RelaySettings:
    """Server-side addressing. Never derived from request data."""

    admin_recipient: str
    from_name: str
    from_email: str


@dataclass(frozen=True)
class SmtpSettings:
    host: str
    port: int
    user: str
    password: str
    tls_mode: str
    timeout_sec: int


@dataclass(frozen=True)
class AppSettings:
    relay: RelaySettings
    transport: TransportKind
    smtp: SmtpSettings
    sendmail_path: str
    api_host: str
    api_port: int
    form_path: str
    max_body_bytes: int
    csrf_cookie: str
    log_level: str
    log_dir: str
    access_log: bool = True


@dataclass(frozen=True)
class SanitizedRow:
    key: str
    value: str
    shaded: bool


@dataclass(frozen=True)
class OutboundMessage:
    recipient: str
    subject: str
    body_html: str
    headers: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    def header(self, name: str) -> str | None:
        for key, value in self.headers:
            if key.lower() == name.lower():
                return value
        return None

    def header_block(self) -> str:
        return "\r\n".join(f"{key}: {value}" for key, value in self.headers)


@dataclass(frozen=True)
class RelayResult:
    status: ResultStatus
    message: str
    error_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": self.status.value, "message": self.message}
        if self.error_code is not None:
            payload["error"] = self.error_code
        return payload
