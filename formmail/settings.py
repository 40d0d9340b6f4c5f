from __future__ import annotations

import os

from dotenv import load_dotenv

from formmail.models import AppSettings, RelaySettings, SmtpSettings, TransportKind
from formmail.sanitize import is_valid_email

_TLS_MODES = ("starttls", "ssl", "none")
HEALTH_PATH = "/health"


def load_settings() -> AppSettings:
    load_dotenv()
    relay = RelaySettings(
        admin_recipient=os.getenv("ADMIN_RECIPIENT", "you@yourdomain.com"),
        from_name=os.getenv("MAIL_FROM_NAME", "YourSite Contact"),
        from_email=os.getenv("MAIL_FROM_EMAIL", "no-reply@yourdomain.com"),
    )
    _validate_relay(relay)

    tls_mode = os.getenv("SMTP_TLS_MODE", "starttls").strip().lower()
    if tls_mode not in _TLS_MODES:
        msg = f"Invalid SMTP_TLS_MODE: {tls_mode}"
        raise ValueError(msg)

    form_path = os.getenv("FORM_PATH", "/")
    if not form_path.startswith("/") or form_path == HEALTH_PATH:
        msg = f"Invalid FORM_PATH: {form_path}"
        raise ValueError(msg)

    return AppSettings(
        relay=relay,
        transport=TransportKind(os.getenv("MAIL_TRANSPORT", "sendmail").strip().lower()),
        smtp=SmtpSettings(
            host=os.getenv("SMTP_HOST", "localhost"),
            port=int(os.getenv("SMTP_PORT", "587")),
            user=os.getenv("SMTP_USER", ""),
            password=os.getenv("SMTP_PASSWORD", ""),
            tls_mode=tls_mode,
            timeout_sec=int(os.getenv("SMTP_TIMEOUT_SEC", "20")),
        ),
        sendmail_path=os.getenv("SENDMAIL_PATH", "/usr/sbin/sendmail"),
        api_host=os.getenv("API_HOST", "127.0.0.1"),
        api_port=int(os.getenv("API_PORT", "8080")),
        form_path=form_path,
        max_body_bytes=int(os.getenv("MAX_BODY_BYTES", "65536")),
        csrf_cookie=os.getenv("CSRF_COOKIE", ""),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_dir=os.getenv("LOG_DIR", ""),
        access_log=os.getenv("ACCESS_LOG", "1").strip().lower() not in ("0", "false", "no", "off"),
    )


def _validate_relay(relay: RelaySettings) -> None:
    for env_name, value in (
        ("ADMIN_RECIPIENT", relay.admin_recipient),
        ("MAIL_FROM_EMAIL", relay.from_email),
    ):
        if not is_valid_email(value):
            msg = f"Invalid {env_name}: {value!r}"
            raise ValueError(msg)
    if "\r" in relay.from_name or "\n" in relay.from_name:
        raise ValueError("Invalid MAIL_FROM_NAME: line breaks are not allowed")
