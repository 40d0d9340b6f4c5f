from __future__ import annotations

import html

from email_validator import EmailNotValidError, validate_email


def sanitize_text(value: object) -> str:
    """Prepare untrusted text for embedding in an HTML document.

    Strips surrounding whitespace, drops NUL characters and escapes
    ``& < > " '``.
    """
    text = str(value).replace("\0", "").strip()
    return html.escape(text, quote=True)


def safe_header_value(value: str) -> str:
    return value.replace("\r", "").replace("\n", "")


def is_valid_email(value: str) -> bool:
    if not value or value != value.strip():
        return False
    try:
        validate_email(value, check_deliverability=False, allow_smtputf8=False)
    except EmailNotValidError:
        return False
    return True
