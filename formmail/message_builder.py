from __future__ import annotations

import base64
from typing import Mapping

from formmail.models import OutboundMessage, RelaySettings, SanitizedRow
from formmail.sanitize import safe_header_value, sanitize_text

EXCLUDED_KEYS = frozenset({"project_name", "admin_email", "form_subject", "csrf"})
DEFAULT_SUBJECT = "New contact form submission"
ANONYMOUS_SENDER = "Anonymous"

_CELL_STYLE = "padding:10px;border:1px solid #e9e9e9;"
_SHADED_ROW_STYLE = "background-color:#f8f8f8;"


def collect_rows(form: Mapping[str, object]) -> list[SanitizedRow]:
    rows: list[SanitizedRow] = []
    for key, raw in form.items():
        if key in EXCLUDED_KEYS:
            continue
        value = str(raw)
        if value == "":
            continue
        # parity counts rendered rows only
        rows.append(
            SanitizedRow(
                key=sanitize_text(key),
                value=sanitize_text(value),
                shaded=len(rows) % 2 == 1,
            )
        )
    return rows


def render_row(row: SanitizedRow) -> str:
    key = _line_breaks_to_html(row.key)
    value = _line_breaks_to_html(row.value)
    style = f' style="{_SHADED_ROW_STYLE}"' if row.shaded else ""
    return (
        f"<tr{style}>\n"
        f"    <td style='{_CELL_STYLE}'><strong>{key}</strong></td>\n"
        f"    <td style='{_CELL_STYLE}'>{value}</td>\n"
        "</tr>\n"
    )


def render_body(rows: list[SanitizedRow], *, sender_name: str, sender_email: str) -> str:
    """Wrap rendered rows in a self-contained HTML document.

    ``sender_name`` must already be sanitized. ``sender_email`` is raw and is
    escaped here.
    """
    attribution = _line_breaks_to_html(sender_name) or ANONYMOUS_SENDER
    if sender_email:
        attribution += f" &lt;{sanitize_text(sender_email)}&gt;"
    table = "".join(render_row(row) for row in rows)
    return (
        "<html><body>\n"
        f"<table style='width:100%;border-collapse:collapse;'>{table}</table>\n"
        f"<p>Sent from: {attribution}</p>\n"
        "</body></html>"
    )


def build_headers(relay: RelaySettings, *, reply_to: str | None = None) -> tuple[tuple[str, str], ...]:
    from_name = safe_header_value(relay.from_name)
    from_email = safe_header_value(relay.from_email)
    headers = [
        ("MIME-Version", "1.0"),
        ("Content-Type", "text/html; charset=UTF-8"),
        ("From", f"{from_name} <{from_email}>"),
    ]
    if reply_to:
        headers.append(("Reply-To", safe_header_value(reply_to)))
    return tuple(headers)


def encode_subject(subject: str) -> str:
    encoded = base64.b64encode(safe_header_value(subject).encode("utf-8")).decode("ascii")
    return f"=?UTF-8?B?{encoded}?="


def build_message(
    relay: RelaySettings,
    rows: list[SanitizedRow],
    *,
    subject: str,
    sender_name: str = "",
    sender_email: str = "",
    reply_to: str | None = None,
) -> OutboundMessage:
    return OutboundMessage(
        recipient=relay.admin_recipient,
        subject=encode_subject(subject),
        body_html=render_body(rows, sender_name=sender_name, sender_email=sender_email),
        headers=build_headers(relay, reply_to=reply_to),
    )


def _line_breaks_to_html(text: str) -> str:
    return text.replace("\r\n", "<br>").replace("\r", "<br>").replace("\n", "<br>")
