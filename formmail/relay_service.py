from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Mapping

from formmail.csrf import CsrfVerifier
from formmail.mail_transport import MailTransport
from formmail.message_builder import DEFAULT_SUBJECT, build_message, collect_rows
from formmail.models import RelayResult, RelaySettings, ResultStatus
from formmail.sanitize import is_valid_email, sanitize_text

logger = logging.getLogger(__name__)

WRITE_METHOD = "POST"
SUBJECT_FIELD = "form_subject"
EMAIL_FIELD = "email"
NAME_FIELD = "name"


class FormRelayError(ValueError):
    code = "RELAY_ERROR"
    status = HTTPStatus.BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)

    def to_result(self) -> RelayResult:
        return RelayResult(status=ResultStatus.ERROR, message=str(self), error_code=self.code)


class MethodNotAllowed(FormRelayError):
    code = "METHOD_NOT_ALLOWED"
    status = HTTPStatus.METHOD_NOT_ALLOWED


class InvalidInput(FormRelayError):
    code = "INVALID_INPUT"
    status = HTTPStatus.BAD_REQUEST


class EmptySubmission(FormRelayError):
    code = "EMPTY_SUBMISSION"
    status = HTTPStatus.BAD_REQUEST


class CsrfRejected(FormRelayError):
    code = "CSRF_REJECTED"
    status = HTTPStatus.FORBIDDEN


class DeliveryFailure(FormRelayError):
    code = "DELIVERY_FAILURE"
    status = HTTPStatus.INTERNAL_SERVER_ERROR


def relay_submission(
    method: str,
    form: Mapping[str, str],
    relay: RelaySettings,
    transport: MailTransport,
    *,
    csrf_verifier: CsrfVerifier | None = None,
    cookies: Mapping[str, str] | None = None,
) -> RelayResult:
    """Turn one untrusted form submission into at most one outbound email.

    Each gate raises a ``FormRelayError`` subclass; nothing is handed to
    ``transport`` unless every gate passed.
    """
    if method.upper() != WRITE_METHOD:
        raise MethodNotAllowed("Only POST allowed.")

    if csrf_verifier is not None and not csrf_verifier.verify(form, cookies or {}):
        raise CsrfRejected("Invalid form token.")

    subject = sanitize_text(form.get(SUBJECT_FIELD, DEFAULT_SUBJECT))
    sender_email = str(form.get(EMAIL_FIELD, "")).strip()
    sender_name = sanitize_text(form.get(NAME_FIELD, ""))

    if sender_email and not is_valid_email(sender_email):
        raise InvalidInput("Invalid email address.")

    rows = collect_rows(form)
    if not rows:
        raise EmptySubmission("Form is empty.")

    message = build_message(
        relay,
        rows,
        subject=subject,
        sender_name=sender_name,
        sender_email=sender_email,
        reply_to=sender_email or None,
    )

    try:
        sent = transport(message.recipient, message.subject, message.body_html, message.headers)
    except Exception:
        logger.exception("mail transport raised recipient=%s", message.recipient)
        sent = False
    if not sent:
        raise DeliveryFailure("Failed to send message.")

    logger.info("form relayed recipient=%s rows=%s reply_to=%s", message.recipient, len(rows), bool(sender_email))
    return RelayResult(status=ResultStatus.OK, message="Message sent.")
