from __future__ import annotations

import smtplib
import subprocess
import unittest
from dataclasses import replace
from unittest.mock import MagicMock, patch

from formmail.mail_transport import (
    NullTransport,
    SendmailTransport,
    SmtpTransport,
    build_email,
    build_transport,
)
from formmail.message_builder import build_headers, collect_rows, encode_subject, render_body
from formmail.models import AppSettings, RelaySettings, SmtpSettings, TransportKind

HEADERS = (
    ("MIME-Version", "1.0"),
    ("Content-Type", "text/html; charset=UTF-8"),
    ("From", "Site Contact <no-reply@site.org>"),
)
SMTP = SmtpSettings(
    host="mail.site.org",
    port=587,
    user="relay",
    password="secret",
    tls_mode="starttls",
    timeout_sec=5,
)
SETTINGS = AppSettings(
    relay=RelaySettings(
        admin_recipient="inbox@site.org",
        from_name="Site Contact",
        from_email="no-reply@site.org",
    ),
    transport=TransportKind.NULL,
    smtp=SMTP,
    sendmail_path="/usr/sbin/sendmail",
    api_host="127.0.0.1",
    api_port=8080,
    form_path="/",
    max_body_bytes=65536,
    csrf_cookie="",
    log_level="INFO",
    log_dir="",
)


class BuildEmailTests(unittest.TestCase):
    def test_headers_and_content_type(self) -> None:
        msg = build_email("inbox@site.org", "=?UTF-8?B?SGk=?=", "<p>a</p>", HEADERS)
        self.assertEqual(msg["To"], "inbox@site.org")
        self.assertEqual(msg["Subject"], "Hi")
        self.assertEqual(msg["From"], "Site Contact <no-reply@site.org>")
        self.assertEqual(msg["MIME-Version"], "1.0")
        self.assertEqual(msg.get_content_type(), "text/html")
        self.assertEqual(msg.get_content_charset(), "utf-8")
        self.assertEqual(len(msg.get_all("Content-Type")), 1)
        self.assertEqual(msg.get_content(), "<p>a</p>\n")

    def test_long_lines_and_non_ascii_names_stay_within_rfc_limits(self) -> None:
        relay = RelaySettings(
            admin_recipient="inbox@site.org",
            from_name="Café Contact",
            from_email="no-reply@site.org",
        )
        body = render_body(
            collect_rows({"message": "x" * 3000, "note": "Grüße"}),
            sender_name="Zoë",
            sender_email="",
        )
        msg = build_email(
            "inbox@site.org",
            encode_subject("Überraschung"),
            body,
            build_headers(relay, reply_to="a@b.com"),
        )
        raw = msg.as_bytes()
        head, _, _ = raw.partition(b"\r\n\r\n")

        self.assertLessEqual(max(len(line) for line in raw.split(b"\r\n")), 998)
        head.decode("ascii")
        self.assertIn(msg["Content-Transfer-Encoding"], ("quoted-printable", "base64"))
        self.assertEqual(msg["From"].addresses[0].display_name, "Café Contact")
        self.assertEqual(msg["Reply-To"], "a@b.com")
        self.assertIn("x" * 3000, msg.get_content())


class SmtpTransportTests(unittest.TestCase):
    def test_sends_with_starttls_and_login(self) -> None:
        client = MagicMock()
        client.__enter__.return_value = client
        with patch("formmail.mail_transport.smtplib.SMTP", return_value=client) as mocked_smtp:
            ok = SmtpTransport(SMTP, "no-reply@site.org")("inbox@site.org", "s", "<p>x</p>", HEADERS)
        self.assertTrue(ok)
        mocked_smtp.assert_called_once_with("mail.site.org", 587, timeout=5)
        client.starttls.assert_called_once()
        client.login.assert_called_once_with("relay", "secret")
        msg = client.send_message.call_args.args[0]
        self.assertEqual(msg["To"], "inbox@site.org")
        self.assertEqual(client.send_message.call_args.kwargs["from_addr"], "no-reply@site.org")
        self.assertEqual(client.send_message.call_args.kwargs["to_addrs"], ["inbox@site.org"])

    def test_smtp_error_reports_failure(self) -> None:
        client = MagicMock()
        client.__enter__.return_value = client
        client.send_message.side_effect = smtplib.SMTPRecipientsRefused({})
        with patch("formmail.mail_transport.smtplib.SMTP", return_value=client), patch(
            "formmail.mail_transport.logger"
        ) as mocked_logger:
            ok = SmtpTransport(SMTP, "no-reply@site.org")("inbox@site.org", "s", "b", HEADERS)
        self.assertFalse(ok)
        mocked_logger.exception.assert_called_once()

    def test_connection_error_reports_failure(self) -> None:
        with patch(
            "formmail.mail_transport.smtplib.SMTP",
            side_effect=ConnectionRefusedError("refused"),
        ), patch("formmail.mail_transport.logger"):
            ok = SmtpTransport(SMTP, "no-reply@site.org")("inbox@site.org", "s", "b", HEADERS)
        self.assertFalse(ok)


class SendmailTransportTests(unittest.TestCase):
    def test_pipes_message_to_binary(self) -> None:
        completed = subprocess.CompletedProcess(args=[], returncode=0, stdout=b"", stderr=b"")
        with patch("formmail.mail_transport.subprocess.run", return_value=completed) as mocked_run:
            ok = SendmailTransport("/usr/sbin/sendmail", "no-reply@site.org")(
                "inbox@site.org", "s", "<p>x</p>", HEADERS
            )
        self.assertTrue(ok)
        command = mocked_run.call_args.args[0]
        self.assertEqual(command, ["/usr/sbin/sendmail", "-t", "-i", "-f", "no-reply@site.org"])
        raw = mocked_run.call_args.kwargs["input"]
        self.assertIn(b"Subject: s\n", raw)
        self.assertNotIn(b"\r\n", raw)

    def test_non_zero_exit_reports_failure(self) -> None:
        completed = subprocess.CompletedProcess(args=[], returncode=75, stdout=b"", stderr=b"queue full")
        with patch("formmail.mail_transport.subprocess.run", return_value=completed), patch(
            "formmail.mail_transport.logger"
        ) as mocked_logger:
            ok = SendmailTransport("/usr/sbin/sendmail", "no-reply@site.org")("inbox@site.org", "s", "b", HEADERS)
        self.assertFalse(ok)
        mocked_logger.error.assert_called_once()

    def test_missing_binary_reports_failure(self) -> None:
        with patch(
            "formmail.mail_transport.subprocess.run",
            side_effect=FileNotFoundError("sendmail"),
        ), patch("formmail.mail_transport.logger"):
            ok = SendmailTransport("/nope/sendmail", "no-reply@site.org")("inbox@site.org", "s", "b", HEADERS)
        self.assertFalse(ok)


class BuildTransportTests(unittest.TestCase):
    def test_selects_implementation_by_kind(self) -> None:
        self.assertIsInstance(build_transport(SETTINGS), NullTransport)
        self.assertIsInstance(
            build_transport(replace(SETTINGS, transport=TransportKind.SMTP)),
            SmtpTransport,
        )
        sendmail = build_transport(replace(SETTINGS, transport=TransportKind.SENDMAIL))
        self.assertIsInstance(sendmail, SendmailTransport)
        self.assertEqual(sendmail.envelope_from, "no-reply@site.org")


if __name__ == "__main__":
    unittest.main()
