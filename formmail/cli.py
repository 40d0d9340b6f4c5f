from __future__ import annotations

import argparse
import json
import sys

from formmail.csrf import build_csrf_verifier
from formmail.form_api import run_api_server
from formmail.logging_utils import setup_logging
from formmail.mail_transport import build_transport
from formmail.models import AppSettings
from formmail.relay_service import FormRelayError, relay_submission
from formmail.settings import load_settings


def main() -> int:
    parser = argparse.ArgumentParser(prog="formmail")
    parser.add_argument("command", choices=["api-run", "check-config", "send-test"])
    parser.add_argument("--message", default="Test message from formmail.")
    args = parser.parse_args()

    settings = load_settings()
    setup_logging(settings.log_level, settings.log_dir, access_log=settings.access_log)

    if args.command == "check-config":
        print(json.dumps(describe_settings(settings), indent=2))
        return 0
    if args.command == "send-test":
        return send_test(settings, args.message)
    run_api_server(settings, build_transport(settings), build_csrf_verifier(settings.csrf_cookie))
    return 0


def describe_settings(settings: AppSettings) -> dict[str, object]:
    return {
        "admin_recipient": settings.relay.admin_recipient,
        "from": f"{settings.relay.from_name} <{settings.relay.from_email}>",
        "transport": settings.transport.value,
        "smtp_host": settings.smtp.host,
        "smtp_port": settings.smtp.port,
        "smtp_tls_mode": settings.smtp.tls_mode,
        "smtp_auth": bool(settings.smtp.user and settings.smtp.password),
        "sendmail_path": settings.sendmail_path,
        "listen": f"{settings.api_host}:{settings.api_port}",
        "form_path": settings.form_path,
        "max_body_bytes": settings.max_body_bytes,
        "csrf_enabled": bool(settings.csrf_cookie),
        "access_log": settings.access_log,
    }


def send_test(settings: AppSettings, message: str) -> int:
    try:
        result = relay_submission(
            "POST",
            {"form_subject": "formmail test", "message": message},
            settings.relay,
            build_transport(settings),
        )
    except FormRelayError as exc:
        print(f"send-test failed: {exc.code} {exc}", file=sys.stderr)
        return 1
    print(result.message)
    return 0


if __name__ == "__main__":
    sys.exit(main())
