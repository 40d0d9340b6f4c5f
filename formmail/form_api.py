from __future__ import annotations

import io
import json
import logging
from http import HTTPStatus
from http.cookies import CookieError, SimpleCookie
from urllib.parse import parse_qsl
from wsgiref.simple_server import WSGIRequestHandler, make_server

from python_multipart import parse_form
from python_multipart.exceptions import FormParserError
from python_multipart.multipart import Field, File

from formmail.csrf import CsrfVerifier
from formmail.logging_utils import ACCESS_LOGGER_NAME
from formmail.mail_transport import MailTransport
from formmail.models import AppSettings
from formmail.relay_service import FormRelayError, MethodNotAllowed, relay_submission
from formmail.settings import HEALTH_PATH

logger = logging.getLogger(__name__)
access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

URLENCODED_CONTENT_TYPE = "application/x-www-form-urlencoded"
MULTIPART_CONTENT_TYPE = "multipart/form-data"
FORM_CONTENT_TYPES = (URLENCODED_CONTENT_TYPE, MULTIPART_CONTENT_TYPE)


class LoggingRequestHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: object) -> None:
        access_logger.info("%s %s", self.address_string(), format % args)


class RequestBodyError(ValueError):
    def __init__(self, status: HTTPStatus, code: str, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


def run_api_server(settings: AppSettings, transport: MailTransport, csrf_verifier: CsrfVerifier | None = None) -> None:
    app = make_app(settings, transport, csrf_verifier)
    with make_server(
        settings.api_host,
        settings.api_port,
        app,
        handler_class=LoggingRequestHandler,
    ) as server:
        logger.info(
            "formmail listening on http://%s:%s%s",
            settings.api_host,
            settings.api_port,
            settings.form_path,
        )
        server.serve_forever()


def make_app(settings: AppSettings, transport: MailTransport, csrf_verifier: CsrfVerifier | None = None):  # type: ignore[no-untyped-def]
    def app(environ: dict, start_response):  # type: ignore[no-untyped-def]
        method = environ.get("REQUEST_METHOD", "GET").upper()
        path = environ.get("PATH_INFO", "") or "/"
        try:
            if method == "GET" and path == HEALTH_PATH:
                return _json(start_response, HTTPStatus.OK, {"status": "ok"})

            if path != settings.form_path:
                return _json(
                    start_response,
                    HTTPStatus.NOT_FOUND,
                    {"status": "error", "message": "Not found.", "error": "NOT_FOUND"},
                )

            if method != "POST":
                raise MethodNotAllowed("Only POST allowed.")

            form = _read_form(environ, settings.max_body_bytes)
            result = relay_submission(
                method,
                form,
                settings.relay,
                transport,
                csrf_verifier=csrf_verifier,
                cookies=_parse_cookies(environ),
            )
            return _json(start_response, HTTPStatus.OK, result.to_dict())
        except FormRelayError as exc:
            logger.info("form rejected code=%s method=%s", exc.code, method)
            extra = [("Allow", "POST")] if isinstance(exc, MethodNotAllowed) else []
            return _json(start_response, exc.status, exc.to_result().to_dict(), extra)
        except RequestBodyError as exc:
            logger.info("form body rejected code=%s", exc.code)
            return _json(
                start_response,
                exc.status,
                {"status": "error", "message": str(exc), "error": exc.code},
            )
        except Exception:  # pragma: no cover
            logger.exception("unhandled error while relaying form")
            return _json(
                start_response,
                HTTPStatus.INTERNAL_SERVER_ERROR,
                {"status": "error", "message": "Internal error.", "error": "INTERNAL_ERROR"},
            )

    return app


def _read_form(environ: dict, max_body_bytes: int) -> dict[str, str]:
    raw_content_type = environ.get("CONTENT_TYPE", "")
    content_type = raw_content_type.split(";", 1)[0].strip().lower()
    if content_type not in FORM_CONTENT_TYPES:
        raise RequestBodyError(
            HTTPStatus.UNSUPPORTED_MEDIA_TYPE,
            "UNSUPPORTED_MEDIA_TYPE",
            "Form must be submitted as application/x-www-form-urlencoded or multipart/form-data.",
        )
    try:
        body_size = int(environ.get("CONTENT_LENGTH", "0") or "0")
    except ValueError:
        body_size = 0
    if body_size > max_body_bytes:
        raise RequestBodyError(
            HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
            "PAYLOAD_TOO_LARGE",
            "Form is too large.",
        )
    body = environ["wsgi.input"].read(body_size) if body_size > 0 else b""
    if content_type == MULTIPART_CONTENT_TYPE:
        pairs = _parse_multipart(raw_content_type, body)
    else:
        pairs = parse_qsl(body.decode("utf-8", errors="replace"), keep_blank_values=True)

    out: dict[str, str] = {}
    # later duplicates overwrite the value but keep the first position
    for key, value in pairs:
        out[key] = value
    return out


def _parse_multipart(content_type: str, body: bytes) -> list[tuple[str, str]]:
    """Text parts of a multipart/form-data body, in order. File parts are dropped."""
    pairs: list[tuple[str, str]] = []

    def on_field(field: Field) -> None:
        name = (field.field_name or b"").decode("utf-8", errors="replace")
        value = (field.value or b"").decode("utf-8", errors="replace")
        pairs.append((name, value))

    def on_file(upload: File) -> None:
        upload.close()

    headers = {"Content-Type": content_type, "Content-Length": str(len(body))}
    try:
        parse_form(headers, io.BytesIO(body), on_field, on_file)
    except FormParserError as exc:
        raise RequestBodyError(
            HTTPStatus.BAD_REQUEST,
            "MALFORMED_BODY",
            "Form body could not be parsed.",
        ) from exc
    return pairs


def _parse_cookies(environ: dict) -> dict[str, str]:
    raw = environ.get("HTTP_COOKIE", "")
    if not raw:
        return {}
    jar: SimpleCookie = SimpleCookie()
    try:
        jar.load(raw)
    except CookieError:
        return {}
    return {name: morsel.value for name, morsel in jar.items()}


def _json(start_response, status: HTTPStatus, payload: dict, extra_headers: list | None = None):  # type: ignore[no-untyped-def]
    body = json.dumps(payload, ensure_ascii=True).encode("utf-8")
    headers = [
        ("Content-Type", "application/json; charset=utf-8"),
        ("Content-Length", str(len(body))),
        ("X-Content-Type-Options", "nosniff"),
    ]
    headers.extend(extra_headers or [])
    start_response(f"{status.value} {status.phrase}", headers)
    return [body]
