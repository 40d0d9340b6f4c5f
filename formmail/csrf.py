from __future__ import annotations

import hmac
from abc import ABC, abstractmethod
from typing import Mapping


class CsrfVerifier(ABC):
    @abstractmethod
    def verify(self, form: Mapping[str, str], cookies: Mapping[str, str]) -> bool:
        raise NotImplementedError


class NoCsrfCheck(CsrfVerifier):
    def verify(self, form: Mapping[str, str], cookies: Mapping[str, str]) -> bool:
        return True


class DoubleSubmitCsrfVerifier(CsrfVerifier):
    """Accepts a submission when its ``csrf`` field matches a cookie the site set."""

    def __init__(self, cookie_name: str, field_name: str = "csrf") -> None:
        self.cookie_name = cookie_name
        self.field_name = field_name

    def verify(self, form: Mapping[str, str], cookies: Mapping[str, str]) -> bool:
        submitted = form.get(self.field_name, "")
        expected = cookies.get(self.cookie_name, "")
        if not submitted or not expected:
            return False
        return hmac.compare_digest(submitted.encode("utf-8"), expected.encode("utf-8"))


def build_csrf_verifier(cookie_name: str) -> CsrfVerifier:
    if not cookie_name:
        return NoCsrfCheck()
    return DoubleSubmitCsrfVerifier(cookie_name)
