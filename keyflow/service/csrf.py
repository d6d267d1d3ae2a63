from __future__ import annotations

import hmac
import secrets
from typing import Mapping

from starlette.responses import Response

from keyflow.service.cookies import CSRF_COOKIE, CookiePolicy
from keyflow.service.errors import ForbiddenError

CSRF_HEADER = "x-csrf-token"
CSRF_TOKEN_BYTES = 32


class CsrfGuard:
    """Double-submit CSRF protection: cookie value must equal the header."""

    def __init__(self, policy: CookiePolicy) -> None:
        self.policy = policy

    @staticmethod
    def new_token() -> str:
        return secrets.token_urlsafe(CSRF_TOKEN_BYTES)

    def issue(self, response: Response) -> str:
        token = self.new_token()
        self.policy.set_csrf(response, token)
        return token

    def ensure_issued(self, cookies: Mapping[str, str], response: Response) -> str:
        existing = cookies.get(CSRF_COOKIE)
        if existing:
            return existing
        return self.issue(response)

    def verify(self, cookies: Mapping[str, str], headers: Mapping[str, str]) -> None:
        header_token = headers.get(CSRF_HEADER)
        if not header_token:
            raise ForbiddenError("missing csrf header")
        cookie_token = cookies.get(CSRF_COOKIE)
        if not cookie_token:
            raise ForbiddenError("missing csrf cookie")
        if not hmac.compare_digest(cookie_token.encode(), header_token.encode()):
            raise ForbiddenError("csrf token mismatch")

    def expire(self, response: Response) -> None:
        self.policy.expire(response, CSRF_COOKIE)
