from __future__ import annotations

from datetime import datetime, timezone

from starlette.responses import Response

SESSION_COOKIE = "kf_session"
CSRF_COOKIE = "kf_csrf"
OAUTH_STATE_COOKIE = "kf_oauth_state"
OAUTH_PKCE_COOKIE = "kf_oauth_pkce"

SESSION_COOKIE_MAX_AGE = 12 * 60 * 60
TRANSIENT_COOKIE_MAX_AGE = 10 * 60

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class CookiePolicy:
    """Attribute policy shared by every cookie the service writes.

    Over https the front end may live on another site, so cookies go out as
    ``SameSite=None; Secure``. Plain http falls back to ``Lax`` without
    ``Secure``, which browsers would otherwise drop.
    """

    def __init__(self, secure: bool) -> None:
        self.secure = secure

    @property
    def samesite(self) -> str:
        return "none" if self.secure else "lax"

    def _set(self, response: Response, name: str, value: str, *, max_age: int, httponly: bool) -> None:
        response.set_cookie(
            name,
            value,
            max_age=max_age,
            path="/",
            secure=self.secure,
            httponly=httponly,
            samesite=self.samesite,
        )

    def set_session(self, response: Response, token: str) -> None:
        self._set(response, SESSION_COOKIE, token, max_age=SESSION_COOKIE_MAX_AGE, httponly=True)

    def set_transient(self, response: Response, name: str, value: str) -> None:
        self._set(response, name, value, max_age=TRANSIENT_COOKIE_MAX_AGE, httponly=True)

    def set_csrf(self, response: Response, token: str) -> None:
        # read by front-end script and echoed in X-CSRF-Token
        self._set(response, CSRF_COOKIE, token, max_age=SESSION_COOKIE_MAX_AGE, httponly=False)

    def expire(self, response: Response, name: str) -> None:
        """Emit an immediate-expiry directive with matching attributes."""
        response.set_cookie(
            name,
            "",
            max_age=0,
            expires=_EPOCH,
            path="/",
            secure=self.secure,
            httponly=name != CSRF_COOKIE,
            samesite=self.samesite,
        )
