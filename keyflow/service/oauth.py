"""Identity-provider client: authorization URL, code exchange, profile fetch.

PKCE follows RFC 7636 with the S256 method only.
"""
from __future__ import annotations

import base64
import hashlib
import os
from typing import Any
from urllib.parse import urlencode

import httpx

from keyflow.config import Settings
from keyflow.logging import get_logger
from keyflow.service.errors import UpstreamError
from keyflow.storage.models import ProviderProfile

logger = get_logger(__name__)

USER_AGENT = "keyflow-server"


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_code_verifier() -> str:
    """64 random bytes, 86 URL-safe characters."""
    return _b64url(os.urandom(64))


def code_challenge(verifier: str) -> str:
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def generate_state() -> str:
    return _b64url(os.urandom(32))


class OAuthProviderClient:
    """Talks to a GitHub-style OAuth2 provider over ``httpx``.

    Every failure surfaces as ``UpstreamError`` and nothing is retried; the
    user restarts the login instead.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient) -> None:
        self.settings = settings
        self.http = http_client

    def authorization_url(self, state: str, challenge: str) -> str:
        query = urlencode(
            {
                "response_type": "code",
                "client_id": self.settings.oauth_client_id or "",
                "redirect_uri": self.settings.oauth_redirect_uri,
                "scope": self.settings.oauth_scope,
                "state": state,
                "code_challenge": challenge,
                "code_challenge_method": "S256",
            }
        )
        return f"{self.settings.oauth_authorize_url}?{query}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        headers.update(kwargs.pop("headers", {}))
        try:
            response = await self.http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("identity_provider_error", url=url, error=type(exc).__name__)
            raise UpstreamError("identity provider unavailable") from exc

        if not response.is_success:
            logger.error("identity_provider_error", url=url, status=response.status_code)
            raise UpstreamError(
                f"identity provider error: {response.status_code}",
                upstream_status=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            logger.error("identity_provider_error", url=url, error="malformed_json")
            raise UpstreamError(
                "identity provider returned malformed response",
                upstream_status=response.status_code,
            ) from exc

    async def exchange_code(self, code: str, verifier: str) -> str:
        """Trade an authorization code plus PKCE verifier for an access token."""
        payload = await self._request(
            "POST",
            self.settings.oauth_token_url,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.settings.oauth_redirect_uri,
                "client_id": self.settings.oauth_client_id or "",
                "client_secret": self.settings.oauth_client_secret or "",
                "code_verifier": verifier,
            },
        )
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            # GitHub reports bad codes as 200 with an ``error`` field
            error = payload.get("error") if isinstance(payload, dict) else None
            logger.error("identity_provider_error", stage="token", error=error)
            raise UpstreamError("identity provider returned no access token")
        return access_token

    async def fetch_profile(self, access_token: str) -> ProviderProfile:
        payload = await self._request(
            "GET",
            self.settings.oauth_userinfo_url,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        try:
            return ProviderProfile(
                provider_id=int(payload["id"]),
                login=str(payload["login"]),
                name=payload.get("name"),
                avatar_url=payload.get("avatar_url"),
                email=payload.get("email"),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.error("identity_provider_error", stage="profile", error="unexpected_shape")
            raise UpstreamError("identity provider returned malformed profile") from exc
