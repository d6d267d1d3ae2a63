from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Optional

from keyflow.logging import get_logger
from keyflow.service.errors import AuthenticationError, BadRequestError, ServiceError
from keyflow.service.oauth import (
    OAuthProviderClient,
    code_challenge,
    generate_code_verifier,
    generate_state,
)
from keyflow.service.session import SessionSigner
from keyflow.storage.models import User, UserStore

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class LoginRedirect:
    """Where to send the browser, plus the values to park in cookies."""

    url: str
    state: str
    verifier: str


@dataclass(frozen=True)
class LoginResult:
    user: User
    session_token: str


@dataclass(frozen=True)
class CurrentUser:
    user: User
    client_ip: str

    @property
    def id(self) -> str:
        return self.user.id

    def require_role(self, role: str) -> None:
        if self.user.role != role:
            raise AuthenticationError(f"role {role} required")

    def require_admin(self) -> None:
        self.require_role(ADMIN_ROLE)


class AuthService:
    """OAuth login handshake and session authentication."""

    def __init__(
        self,
        store: UserStore,
        signer: SessionSigner,
        provider: OAuthProviderClient,
    ) -> None:
        self.store = store
        self.signer = signer
        self.provider = provider
        self.logger = get_logger(__name__)

    def start_login(self, client_ip: str) -> LoginRedirect:
        verifier = generate_code_verifier()
        state = generate_state()
        url = self.provider.authorization_url(state, code_challenge(verifier))
        self.logger.info("oauth_redirect", client_ip=client_ip)
        return LoginRedirect(url=url, state=state, verifier=verifier)

    async def complete_login(
        self,
        code: str,
        state: str,
        stored_state: Optional[str],
        stored_verifier: Optional[str],
        client_ip: str,
    ) -> LoginResult:
        """Validate the callback against parked state and sign the user in.

        The state check happens before any call to the provider, so a forged
        callback costs nothing upstream.
        """
        if not stored_state:
            raise BadRequestError("missing oauth state")
        if not stored_verifier:
            raise BadRequestError("missing pkce verifier")
        if not hmac.compare_digest(stored_state.encode(), state.encode()):
            self.logger.warning("oauth_state_mismatch", client_ip=client_ip)
            raise BadRequestError("invalid oauth state")

        access_token = await self.provider.exchange_code(code, stored_verifier)
        profile = await self.provider.fetch_profile(access_token)
        user = self.store.upsert_user(profile)
        session_token = self.signer.issue(user.id)
        self.logger.info(
            "user_authenticated", user_id=user.id, login=user.login, client_ip=client_ip
        )
        return LoginResult(user=user, session_token=session_token)

    def logout_subject(self, token: Optional[str]) -> Optional[str]:
        """User id behind ``token`` for audit logging, or None."""
        if not token:
            return None
        try:
            return self.signer.verify(token).sub
        except ServiceError:
            return None
        except Exception as exc:
            # never blocks the logout itself
            self.logger.warning("logout_session_parse_failed", error_type=type(exc).__name__)
            return None

    def authenticate(self, token: Optional[str], client_ip: str) -> CurrentUser:
        if not token:
            raise AuthenticationError("missing session")
        claims = self.signer.verify(token)
        user = self.store.get_user(claims.sub)
        if not user:
            raise AuthenticationError("session subject no longer exists")
        self.logger.info("session_validated", user_id=user.id, client_ip=client_ip)
        return CurrentUser(user=user, client_ip=client_ip)
