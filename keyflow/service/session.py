from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from keyflow.logging import get_logger
from keyflow.service.errors import (
    AuthenticationError,
    ConfigurationError,
    InvalidTokenError,
    TokenExpiredError,
)

logger = get_logger(__name__)

SESSION_TTL_SECONDS = 12 * 60 * 60
_HEADER = {"alg": "HS256", "typ": "JWT"}


class VerifyOutcome(Enum):
    VALID = "valid"
    BAD_SIGNATURE = "bad_signature"
    MALFORMED = "malformed"
    EXPIRED = "expired"


@dataclass(frozen=True)
class SessionClaims:
    sub: str
    exp: int


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _sign(secret: str, signing_input: str) -> bytes:
    return hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()


class SessionSigner:
    """Issues and verifies HS256 session tokens against a rotating key set.

    The first secret signs; every secret verifies, in order. Rotating means
    prepending a new secret and dropping the oldest once its tokens expire.
    """

    def __init__(
        self,
        secrets: Sequence[str],
        *,
        ttl_seconds: int = SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secrets:
            raise ConfigurationError("at least one session signing key is required")
        self._secrets = tuple(secrets)
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def issue(self, user_id: str) -> str:
        claims = {"sub": user_id, "exp": int(self._clock()) + self.ttl_seconds}
        header_enc = _encode_segment(json.dumps(_HEADER, separators=(",", ":")).encode())
        payload_enc = _encode_segment(json.dumps(claims, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        signature = _sign(self._secrets[0], signing_input)
        return f"{signing_input}.{_encode_segment(signature)}"

    def verify(self, token: str) -> SessionClaims:
        """Return the claims of a valid token.

        Raises:
            InvalidTokenError: token cannot be parsed or uses another algorithm
            TokenExpiredError: signature matched but ``exp`` has passed
            AuthenticationError: no configured key produced a matching signature
        """
        for secret in self._secrets:
            outcome, claims = self._verify_with(secret, token)
            if outcome is VerifyOutcome.VALID:
                return claims
            if outcome is VerifyOutcome.MALFORMED:
                raise InvalidTokenError("malformed session token")
            if outcome is VerifyOutcome.EXPIRED:
                raise TokenExpiredError("session token expired")
            # BAD_SIGNATURE: an older key may have signed it
        raise AuthenticationError("session token signature mismatch")

    def _verify_with(
        self, secret: str, token: str
    ) -> tuple[VerifyOutcome, Optional[SessionClaims]]:
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return VerifyOutcome.MALFORMED, None

        try:
            header = json.loads(_decode_segment(header_b64))
        except (binascii.Error, ValueError, RecursionError):
            return VerifyOutcome.MALFORMED, None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            return VerifyOutcome.MALFORMED, None

        try:
            signature = _decode_segment(sig_b64)
        except (binascii.Error, ValueError):
            return VerifyOutcome.MALFORMED, None
        expected = _sign(secret, f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected, signature):
            return VerifyOutcome.BAD_SIGNATURE, None

        try:
            payload = json.loads(_decode_segment(payload_b64))
            claims = SessionClaims(sub=str(payload["sub"]), exp=int(payload["exp"]))
        except (binascii.Error, ValueError, KeyError, TypeError, RecursionError):
            return VerifyOutcome.MALFORMED, None

        if claims.exp <= self._clock():
            return VerifyOutcome.EXPIRED, None
        return VerifyOutcome.VALID, claims
