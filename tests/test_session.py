import base64
import hashlib
import hmac
import json

import pytest

from keyflow.service.errors import (
    AuthenticationError,
    ConfigurationError,
    InvalidTokenError,
    TokenExpiredError,
)
from keyflow.service.session import SESSION_TTL_SECONDS, SessionSigner

KEY_A = "a" * 32
KEY_B = "b" * 40


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _segment(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")


class TestSessionSigner:
    def test_empty_key_set_rejected(self):
        with pytest.raises(ConfigurationError):
            SessionSigner([])

    def test_round_trip(self):
        clock = FakeClock()
        signer = SessionSigner([KEY_A], clock=clock)
        claims = signer.verify(signer.issue("user-1"))
        assert claims.sub == "user-1"
        assert claims.exp == int(clock.now) + SESSION_TTL_SECONDS

    def test_token_signed_by_previous_key_still_verifies(self):
        old_signer = SessionSigner([KEY_B])
        rotated = SessionSigner([KEY_A, KEY_B])
        assert rotated.verify(old_signer.issue("user-2")).sub == "user-2"

    def test_new_tokens_use_primary_key(self):
        rotated = SessionSigner([KEY_A, KEY_B])
        token = rotated.issue("user-3")
        assert SessionSigner([KEY_A]).verify(token).sub == "user-3"
        with pytest.raises(AuthenticationError):
            SessionSigner([KEY_B]).verify(token)

    def test_expired_distinct_from_unknown_key(self):
        clock = FakeClock()
        signer = SessionSigner([KEY_A], clock=clock)
        token = signer.issue("user-4")
        clock.now += SESSION_TTL_SECONDS + 1

        with pytest.raises(TokenExpiredError):
            signer.verify(token)

        stranger = SessionSigner([KEY_B], clock=clock)
        with pytest.raises(AuthenticationError) as excinfo:
            stranger.verify(token)
        assert not isinstance(excinfo.value, (TokenExpiredError, InvalidTokenError))

    def test_expiry_boundary_is_exclusive(self):
        clock = FakeClock()
        signer = SessionSigner([KEY_A], clock=clock)
        token = signer.issue("user-5")
        clock.now = float(int(FakeClock().now) + SESSION_TTL_SECONDS)
        with pytest.raises(TokenExpiredError):
            signer.verify(token)

    @pytest.mark.parametrize("token", ["", "abc", "a.b", "!!!.???.***"])
    def test_malformed_tokens(self, token):
        with pytest.raises(InvalidTokenError):
            SessionSigner([KEY_A]).verify(token)

    def test_other_algorithms_rejected(self):
        signer = SessionSigner([KEY_A])
        _, payload, signature = signer.issue("user-6").split(".")
        forged = f"{_segment({'alg': 'none', 'typ': 'JWT'})}.{payload}.{signature}"
        with pytest.raises(InvalidTokenError):
            signer.verify(forged)

    def test_tampered_payload_fails_signature(self):
        signer = SessionSigner([KEY_A])
        header, _, signature = signer.issue("user-7").split(".")
        tampered = f"{header}.{_segment({'sub': 'admin', 'exp': 9999999999})}.{signature}"
        with pytest.raises(AuthenticationError):
            signer.verify(tampered)

    def test_deeply_nested_header_is_malformed(self):
        nested = base64.urlsafe_b64encode(b"[" * 3000).decode().rstrip("=")
        with pytest.raises(InvalidTokenError):
            SessionSigner([KEY_A, KEY_B]).verify(f"{nested}.e30.sig")

    def test_deeply_nested_payload_is_malformed(self):
        signer = SessionSigner([KEY_A])
        header = _segment({"alg": "HS256", "typ": "JWT"})
        payload = base64.urlsafe_b64encode(b"{\"a\":" * 3000).decode().rstrip("=")
        signature = base64.urlsafe_b64encode(
            hmac.new(KEY_A.encode(), f"{header}.{payload}".encode(), hashlib.sha256).digest()
        ).decode().rstrip("=")
        with pytest.raises(InvalidTokenError):
            signer.verify(f"{header}.{payload}.{signature}")
