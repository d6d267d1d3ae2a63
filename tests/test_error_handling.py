from unittest.mock import MagicMock, patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from keyflow.api import error_handling
from keyflow.api.error_handling import register_exception_handlers
from keyflow.service.errors import (
    BadRequestError,
    ConfigurationError,
    ForbiddenError,
    NotFoundError,
    RateLimitedError,
    ServerError,
    TokenExpiredError,
    UpstreamError,
)


def _app_raising(exc: Exception) -> TestClient:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/boom")
    async def boom():
        raise exc

    return TestClient(app, raise_server_exceptions=False)


class TestErrorBodies:
    def test_client_errors_keep_their_message(self):
        cases = [
            (BadRequestError("missing oauth state"), 400, "missing oauth state"),
            (UpstreamError("identity provider error: 502"), 400, "identity provider error: 502"),
            (ForbiddenError("csrf token mismatch"), 403, "csrf token mismatch"),
            (NotFoundError("user not found"), 404, "user not found"),
        ]
        for exc, status, message in cases:
            response = _app_raising(exc).get("/boom")
            assert response.status_code == status
            assert response.json() == {"error": message}

    def test_auth_failures_are_generic(self):
        response = _app_raising(TokenExpiredError("session token expired")).get("/boom")
        assert response.status_code == 401
        assert response.json() == {"error": "unauthorized"}

    def test_rate_limit_message(self):
        response = _app_raising(RateLimitedError("k exceeded")).get("/boom")
        assert response.status_code == 429
        assert response.json() == {"error": "too many requests"}

    def test_server_errors_hide_details(self):
        for exc in (ConfigurationError("DATABASE_URL bad"), ServerError("pool exhausted")):
            with patch.object(error_handling, "logger", MagicMock()) as mock_logger:
                response = _app_raising(exc).get("/boom")
            assert response.status_code == 500
            assert response.json() == {"error": "internal server error"}
            mock_logger.error.assert_called_once()

    def test_unexpected_exception(self):
        response = _app_raising(RuntimeError("secret detail")).get("/boom")
        assert response.status_code == 500
        assert response.json() == {"error": "internal server error"}

    def test_client_errors_logged_as_warning(self):
        with patch.object(error_handling, "logger", MagicMock()) as mock_logger:
            _app_raising(ForbiddenError("missing csrf header")).get("/boom")
        mock_logger.warning.assert_called_once()
        mock_logger.error.assert_not_called()
