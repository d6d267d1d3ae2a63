from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from keyflow.logging import get_logger
from keyflow.service.errors import ConfigurationError

logger = get_logger(__name__)

# HS256 keys shorter than this are rejected at startup
MIN_SIGNING_KEY_LENGTH = 32

DEFAULT_RATE_LIMIT_PER_MINUTE = 60
DEFAULT_RATE_LIMIT_BURST = 10

_TRUTHY = {"1", "true", "yes", "on"}


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Process settings read once from the environment (and ``.env``)."""

    database_url: str | None = env_field(None, "DATABASE_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    redis_url: str | None = env_field(None, "REDIS_URL")
    session_signing_keys: str | None = env_field(
        None,
        "SESSION_SIGNING_KEYS",
        description="Comma separated; the first key signs, all keys verify",
    )
    session_signing_key: str | None = env_field(
        None,
        "SESSION_SIGNING_KEY",
        description="Deprecated single-key form of SESSION_SIGNING_KEYS",
    )
    app_base_url: str = env_field("http://localhost:8080", "APP_BASE_URL")
    frontend_origin: str = env_field("http://localhost:5173", "FRONTEND_ORIGIN")
    # Identity provider; defaults target GitHub
    oauth_client_id: str | None = env_field(None, "OAUTH_CLIENT_ID")
    oauth_client_secret: str | None = env_field(None, "OAUTH_CLIENT_SECRET")
    oauth_authorize_url: str = env_field(
        "https://github.com/login/oauth/authorize", "OAUTH_AUTHORIZE_URL"
    )
    oauth_token_url: str = env_field(
        "https://github.com/login/oauth/access_token", "OAUTH_TOKEN_URL"
    )
    oauth_userinfo_url: str = env_field("https://api.github.com/user", "OAUTH_USERINFO_URL")
    oauth_scope: str = env_field("read:user", "OAUTH_SCOPE")
    oauth_http_timeout_seconds: float = env_field(10.0, "OAUTH_HTTP_TIMEOUT_SECONDS")
    auth_rate_limit_per_minute: int = env_field(
        DEFAULT_RATE_LIMIT_PER_MINUTE, "AUTH_RATE_LIMIT_PER_MINUTE"
    )
    auth_rate_limit_burst: int = env_field(DEFAULT_RATE_LIMIT_BURST, "AUTH_RATE_LIMIT_BURST")
    allow_insecure_cookies: bool = env_field(
        False,
        "ALLOW_INSECURE_COOKIES",
        description="Permit a non-https APP_BASE_URL; local development only",
    )
    port: int = env_field(8080, "PORT")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("auth_rate_limit_per_minute", "auth_rate_limit_burst", mode="before")
    @classmethod
    def _positive_or_default(cls, value: Any, info) -> int:
        default = (
            DEFAULT_RATE_LIMIT_PER_MINUTE
            if info.field_name == "auth_rate_limit_per_minute"
            else DEFAULT_RATE_LIMIT_BURST
        )
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            return default
        return parsed if parsed > 0 else default

    @field_validator("use_memory_store", "allow_insecure_cookies", mode="before")
    @classmethod
    def _parse_flag(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in _TRUTHY
        return bool(value)

    @field_validator("app_base_url", "frontend_origin")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def cookie_secure(self) -> bool:
        return self.app_base_url.startswith("https://")

    @property
    def oauth_redirect_uri(self) -> str:
        return f"{self.app_base_url}/auth/provider/callback"

    def signing_keys(self) -> list[str]:
        """Parse the configured signing keys, primary first.

        Raises:
            ConfigurationError: no keys, or any key shorter than 32 characters
        """
        used_legacy = self.session_signing_keys is None
        if not used_legacy:
            keys = [k.strip() for k in self.session_signing_keys.split(",") if k.strip()]
        elif self.session_signing_key:
            keys = [self.session_signing_key.strip()]
        else:
            raise ConfigurationError(
                "SESSION_SIGNING_KEY or SESSION_SIGNING_KEYS missing"
            )

        if not keys:
            raise ConfigurationError("no session signing keys provided")
        if any(len(key) < MIN_SIGNING_KEY_LENGTH for key in keys):
            raise ConfigurationError(
                "all session signing keys must be at least 32 characters for HMAC signing"
            )

        if used_legacy:
            logger.warning(
                "signing_key_legacy_variable",
                message="SESSION_SIGNING_KEY is deprecated; prefer SESSION_SIGNING_KEYS for key rotation",
            )
        if len(keys) == 1:
            logger.warning(
                "signing_key_rotation_unavailable",
                message="only one session signing key configured; list several in SESSION_SIGNING_KEYS to rotate",
            )
        return keys

    def validate_for_startup(self) -> None:
        """Fail fast on configuration the service cannot run safely with."""
        self.signing_keys()
        if not self.oauth_client_id:
            raise ConfigurationError("OAUTH_CLIENT_ID missing")
        if not self.oauth_client_secret:
            raise ConfigurationError("OAUTH_CLIENT_SECRET missing")
        if not self.cookie_secure and not self.allow_insecure_cookies:
            raise ConfigurationError(
                "APP_BASE_URL must use https when issuing SameSite=None cookies; "
                "set ALLOW_INSECURE_COOKIES=true only for local development"
            )
        if self.oauth_http_timeout_seconds <= 0:
            raise ConfigurationError("OAUTH_HTTP_TIMEOUT_SECONDS must be positive")


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
