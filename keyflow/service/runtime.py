from __future__ import annotations

import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

import httpx

from keyflow.config import Settings, get_settings, reset_settings_cache
from keyflow.logging import get_logger
from keyflow.service.auth import AuthService
from keyflow.service.cookies import CookiePolicy
from keyflow.service.csrf import CsrfGuard
from keyflow.service.oauth import OAuthProviderClient
from keyflow.service.rate_limit import RateLimiter, RedisRateLimiter
from keyflow.service.session import SessionSigner
from keyflow.storage.memory import MemoryStore
from keyflow.storage.postgres import PostgresStore
from keyflow.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password of a connection URL with ``***`` for logging."""
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(parsed._replace(netloc=netloc))


class Runtime:
    """Holds the process-wide service instances for the FastAPI app."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.settings.validate_for_startup()

        self.store: Union[MemoryStore, PostgresStore]
        use_memory = self.settings.use_memory_store or not self.settings.database_url
        try:
            self.store = MemoryStore() if use_memory else PostgresStore(self.settings.database_url)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type="memory" if use_memory else "postgres",
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
            )
            raise
        logger.info("runtime_store_initialized", store_type="memory" if use_memory else "postgres")

        self.cache: Optional[RedisCache] = None
        self.rate_limiter: Union[RateLimiter, RedisRateLimiter]
        if self.settings.redis_url:
            cache = RedisCache(self.settings.redis_url)
            cache.verify_connection()
            self.cache = cache
            self.rate_limiter = RedisRateLimiter(
                cache,
                self.settings.auth_rate_limit_per_minute,
                self.settings.auth_rate_limit_burst,
            )
            logger.info("rate_limiter_redis", redis_url=_mask_url_password(self.settings.redis_url))
        else:
            self.rate_limiter = RateLimiter(
                self.settings.auth_rate_limit_per_minute,
                self.settings.auth_rate_limit_burst,
            )

        self.http_client = http_client or httpx.AsyncClient(
            timeout=self.settings.oauth_http_timeout_seconds,
            follow_redirects=False,
        )
        self.cookies = CookiePolicy(secure=self.settings.cookie_secure)
        self.csrf = CsrfGuard(self.cookies)
        self.signer = SessionSigner(self.settings.signing_keys())
        self.provider = OAuthProviderClient(self.settings, self.http_client)
        self.auth = AuthService(self.store, self.signer, self.provider)
        logger.info(
            "runtime_ready",
            cookie_secure=self.settings.cookie_secure,
            rate_limit=self.rate_limiter.limit,
        )

    async def aclose(self) -> None:
        await self.http_client.aclose()
        if self.cache is not None:
            await self.cache.close()
        if isinstance(self.store, PostgresStore):
            self.store.close()


runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton using double-checked locking."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def set_runtime(instance: Optional[Runtime]) -> None:
    global runtime
    with _runtime_lock:
        runtime = instance


def reset_runtime_for_tests() -> None:
    """Drop the runtime and cached settings so the next access rebuilds both."""
    global runtime
    with _runtime_lock:
        runtime = None
    reset_settings_cache()
