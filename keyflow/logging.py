"""structlog setup for keyflow.

Request metadata (correlation id, client address, method, path) is bound
once per request through ``structlog.contextvars`` and merged into every
entry logged while that request is handled.
"""
from __future__ import annotations

import logging
import os
import uuid
from typing import Any, Dict, Optional

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, get_contextvars

_TRUTHY = {"1", "true", "yes", "on"}

# Bearer material: never logged, not even partially
_CREDENTIAL_KEYS = ("token", "secret", "verifier", "state", "authorization", "cookie")
_REDACTED = "[redacted]"


def bind_request_context(
    correlation_id: Optional[str] = None,
    *,
    client_ip: Optional[str] = None,
    method: Optional[str] = None,
    path: Optional[str] = None,
) -> str:
    """Start a fresh log context for one request and return its correlation id."""
    cid = correlation_id or str(uuid.uuid4())
    clear_contextvars()
    bind_contextvars(correlation_id=cid, client_ip=client_ip, method=method, path=path)
    return cid


def clear_request_context() -> None:
    clear_contextvars()


def get_correlation_id() -> Optional[str]:
    return get_contextvars().get("correlation_id")


def _mask_email(value: str) -> str:
    local, sep, domain = value.partition("@")
    if not sep:
        return _REDACTED
    return f"{local[:1]}***@{domain}"


def _redact_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Drop credential values entirely and mask email addresses."""
    for key, value in event_dict.items():
        if key == "event" or value is None:
            continue
        lower_key = key.lower()
        if any(marker in lower_key for marker in _CREDENTIAL_KEYS):
            event_dict[key] = _REDACTED
        elif "email" in lower_key and isinstance(value, str):
            event_dict[key] = _mask_email(value)
    return event_dict


def configure_logging(level: str = "INFO", *, json_output: bool = True) -> None:
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _redact_secrets,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# LOG_DEV_MODE forces console output regardless of LOG_JSON
configure_logging(
    os.getenv("LOG_LEVEL", "INFO"),
    json_output=(
        os.getenv("LOG_JSON", "true").lower() in _TRUTHY
        and os.getenv("LOG_DEV_MODE", "false").lower() not in _TRUTHY
    ),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
