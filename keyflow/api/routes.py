from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse

from keyflow.api.error_handling import (
    INTERNAL_ERROR_MESSAGE,
    error_response,
    service_error_response,
)
from keyflow.api.schemas import HealthStatus, PublicUser, SessionResponse, UserListResponse
from keyflow.logging import get_logger
from keyflow.service.auth import CurrentUser
from keyflow.service.client_ip import request_client_ip
from keyflow.service.cookies import OAUTH_PKCE_COOKIE, OAUTH_STATE_COOKIE, SESSION_COOKIE
from keyflow.service.errors import ServiceError
from keyflow.service.runtime import Runtime, get_runtime

logger = get_logger(__name__)

router = APIRouter()


def _runtime() -> Runtime:
    return get_runtime()


async def _enforce_rate_limit(runtime: Runtime, client_ip: str) -> None:
    """Raise ``RateLimitedError`` (429) when ``client_ip`` is over its cap."""
    await runtime.rate_limiter.check(client_ip)


def _expire_transient_cookies(runtime: Runtime, response: Response) -> None:
    runtime.cookies.expire(response, OAUTH_STATE_COOKIE)
    runtime.cookies.expire(response, OAUTH_PKCE_COOKIE)


async def get_current_user(request: Request, runtime: Runtime = Depends(_runtime)) -> CurrentUser:
    return runtime.auth.authenticate(
        request.cookies.get(SESSION_COOKIE), request_client_ip(request)
    )


async def get_admin_user(principal: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    principal.require_admin()
    return principal


@router.get("/health", response_model=HealthStatus, tags=["health"])
async def health() -> HealthStatus:
    return HealthStatus()


@router.get("/auth/provider/login", tags=["auth"])
async def oauth_login(request: Request, runtime: Runtime = Depends(_runtime)):
    """Start the authorization-code flow and redirect to the provider."""
    client_ip = request_client_ip(request)
    await _enforce_rate_limit(runtime, client_ip)
    redirect = runtime.auth.start_login(client_ip)
    response = RedirectResponse(redirect.url, status_code=307)
    runtime.cookies.set_transient(response, OAUTH_STATE_COOKIE, redirect.state)
    runtime.cookies.set_transient(response, OAUTH_PKCE_COOKIE, redirect.verifier)
    return response


@router.get("/auth/provider/callback", tags=["auth"])
async def oauth_callback(
    request: Request,
    code: str = Query(...),
    state: str = Query(...),
    runtime: Runtime = Depends(_runtime),
):
    """Finish the login: check state, exchange the code, set the session.

    The parked state and verifier cookies are single-use, so they are
    cleared on every outcome once read.
    """
    client_ip = request_client_ip(request)
    await _enforce_rate_limit(runtime, client_ip)
    stored_state = request.cookies.get(OAUTH_STATE_COOKIE)
    stored_verifier = request.cookies.get(OAUTH_PKCE_COOKIE)
    try:
        result = await runtime.auth.complete_login(
            code, state, stored_state, stored_verifier, client_ip
        )
    except ServiceError as exc:
        failure = service_error_response(request, exc)
        _expire_transient_cookies(runtime, failure)
        return failure
    except Exception as exc:
        logger.exception("oauth_callback_failed", exc_info=exc, error_type=type(exc).__name__)
        failure = error_response(500, INTERNAL_ERROR_MESSAGE)
        _expire_transient_cookies(runtime, failure)
        return failure

    response = RedirectResponse(runtime.settings.frontend_origin, status_code=307)
    _expire_transient_cookies(runtime, response)
    runtime.cookies.set_session(response, result.session_token)
    runtime.csrf.issue(response)
    return response


@router.post("/auth/logout", status_code=204, tags=["auth"])
async def logout(request: Request, runtime: Runtime = Depends(_runtime)):
    client_ip = request_client_ip(request)
    await _enforce_rate_limit(runtime, client_ip)
    runtime.csrf.verify(request.cookies, request.headers)

    user_id: Optional[str] = runtime.auth.logout_subject(request.cookies.get(SESSION_COOKIE))
    logger.info("user_logged_out", user_id=user_id, client_ip=client_ip)

    response = Response(status_code=204)
    runtime.cookies.expire(response, SESSION_COOKIE)
    runtime.csrf.expire(response)
    return response


@router.get("/session", response_model=SessionResponse, response_model_by_alias=True, tags=["auth"])
async def current_session(
    request: Request,
    response: Response,
    principal: CurrentUser = Depends(get_current_user),
    runtime: Runtime = Depends(_runtime),
):
    """Current user plus a CSRF token for the front end to echo back."""
    csrf_token = runtime.csrf.ensure_issued(request.cookies, response)
    return SessionResponse(user=PublicUser.from_user(principal.user), csrf_token=csrf_token)


@router.get("/me", response_model=PublicUser, tags=["auth"])
async def me(principal: CurrentUser = Depends(get_current_user)):
    return PublicUser.from_user(principal.user)


@router.get("/admin/users", response_model=UserListResponse, tags=["admin"])
async def admin_list_users(
    limit: int = Query(100, ge=1, le=500),
    principal: CurrentUser = Depends(get_admin_user),
    runtime: Runtime = Depends(_runtime),
):
    users = runtime.store.list_users(limit=limit)
    return UserListResponse(items=[PublicUser.from_user(user) for user in users])
