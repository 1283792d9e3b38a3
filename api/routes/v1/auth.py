"""
api/routes/v1/auth.py -- Session and password reset REST endpoints.

Routes:
  POST /auth/login                   -- password login; access token in body, refresh token in cookie
  POST /auth/refresh                 -- rotate the refresh cookie; new access token in body
  POST /auth/logout                  -- revoke the session behind the cookie; always 200
  POST /auth/request-password-reset  -- issue a reset token; always the same 200 answer
  POST /auth/reset-password          -- consume a reset token; revokes every session
  GET  /auth/me                      -- current account profile (Bearer access token)

Security:
  POST /login and POST /request-password-reset are rate-limited per IP
  (LOGIN_RATE_LIMIT).
  Cache-Control: no-store on every response that carries a token.
  Failures raise core.errors types; the handlers in api/main.py render them
  with generic messages. Nothing here decides what a client may learn.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import (
    AccountSummary,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    PasswordResetConfirm,
    PasswordResetRequest,
    RefreshResponse,
)
from auth.dependencies import client_ip, get_auth_service, get_current_account
from auth.models import Account
from auth.notify import ResetNotifier
from auth.tokens import clear_refresh_cookie, refresh_cookie_name, set_refresh_cookie
from core.config import get_settings

# Auth policy:
# - POST /auth/login:                   public -- login endpoint must be unauthenticated
# - POST /auth/refresh:                 refresh cookie only; the access token may have expired
# - POST /auth/logout:                  refresh cookie optional; never fails
# - POST /auth/request-password-reset:  public
# - POST /auth/reset-password:          public; the reset token is the credential
# - GET  /auth/me:                      requires a Bearer access token
router = APIRouter()

_RESET_REQUESTED_MSG = "If that email is registered, a reset link has been sent."


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _user_agent(request: Request) -> str | None:
    return request.headers.get("User-Agent")


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------


@limiter.limit(LOGIN_RATE_LIMIT)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password and open a new session.

    The refresh token only ever travels in the httpOnly cookie; the body
    carries the access token and the public account summary.
    """
    service = get_auth_service(request)
    result = service.login(body.email, body.password, client_ip(request), _user_agent(request))
    resp = JSONResponse(
        content=LoginResponse(
            access_token=result.tokens.access_token,
            expires_in=get_settings().access_token_expire_seconds,
            user=AccountSummary.from_account(result.account),
        ).model_dump(by_alias=True),
    )
    set_refresh_cookie(resp, result.tokens.refresh_token)
    return _no_store(resp)


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request) -> JSONResponse:
    """Exchange the refresh cookie for a new access token and a rotated cookie.

    The presented token is single-use: a second call with the same cookie
    fails with 401, as does a call that lost a concurrent race.
    """
    service = get_auth_service(request)
    tokens = service.refresh(
        request.cookies.get(refresh_cookie_name()), client_ip(request), _user_agent(request)
    )
    resp = JSONResponse(
        content=RefreshResponse(
            access_token=tokens.access_token,
            expires_in=get_settings().access_token_expire_seconds,
        ).model_dump(by_alias=True),
    )
    set_refresh_cookie(resp, tokens.refresh_token)
    return _no_store(resp)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Revoke the current session and clear the cookie.

    Idempotent: a missing, expired, forged or already-revoked cookie still
    gets 200 and a cleared cookie.
    """
    service = get_auth_service(request)
    service.logout(request.cookies.get(refresh_cookie_name()), client_ip(request))
    resp = JSONResponse(content=MessageResponse(msg="Logged out.").model_dump())
    clear_refresh_cookie(resp)
    return _no_store(resp)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@limiter.limit(LOGIN_RATE_LIMIT)
@router.post("/auth/request-password-reset", response_model=MessageResponse)
def request_password_reset(request: Request, body: PasswordResetRequest) -> MessageResponse:
    """Start a password reset.

    The answer is identical whether or not the email is registered. The raw
    token goes to the reset notifier, never into the response.
    """
    service = get_auth_service(request)
    raw_token = service.request_password_reset(body.email, client_ip(request))
    if raw_token is not None:
        notifier: ResetNotifier = request.app.state.reset_notifier
        notifier.send_reset(body.email, raw_token)
    return MessageResponse(msg=_RESET_REQUESTED_MSG)


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: PasswordResetConfirm) -> JSONResponse:
    """Set a new password with a reset token. Every existing session is revoked."""
    service = get_auth_service(request)
    service.reset_password(body.email, body.token, body.password, client_ip(request))
    resp = JSONResponse(content=MessageResponse(msg="Password has been reset. Please log in again.").model_dump())
    clear_refresh_cookie(resp)
    return _no_store(resp)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(current_account: Account = Depends(get_current_account)) -> MeResponse:
    """Return the profile of the account behind the Bearer token."""
    return MeResponse.from_account(current_account)
