"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens travel only in the Authorization: Bearer header. The refresh
token cookie is path-scoped to /auth and is read by the refresh and logout
routes themselves, never here.

get_current_account() raises AuthenticationFailure (401 via the handler in
api/main.py) when the header is missing or the token does not verify.
require_admin() additionally raises 403 for non-admin roles.

Layer rule: no imports from content/ or cache/.
  auth/dependencies.py may import from fastapi because it is part of the
  FastAPI dependency injection system.
"""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request

from auth.models import Account
from auth.service import AuthService


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def bearer_token(request: Request) -> Optional[str]:
    """Return the token from an "Authorization: Bearer <token>" header, or None."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_account(request: Request) -> Account:
    """Require a valid access token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(account: Account = Depends(get_current_account)): ...
    """
    service = get_auth_service(request)
    return service.authenticate_access_token(bearer_token(request))


def require_admin(request: Request) -> Account:
    """Require an access token belonging to an admin account."""
    account = get_current_account(request)
    if account.role != "admin":
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return account


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None
