"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The request's domain is the hostname it was addressed to (Host header, port
stripped). That hostname picks the secret every token on this request is
verified against, so a token minted for app.example.com presented to
other.example.com is rejected even when both hosts route here.

Token transport: the "auth_token" HttpOnly cookie only. Bearer headers and
URL query parameters are not read.

get_current_user() raises HTTP 401 if unauthenticated.
require_admin() wraps it and raises HTTP 403 if not admin.

Layer rule: auth/dependencies.py may import from fastapi because it is part
of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.identity import IdentityService
from auth.models import AuthUser
from auth.tokens import COOKIE_NAME
from core.errors import AuthError, TokenInvalid


def get_request_domain(request: Request) -> str:
    """Return the hostname this request was addressed to ("" if none)."""
    return request.url.hostname or ""


def get_identity(request: Request) -> IdentityService:
    return request.app.state.identity


def get_auth_token(request: Request) -> str:
    """Return the auth cookie value or raise TokenInvalid."""
    token = request.cookies.get(COOKIE_NAME)
    if not token:
        raise TokenInvalid("no auth cookie")
    return token


def get_current_user(request: Request) -> AuthUser:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: AuthUser = Depends(get_current_user)): ...
    """
    try:
        return get_identity(request).current_user(get_auth_token(request), get_request_domain(request))
    except AuthError as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        ) from exc


def require_admin(request: Request) -> AuthUser:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    user = get_current_user(request)
    if user.role != "admin":
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user
