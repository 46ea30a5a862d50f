"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  GET  /api/v1/auth/google             -- begin Google OAuth; 302 to Google
  GET  /api/v1/auth/google/callback    -- finish Google OAuth; set cookie; 302 to stored redirect
  POST /api/v1/auth/register           -- create password account; set cookie
  POST /api/v1/auth/login              -- password login; set cookie
  POST /api/v1/auth/token              -- exchange this host's token for another domain's
  GET  /api/v1/auth/me                 -- current user (requires auth)
  POST /api/v1/auth/logout             -- clear cookie

Every token is minted for, and verified against, the host the request was
addressed to (auth.dependencies.get_request_domain). The OAuth flow is the
exception: it mints for the host of the redirect URL recorded at begin time.

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] Login timing equalization lives in auth.tokens.authenticate_user().
  [M3] The callback redirects to the login page with a whitelisted error
       code only. Provider error text is logged, never reflected.
  [M5] Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    AuthResponse,
    LoginRequest,
    MeResponse,
    RegisterRequest,
    TokenExchangeRequest,
    TokenExchangeResponse,
    UserResponse,
)
from auth.dependencies import get_auth_token, get_current_user, get_identity, get_request_domain
from auth.identity import IdentityService
from auth.models import AuthUser
from auth.tokens import clear_auth_cookie, set_auth_cookie
from core.config import Settings
from core.errors import AuthError

logger = logging.getLogger("hostauth.api.auth")

# Auth policy:
# - GET    /auth/google, /auth/google/callback: public -- OAuth round trip
# - POST   /auth/register, /auth/login:         public -- issue tokens
# - POST   /auth/logout:                        public -- clearing a cookie needs no prior auth
# - POST   /auth/token:                         requires a valid cookie for the request host
# - GET    /auth/me:                            requires auth (get_current_user)
router = APIRouter()


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _with_cookie(request: Request, resp, token: str):
    settings = _settings(request)
    set_auth_cookie(
        resp,
        token,
        expire_seconds=settings.token_expire_seconds,
        secure=settings.secure_cookies,
        domain=settings.cookie_domain,
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Google OAuth
# ---------------------------------------------------------------------------


@router.get("/auth/google")
def google_login(request: Request, redirect: Optional[str] = None) -> RedirectResponse:
    """Start Google sign-in for the domain of ?redirect= (default FRONTEND_URL).

    The redirect URL's host must have a signing secret. Anything else gets the
    generic invalid_domain error from the exception handler, whether the host
    failed validation or simply is not provisioned.
    """
    identity = get_identity(request)
    if identity.identity_provider is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Google sign-in is not enabled."},
        )
    settings = _settings(request)
    redirect_url = redirect or settings.frontend_url
    auth_url = identity.begin_oauth(redirect_url, ttl_seconds=settings.oauth_state_ttl_seconds)
    return RedirectResponse(auth_url, status_code=302)


@router.get("/auth/google/callback", name="google_callback")
async def google_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
) -> RedirectResponse:
    """Handle Google's redirect back, issue the JWT cookie and return the browser.

    Flow:
      1. Reject provider errors and missing code/state.
      2. Consume the state (single use) -- gives back domain + redirect URL.
      3. Exchange code, fetch profile, upsert the user.
      4. Mint a token for the state's domain, set cookie, redirect.
    """
    login_url = f"{_settings(request).frontend_url.rstrip('/')}/login"

    if error:
        logger.warning("Google OAuth error: %r", error)
        return RedirectResponse(f"{login_url}?error=oauth_denied", status_code=302)
    if not code:
        return RedirectResponse(f"{login_url}?error=no_code", status_code=302)
    if not state:
        return RedirectResponse(f"{login_url}?error=no_state", status_code=302)

    identity = get_identity(request)
    try:
        entry, user, token = await identity.complete_oauth(state, code)
    except AuthError as exc:
        error_code = "invalid_state" if exc.code == "invalid_state" else "auth_failed"
        logger.warning("OAuth callback rejected (%s): %s", type(exc).__name__, exc.detail)
        return RedirectResponse(f"{login_url}?error={error_code}", status_code=302)

    logger.info("Google sign-in for user %s on domain %s", user.id, entry.domain)
    return _with_cookie(request, RedirectResponse(entry.redirect_url, status_code=302), token)


# ---------------------------------------------------------------------------
# Password accounts
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a password account and sign the caller in on this host."""
    identity = get_identity(request)
    try:
        user, token = identity.register(body.email, body.password, body.name, get_request_domain(request))
    except ValueError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "validation_error", "message": str(exc)},
        ) from exc

    content = AuthResponse(user=UserResponse.from_user(user), token=token if body.include_token else None)
    return _with_cookie(request, JSONResponse(status_code=201, content=content.model_dump()), token)


@limiter.limit(login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set JWT cookie for this host.

    Unknown email, Google-only account and wrong password all produce the
    same 401 bad_credentials response [C1].
    """
    identity = get_identity(request)
    user, token = identity.login(body.email, body.password, get_request_domain(request))
    content = AuthResponse(user=UserResponse.from_user(user), token=token if body.include_token else None)
    return _with_cookie(request, JSONResponse(status_code=200, content=content.model_dump()), token)


# ---------------------------------------------------------------------------
# Token holders
# ---------------------------------------------------------------------------


@router.post("/auth/token", response_model=TokenExchangeResponse)
def exchange_token(request: Request, body: TokenExchangeRequest) -> JSONResponse:
    """Trade this host's token for one signed for body.target_domain.

    The new token is returned in the body, not as a cookie: it belongs to a
    different host, which sets it for itself.
    """
    identity = get_identity(request)
    _claims, token = identity.exchange_token(
        get_auth_token(request),
        get_request_domain(request),
        body.target_domain,
    )
    content = TokenExchangeResponse(
        token=token,
        domain=body.target_domain,
        expires_in=identity.codec.expire_seconds,
    )
    resp = JSONResponse(content=content.model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: AuthUser = Depends(get_current_user)) -> MeResponse:
    """Return the account behind this host's auth cookie."""
    return MeResponse(user=UserResponse.from_user(current_user))


@router.post("/auth/logout")
def logout(request: Request) -> JSONResponse:
    """Clear the auth cookie."""
    settings = _settings(request)
    resp = JSONResponse(content={"success": True})
    clear_auth_cookie(resp, secure=settings.secure_cookies, domain=settings.cookie_domain)
    return resp
