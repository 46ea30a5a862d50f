"""
auth/client.py -- Token verification for tenant apps.

A tenant app is any FastAPI service running behind one HostAuth domain. It
holds exactly one secret: the one `hostauth secret get <domain>` printed for
its domain. It never talks to HostAuth to check a token; it verifies the
auth_token cookie locally with that secret.

Usage in a tenant app:

    tenant = TenantAuth(jwt_secret=os.environ["JWT_SECRET"])

    @app.get("/api/notes")
    def notes(user: TokenClaims = Depends(tenant.current_user)): ...

    @app.get("/api/feed")
    def feed(user: TokenClaims | None = Depends(tenant.optional_user)): ...

    @app.delete("/api/notes/{note_id}")
    def purge(note_id: str, admin: TokenClaims = Depends(tenant.require_admin)): ...

    # Not signed in: send the browser to HostAuth and back again
    RedirectResponse(get_login_url("https://auth.example.com", str(request.url)))

Claims are what the token carried when it was minted. A role change or
account deletion on the HostAuth side shows up here only once the user gets
a fresh token.

Layer rule: may import fastapi (dependency injection) and auth/tokens.py.
No imports from api/, and no database access.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

from fastapi import HTTPException, Request
from jose import JWTError, jwt

from auth.models import TokenClaims
from auth.tokens import ALGORITHM, COOKIE_NAME, claims_from_payload
from core.errors import TokenInvalid

logger = logging.getLogger("hostauth.client")


def verify_token(token: str, secret: str) -> Optional[TokenClaims]:
    """Return the claims of a HostAuth token signed with secret, or None.

    HS256 only: a token whose header names any other algorithm is rejected.
    Expired, tampered, malformed and wrong-secret tokens all return None.
    """
    if not token or not secret:
        return None
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
        return claims_from_payload(payload)
    except (JWTError, TokenInvalid) as exc:
        logger.info("Rejected auth token: %s", exc)
        return None


def get_login_url(auth_service_url: str, redirect_url: Optional[str] = None) -> str:
    """Return the HostAuth login page URL, optionally returning to redirect_url afterwards."""
    base = f"{auth_service_url.rstrip('/')}/login"
    if redirect_url:
        return f"{base}?redirect={quote(redirect_url, safe='')}"
    return base


class TenantAuth:
    """FastAPI dependencies that authenticate requests from the auth_token cookie.

    Each method takes the Request, so pass the bound method to Depends().
    """

    def __init__(self, jwt_secret: str) -> None:
        if not jwt_secret:
            raise ValueError("jwt_secret is required")
        self.jwt_secret = jwt_secret

    def _claims(self, request: Request) -> Optional[TokenClaims]:
        token = request.cookies.get(COOKIE_NAME)
        if not token:
            return None
        return verify_token(token, self.jwt_secret)

    def current_user(self, request: Request) -> TokenClaims:
        """Require a valid token. Raises HTTP 401 otherwise."""
        claims = self._claims(request)
        if claims is None:
            raise HTTPException(
                status_code=401,
                detail={"code": "unauthorized", "message": "Authentication required."},
            )
        return claims

    def optional_user(self, request: Request) -> Optional[TokenClaims]:
        """Return the token's claims, or None when there is no valid token."""
        return self._claims(request)

    def require_admin(self, request: Request) -> TokenClaims:
        """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
        claims = self.current_user(request)
        if claims.role != "admin":
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Admin access required."},
            )
        return claims
