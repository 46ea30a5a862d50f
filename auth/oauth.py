"""
auth/oauth.py -- Google OAuth2 client (authorization code flow) via Authlib.

HostAuth keeps its own OAuth state (auth/state.py) instead of Authlib's
session-backed state, because the state has to carry the *target domain* back
from Google: that domain decides which secret signs the resulting token.
Authlib is used for the protocol pieces -- authorization URL, code exchange,
and the bearer-authenticated userinfo call.

Network calls:
  Every call has a caller-visible timeout (OAUTH_HTTP_TIMEOUT) and is tried
  exactly once. Any transport or protocol failure becomes
  IdentityProviderError; the callback route turns that into a redirect to the
  login page with error=auth_failed.

Security notes:
  [H1] fetch_profile() reports email_verified as Google sends it. The identity
       facade refuses unverified emails, since those are what link a Google
       identity to an existing password account.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

import httpx
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.httpx_client import AsyncOAuth2Client
from authlib.oauth2.rfc6749.parameters import prepare_grant_uri

from auth.models import IdentityProfile
from core.config import Settings
from core.errors import IdentityProviderError

logger = logging.getLogger("hostauth.auth.oauth")

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105 -- URL, not a password
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"

_SCOPE = "openid email profile"


class GoogleIdentityProvider:
    """Identity Provider Client for Google.

    Usage:
        idp = GoogleIdentityProvider(client_id, client_secret, callback_url)
        url = idp.build_authorization_url(state)
        access_token = await idp.exchange_code(code)
        profile = await idp.fetch_profile(access_token)
    """

    def __init__(self, client_id: str, client_secret: str, callback_url: str, timeout: float = 10.0) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.callback_url = callback_url
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> GoogleIdentityProvider | None:
        """Return a configured provider, or None when Google OAuth is disabled."""
        if not settings.google_enabled:
            return None
        logger.info("Google OAuth provider registered")
        return cls(
            settings.google_client_id,
            settings.google_client_secret,
            settings.google_callback_url,
            timeout=settings.oauth_http_timeout,
        )

    def build_authorization_url(self, state: str) -> str:
        """Return the Google consent URL that round-trips state."""
        return prepare_grant_uri(
            GOOGLE_AUTH_URL,
            self.client_id,
            "code",
            redirect_uri=self.callback_url,
            scope=_SCOPE,
            state=state,
            access_type="offline",
            prompt="consent",
        )

    async def exchange_code(self, code: str) -> str:
        """Exchange an authorization code for an access token."""
        try:
            async with AsyncOAuth2Client(
                self.client_id,
                self.client_secret,
                scope=_SCOPE,
                redirect_uri=self.callback_url,
                timeout=self.timeout,
            ) as client:
                token = await client.fetch_token(GOOGLE_TOKEN_URL, code=code, grant_type="authorization_code")
        except (AuthlibBaseError, httpx.HTTPError) as exc:
            raise IdentityProviderError(f"code exchange failed: {exc}") from exc
        access_token = token.get("access_token")
        if not access_token:
            raise IdentityProviderError("token response has no access_token")
        return access_token

    async def fetch_profile(self, access_token: str) -> IdentityProfile:
        """Fetch and normalize the Google userinfo document."""
        try:
            async with AsyncOAuth2Client(
                self.client_id,
                token={"access_token": access_token, "token_type": "Bearer"},
                timeout=self.timeout,
            ) as client:
                resp = await client.get(GOOGLE_USERINFO_URL)
                resp.raise_for_status()
                info = resp.json()
        except (AuthlibBaseError, httpx.HTTPError, ValueError) as exc:
            raise IdentityProviderError(f"userinfo request failed: {exc}") from exc
        return _profile_from_userinfo(info)


def _profile_from_userinfo(info: dict) -> IdentityProfile:
    """Normalize Google's userinfo payload. Raises IdentityProviderError if incomplete."""
    subject_id = info.get("sub")
    email = info.get("email")
    if not subject_id or not email:
        raise IdentityProviderError("userinfo is missing sub or email")
    return IdentityProfile(
        subject_id=str(subject_id),
        email=email,
        name=info.get("name") or email,
        picture=info.get("picture"),
        email_verified=info.get("email_verified") is True,
    )
