"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, the token
codec and routes do the work; these classes only own shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

ROLES = ("user", "admin")


@dataclass
class AuthUser:
    """A HostAuth account, converted once from a DB row by auth/store.py.

    password_hash is None for Google-only accounts.
    google_id is None until the user signs in with Google for the first time.
    Timestamps are ISO 8601 UTC strings, as written by the store.
    """

    id: str
    email: str
    name: str
    role: str  # "user" or "admin"
    google_id: str | None = None
    password_hash: str | None = None
    avatar_url: str | None = None
    created_at: str = ""
    last_login_at: str = ""


@dataclass(frozen=True)
class TokenClaims:
    """Verified identity carried by a JWT.

    Only meaningful together with the domain whose secret signed it.
    """

    user_id: str
    email: str
    role: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class OAuthStateEntry:
    """Pending OAuth round trip: which domain and URL the callback returns to."""

    state: str
    domain: str
    redirect_url: str
    expires_at: datetime


@dataclass(frozen=True)
class IdentityProfile:
    """Normalized profile returned by the identity provider."""

    subject_id: str
    email: str
    name: str
    picture: str | None = None
    email_verified: bool = False
