"""
auth/tokens.py -- Domain-bound JWTs, password hashing, and the auth cookie.

Security design decisions:
  JWT: python-jose with HS256. Every token is signed with the secret of ONE
       domain, resolved through SecretStore.resolve(). mint() and verify() use
       that same resolution path -- any divergence between the two would let a
       token cross tenants. verify() pins algorithms=["HS256"], so a token
       whose header names "none", HS512 or RS256 is rejected (algorithm
       confusion). Every failure raises the same TokenInvalid.

  Passwords: bcrypt, used directly (no passlib wrapper), fixed cost factor.
       The _DUMMY_HASH constant enables timing equalization in
       authenticate_user() so response time does not reveal whether an email
       is registered or whether the account is Google-only [C1].

  Cookie: the token travels in one HttpOnly cookie ("auth_token"). That is
       the only transport accepted for authenticating requests.

Layer rule: no imports from api/. Imports from core/ are allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import ROLES, AuthUser, TokenClaims
from core.domain import validate_domain
from core.errors import CredentialMismatch, InvalidDomain, NoSecretConfigured, TokenInvalid

if TYPE_CHECKING:
    from auth.secret_store import SecretStore
    from auth.store import UserStore

logger = logging.getLogger("hostauth.auth")

ALGORITHM = "HS256"
COOKIE_NAME = "auth_token"
DEFAULT_EXPIRE_SECONDS = 7 * 24 * 3600

_BCRYPT_ROUNDS = 10

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer caps
    password length well below that (pydantic max_length).
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Same cost factor as real hashes.
_DUMMY_HASH: str = hash_password("hostauth_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> AuthUser:
    """Check an email/password login with timing equalization [C1].

    Exactly one bcrypt comparison runs on every path:
    - Unknown email:        against _DUMMY_HASH
    - Google-only account:  against _DUMMY_HASH
    - Known account:        against the stored hash

    All three failures raise the same CredentialMismatch; the reason is logged
    server-side only.
    """
    user = store.get_by_email(email)
    if user is None or user.password_hash is None:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        reason = "unknown email" if user is None else "google-only account"
        raise CredentialMismatch(f"login failed: {reason}")
    if not verify_password(password, user.password_hash):
        raise CredentialMismatch("login failed: wrong password")
    return user


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


class TokenCodec:
    """Mint and verify JWTs against per-domain secrets.

    Usage:
        codec = TokenCodec(secret_store, expire_seconds=3600)
        token = codec.mint(user, "app.example.com")
        claims = codec.verify(token, "app.example.com")   # raises TokenInvalid
    """

    def __init__(self, secret_store: SecretStore, expire_seconds: int = DEFAULT_EXPIRE_SECONDS) -> None:
        self.secret_store = secret_store
        self.expire_seconds = expire_seconds

    def _secret_for(self, domain: str) -> str | None:
        """Single resolution path shared by mint() and verify()."""
        try:
            validate_domain(domain)
        except InvalidDomain:
            logger.warning("Token operation refused for invalid domain %r", domain)
            return None
        return self.secret_store.resolve(domain)

    def mint(self, user: AuthUser, domain: str) -> str:
        """Encode a JWT for user, signed with domain's secret.

        Raises NoSecretConfigured if the domain has no resolvable secret.
        """
        secret = self._secret_for(domain)
        if secret is None:
            raise NoSecretConfigured(f"no secret for domain {domain!r}")
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user.id,
            "email": user.email,
            "role": user.role,
            "iat": now,
            "exp": now + timedelta(seconds=self.expire_seconds),
        }
        return jwt.encode(payload, secret, algorithm=ALGORITHM)

    def verify(self, token: str, domain: str) -> TokenClaims:
        """Decode and verify a JWT for domain. Raises TokenInvalid on any failure."""
        secret = self._secret_for(domain)
        if secret is None:
            raise TokenInvalid(f"no secret for domain {domain!r}")
        try:
            payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
        except JWTError as exc:
            raise TokenInvalid(f"jwt rejected for domain {domain!r}: {exc}") from exc
        return claims_from_payload(payload)


def claims_from_payload(payload: dict) -> TokenClaims:
    """Map a decoded JWT payload to TokenClaims. Raises TokenInvalid if any claim is missing or malformed."""
    user_id = payload.get("sub")
    email = payload.get("email")
    role = payload.get("role")
    iat = payload.get("iat")
    exp = payload.get("exp")
    if not isinstance(user_id, str) or not user_id or not isinstance(email, str) or role not in ROLES:
        raise TokenInvalid("missing or malformed identity claims")
    if not isinstance(iat, int) or not isinstance(exp, int):
        raise TokenInvalid("missing iat/exp claims")
    return TokenClaims(
        user_id=user_id,
        email=email,
        role=role,
        issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
    )


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(
    response,
    token: str,
    expire_seconds: int = DEFAULT_EXPIRE_SECONDS,
    secure: bool = False,
    domain: str = "",
) -> None:
    """Write the JWT as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    domain: COOKIE_DOMAIN, or host-only when empty.
    max_age: matches the JWT expiry so both expire together.
    """
    response.set_cookie(
        COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=expire_seconds,
        domain=domain or None,
        path="/",
    )


def clear_auth_cookie(response, secure: bool = False, domain: str = "") -> None:
    """Expire the auth cookie with the same attributes it was set with."""
    response.delete_cookie(
        COOKIE_NAME,
        httponly=True,
        samesite="lax",
        secure=secure,
        domain=domain or None,
        path="/",
    )
