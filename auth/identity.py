"""
auth/identity.py -- Login, registration, token exchange and "who am I".

IdentityService orchestrates the leaf components. It owns no state of its
own: the user store, token codec, state broker and identity provider are
passed in at construction (api/main.py lifespan builds them once per process).

Every failure is an AuthError subclass from core/errors.py. The route layer
maps those to fixed client messages; the detail string on each exception is
for the server log only.

Security notes:
  [C1] login() always runs exactly one bcrypt comparison (see
       auth.tokens.authenticate_user) and raises one CredentialMismatch for
       unknown email, Google-only account, and wrong password.

  [X1] exchange_token() is the cross-domain SSO hand-off. The presented token
       is verified against the domain it was issued for (the requester's own
       host); only then is a fresh token minted with the *target* domain's
       secret. The target is validated explicitly -- it comes from the
       request body, not from routing.

  [H1] complete_oauth() refuses identities whose email Google has not
       verified. An unverified email would otherwise link a Google account
       to somebody else's password account.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from auth.models import AuthUser, OAuthStateEntry, TokenClaims
from auth.state import DEFAULT_STATE_TTL_SECONDS, OAuthStateBroker
from auth.tokens import TokenCodec, authenticate_user, hash_password
from core.domain import domain_from_url, validate_domain
from core.errors import EmailAlreadyRegistered, IdentityProviderError, SecretNotFound, UserNotFound

if TYPE_CHECKING:
    from auth.oauth import GoogleIdentityProvider
    from auth.store import UserStore

logger = logging.getLogger("hostauth.auth.identity")


class IdentityService:
    """Facade over the user store, token codec and OAuth state broker."""

    def __init__(
        self,
        user_store: UserStore,
        codec: TokenCodec,
        state_broker: OAuthStateBroker,
        identity_provider: GoogleIdentityProvider | None = None,
        password_min_length: int = 8,
    ) -> None:
        self.user_store = user_store
        self.codec = codec
        self.state_broker = state_broker
        self.identity_provider = identity_provider
        self.password_min_length = password_min_length

    # ------------------------------------------------------------------
    # Password accounts
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, name: str, domain: str) -> tuple[AuthUser, str]:
        """Create a password account and return (user, token for domain).

        Raises ValueError for missing fields or a short password,
        InvalidDomain / SecretNotFound if domain cannot sign tokens, and
        EmailAlreadyRegistered for a duplicate email.
        """
        if not email or not password or not name:
            raise ValueError("Email, password, and name are required")
        if len(password) < self.password_min_length:
            raise ValueError(f"Password must be at least {self.password_min_length} characters")
        self._require_signing_domain(domain)

        if self.user_store.get_by_email(email) is not None:
            raise EmailAlreadyRegistered(f"register: {email!r} exists")
        try:
            user = self.user_store.create_with_password(email, name, hash_password(password))
        except IntegrityError as exc:
            # Concurrent registration won the race
            raise EmailAlreadyRegistered(f"register: {email!r} exists (race)") from exc

        logger.info("Registered user %s on domain %s", user.id, domain)
        return user, self.codec.mint(user, domain)

    def login(self, email: str, password: str, domain: str) -> tuple[AuthUser, str]:
        """Authenticate an email/password login and return (user, token for domain).

        The domain is checked first, so a login on a host that cannot sign
        tokens fails the same way for every password and writes nothing.
        """
        self._require_signing_domain(domain)
        user = authenticate_user(self.user_store, email, password)  # [C1]
        self.user_store.update_last_login(user.id)
        return user, self.codec.mint(user, domain)

    # ------------------------------------------------------------------
    # Token holders
    # ------------------------------------------------------------------

    def current_user(self, token: str, domain: str) -> AuthUser:
        """Return the user a token for domain identifies.

        Raises TokenInvalid, or UserNotFound if the account was deleted.
        Callers strip password_hash / google_id before returning it anywhere.
        """
        claims = self.codec.verify(token, domain)
        user = self.user_store.get_by_id(claims.user_id)
        if user is None:
            raise UserNotFound(f"token for deleted user {claims.user_id}")
        return user

    def exchange_token(self, token: str, source_domain: str, target_domain: str) -> tuple[TokenClaims, str]:
        """Re-issue a token for target_domain from one valid for source_domain [X1]."""
        claims = self.codec.verify(token, source_domain)
        validate_domain(target_domain)
        user = self.user_store.get_by_id(claims.user_id)
        if user is None:
            raise UserNotFound(f"token for deleted user {claims.user_id}")
        new_token = self.codec.mint(user, target_domain)
        logger.info("Exchanged token for user %s: %s -> %s", user.id, source_domain, target_domain)
        return claims, new_token

    # ------------------------------------------------------------------
    # Google OAuth
    # ------------------------------------------------------------------

    def begin_oauth(self, redirect_url: str, ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS) -> str:
        """Record state for redirect_url and return the provider's authorization URL.

        The redirect URL's host must be a domain with a signing secret. That is
        the redirect allowlist: no secret, no redirect.
        """
        if self.identity_provider is None:
            raise IdentityProviderError("google oauth is not configured")
        domain = domain_from_url(redirect_url)
        self._require_signing_domain(domain)
        state = self.state_broker.begin(domain, redirect_url, ttl_seconds=ttl_seconds)
        return self.identity_provider.build_authorization_url(state)

    async def complete_oauth(self, state: str, code: str) -> tuple[OAuthStateEntry, AuthUser, str]:
        """Finish the round trip: consume state, exchange code, upsert user, mint.

        State is consumed first, so a replayed callback fails before any
        network call is made.
        """
        entry = self.state_broker.complete(state)
        if self.identity_provider is None:
            raise IdentityProviderError("google oauth is not configured")
        access_token = await self.identity_provider.exchange_code(code)
        profile = await self.identity_provider.fetch_profile(access_token)
        if not profile.email_verified:  # [H1]
            raise IdentityProviderError(f"unverified google email for subject {profile.subject_id}")
        try:
            user = self.user_store.create_or_update_from_identity(profile)
        except IntegrityError as exc:
            # Email already belongs to an account linked to a different Google id
            raise IdentityProviderError(f"email {profile.email!r} linked to another google account") from exc
        return entry, user, self.codec.mint(user, entry.domain)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_signing_domain(self, domain: str) -> None:
        validate_domain(domain)
        if not self.codec.secret_store.has_secret(domain):
            raise SecretNotFound(f"no secret for domain {domain!r}")
