"""
auth/state.py -- Single-use OAuth state tokens (CSRF protection).

The state parameter is the only thing that survives the round trip through
Google. It maps back to the domain whose secret will sign the resulting token
and to the URL the browser returns to.

Invariants:
  - complete(state) succeeds at most once. Lookup and removal are ONE
    dict.pop() under the lock (compare-and-remove), so two concurrent
    callbacks with the same state cannot both see "found". A captured
    callback URL cannot be replayed.
  - Expired entries are refused by complete() and evicted by purge_expired(),
    which the app lifespan calls on a fixed interval. Abandoned flows do not
    grow the map without bound.

Storage is process-local. A multi-process deployment needs sticky sessions or
a shared store; that is outside this module.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
import threading
from datetime import datetime, timedelta, timezone

from auth.models import OAuthStateEntry
from core.domain import validate_domain
from core.errors import StateExpiredOrUnknown

logger = logging.getLogger("hostauth.auth.state")

DEFAULT_STATE_TTL_SECONDS = 600


class OAuthStateBroker:
    """Thread-safe map of pending OAuth states."""

    def __init__(self) -> None:
        self._entries: dict[str, OAuthStateEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def begin(self, domain: str, redirect_url: str, ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS) -> str:
        """Record a new OAuth round trip and return its opaque state token."""
        validate_domain(domain)
        state = secrets.token_urlsafe(32)
        entry = OAuthStateEntry(
            state=state,
            domain=domain,
            redirect_url=redirect_url,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
        )
        with self._lock:
            self._entries[state] = entry
        return state

    def complete(self, state: str) -> OAuthStateEntry:
        """Consume a state token. Raises StateExpiredOrUnknown if unusable.

        The entry is removed whether or not it has expired.
        """
        with self._lock:
            entry = self._entries.pop(state, None)
        if entry is None:
            logger.warning("OAuth callback with unknown or already-used state")
            raise StateExpiredOrUnknown("unknown state")
        if entry.expires_at <= datetime.now(timezone.utc):
            logger.warning("OAuth callback with expired state for domain %s", entry.domain)
            raise StateExpiredOrUnknown("expired state")
        return entry

    def purge_expired(self, now: datetime | None = None) -> int:
        """Evict every entry whose expiry has passed. Returns the number removed."""
        cutoff = now or datetime.now(timezone.utc)
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.expires_at <= cutoff]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.info("Purged %d expired OAuth state entries", len(expired))
        return len(expired)
