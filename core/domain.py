"""
core/domain.py -- Validation for per-domain identifiers.

A domain string is used three ways: as a cache key, as the file name of its
signing secret under JWT_SECRETS_DIR, and as the tenant a token is bound to.
validate_domain() is the single gate for all three. Callers re-run it on every
path (mint, verify, admin operations) instead of trusting an earlier check.

Rules (checked in this order, all failures look identical to the caller):
  1. Non-empty.
  2. No "/", "\\", "..", or NUL -- path traversal and C-string truncation.
  3. Hostname charset only: ASCII letters, digits, "." and "-".

"localhost" satisfies rule 3. Whether it is *accepted* is a posture decision
made by the SecretStore, not here.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import urlsplit

from core.errors import InvalidDomain

logger = logging.getLogger("hostauth.domain")

LOCALHOST = "localhost"

_HOSTNAME_RE = re.compile(r"^[A-Za-z0-9.-]+$")
_FORBIDDEN = ("/", "\\", "..", "\0")


def is_valid_domain(raw: str | None) -> bool:
    """Return True if raw is safe to use as a domain key and file name."""
    if not raw or not isinstance(raw, str):
        return False
    if any(token in raw for token in _FORBIDDEN):
        return False
    # fullmatch: "$" alone would accept a trailing newline
    return _HOSTNAME_RE.fullmatch(raw) is not None


def validate_domain(raw: str | None) -> str:
    """Return raw unchanged if it is a valid domain, else raise InvalidDomain.

    The exception detail is for the server log; the client-facing message is
    fixed on the exception class and never says which rule tripped.
    """
    if not is_valid_domain(raw):
        raise InvalidDomain(f"rejected domain {raw!r}")
    return raw  # type: ignore[return-value]


def domain_from_url(url: str) -> str:
    """Extract and validate the hostname of an absolute http(s) URL.

    "https://app.example.com:8443/x?y=1" -> "app.example.com"

    Raises InvalidDomain for relative URLs, other schemes, URLs with
    embedded credentials, and hostnames that fail validate_domain().
    """
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
        _ = parts.port  # raises ValueError for a non-numeric port
    except ValueError as exc:
        raise InvalidDomain(f"unparseable url {url!r}") from exc
    if parts.scheme not in ("http", "https") or not hostname:
        raise InvalidDomain(f"not an absolute http(s) url: {url!r}")
    if parts.username or parts.password:
        raise InvalidDomain(f"credentials in url: {url!r}")
    return validate_domain(hostname)
