"""
auth/secret_store.py -- Per-domain JWT signing secrets.

One plain-text file per domain under JWT_SECRETS_DIR:

    <secrets_dir>/<domain>      e.g. /var/lib/hostauth/secrets/app.example.com

The file holds the secret and nothing else (surrounding whitespace is
stripped on read). Files are 0600, the directory is 0700.

Read path (resolve):
  localhost -> fixed dev secret, or None in production posture [P1].
  invalid   -> None. The domain never reaches the filesystem.
  cached    -> cached value.
  otherwise -> read file, cache, return. Missing/unreadable/empty -> None.

  resolve() NEVER creates a secret. Any hostname that passes the charset
  check could come from an attacker-controlled Host header; silently
  provisioning secrets for those would turn every request into a tenant.

Write path (provision_or_get / rotate / delete) is admin-only: the CLI, or
whoever holds a SecretStore reference.

Concurrency:
  _cache is a plain dict. A single dict.get() is atomic in CPython, so cache
  hits do not take the lock and never block each other. A miss takes _lock,
  re-checks the cache, then reads the file and fills the cache before
  releasing it. provision, rotate and delete hold the same lock, so a deleted
  or rotated secret can never be written back into the cache by a reader
  that raced it. Secret files are written to a temp sibling then
  os.replace()d, so no reader sees a half-written secret on disk.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import os
import secrets
import tempfile
import threading
from pathlib import Path

from core.domain import LOCALHOST, is_valid_domain, validate_domain

logger = logging.getLogger("hostauth.auth.secrets")

# Hardcoded secret for zero-conf local development. Never served in production.
LOCALHOST_JWT_SECRET = "hostauth-dev-secret-do-not-use-in-production"  # noqa: S105

_DIR_MODE = 0o700
_FILE_MODE = 0o600
_TMP_PREFIX = ".tmp-"


def generate_secret() -> str:
    """Return 32 random bytes (256 bits) as URL-safe base64 text."""
    return secrets.token_urlsafe(32)


class SecretStore:
    """Read-through cache over a directory of per-domain secret files.

    Usage:
        store = SecretStore(Path("/var/lib/hostauth/secrets"), allow_localhost=False)
        store.ensure_dir()
        secret = store.resolve("app.example.com")   # str or None
    """

    def __init__(self, secrets_dir: Path, allow_localhost: bool = False) -> None:
        self.secrets_dir = Path(secrets_dir)
        self.allow_localhost = allow_localhost
        self._cache: dict[str, str] = {}
        self._lock = threading.Lock()

    def ensure_dir(self) -> None:
        """Create the secrets directory (0700) if needed. Idempotent.

        mkdir's mode is filtered by the umask, so the mode is applied again
        with chmod to guarantee owner-only access.
        """
        self.secrets_dir.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)
        os.chmod(self.secrets_dir, _DIR_MODE)

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def resolve(self, domain: str) -> str | None:
        """Return the signing secret for domain, or None (fail closed)."""
        if domain == LOCALHOST:
            if not self.allow_localhost:
                logger.warning("Rejecting localhost domain in production mode -- potential Host header attack")
                return None
            return LOCALHOST_JWT_SECRET

        if not is_valid_domain(domain):
            logger.warning("Rejected invalid domain for secret lookup: %r", domain)
            return None

        cached = self._cache.get(domain)
        if cached is not None:
            return cached

        # Miss: re-check, read and fill under the lock so a concurrent
        # rotate() or delete() cannot interleave with the fill.
        with self._lock:
            cached = self._cache.get(domain)
            if cached is not None:
                return cached
            secret = self._read(domain)
            if secret is not None:
                self._cache[domain] = secret
            return secret

    def has_secret(self, domain: str) -> bool:
        """Return True if resolve(domain) would return a secret."""
        return self.resolve(domain) is not None

    def _read(self, domain: str) -> str | None:
        path = self.secrets_dir / domain
        try:
            secret = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            logger.info("No secret configured for domain %s", domain)
            return None
        except (OSError, UnicodeDecodeError):
            logger.exception("Could not read secret file for domain %s", domain)
            return None
        if not secret:
            logger.warning("Secret file for domain %s is empty -- ignoring", domain)
            return None
        return secret

    # ------------------------------------------------------------------
    # Admin write path
    # ------------------------------------------------------------------

    def provision_or_get(self, domain: str) -> str:
        """Return the domain's existing secret, creating and persisting one if absent.

        Raises InvalidDomain for an unsafe domain. Filesystem errors other than
        "not found" propagate -- an admin operation should fail loudly.
        """
        validate_domain(domain)
        with self._lock:
            path = self.secrets_dir / domain
            if path.exists():
                secret = path.read_text(encoding="utf-8").strip()
                if secret:
                    self._cache[domain] = secret
                    return secret
            secret = generate_secret()
            self._write(domain, secret)
            self._cache[domain] = secret
        logger.info("Created new secret for domain %s", domain)
        return secret

    def rotate(self, domain: str) -> str:
        """Replace the domain's secret unconditionally and return the new one.

        Every token signed with the previous secret stops verifying at once.
        """
        validate_domain(domain)
        secret = generate_secret()
        with self._lock:
            self._write(domain, secret)
            self._cache[domain] = secret
        logger.info("Rotated secret for domain %s", domain)
        return secret

    def delete(self, domain: str) -> bool:
        """Remove the domain's secret file and cache entry. Returns True if one existed."""
        validate_domain(domain)
        with self._lock:
            self._cache.pop(domain, None)
            try:
                (self.secrets_dir / domain).unlink()
            except FileNotFoundError:
                return False
        logger.info("Deleted secret for domain %s", domain)
        return True

    def list(self) -> list[str]:
        """Return every domain with a secret file, sorted lexicographically."""
        if not self.secrets_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.secrets_dir.iterdir()
            if entry.is_file() and not entry.name.startswith(_TMP_PREFIX) and is_valid_domain(entry.name)
        )

    def _write(self, domain: str, secret: str) -> None:
        """Atomically write secret to <secrets_dir>/<domain> with mode 0600.

        mkstemp creates the temp file 0600 in the same directory, so the
        os.replace() is a same-filesystem rename.
        """
        self.ensure_dir()
        fd, tmp_name = tempfile.mkstemp(dir=self.secrets_dir, prefix=_TMP_PREFIX)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(secret)
            os.chmod(tmp_name, _FILE_MODE)
            os.replace(tmp_name, self.secrets_dir / domain)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
