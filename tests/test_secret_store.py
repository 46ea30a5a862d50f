"""
tests/test_secret_store.py -- Per-domain secret files and the resolve() cache.

Covers:
  - localhost posture (dev secret vs. refused)
  - invalid domains never reach the filesystem
  - resolve() never provisions
  - provision / rotate / delete / list semantics
  - file and directory permissions
  - admin writes racing a cache-miss read
"""

import stat
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest

from auth.models import AuthUser
from auth.secret_store import LOCALHOST_JWT_SECRET, SecretStore, generate_secret
from auth.tokens import TokenCodec
from core.errors import InvalidDomain, TokenInvalid


@pytest.fixture
def store(secrets_dir):
    s = SecretStore(secrets_dir)
    s.ensure_dir()
    return s


class TestLocalhostPosture:
    def test_development_returns_dev_secret(self, secrets_dir):
        store = SecretStore(secrets_dir, allow_localhost=True)
        assert store.resolve("localhost") == LOCALHOST_JWT_SECRET

    def test_production_refuses_localhost(self, secrets_dir):
        store = SecretStore(secrets_dir, allow_localhost=False)
        assert store.resolve("localhost") is None

    def test_production_ignores_localhost_file(self, store, secrets_dir):
        """A secret file named localhost does not re-enable it in production."""
        (secrets_dir / "localhost").write_text("file-secret")
        assert store.resolve("localhost") is None


class TestResolve:
    def test_missing_domain_returns_none(self, store):
        assert store.resolve("unknown.example.com") is None

    def test_resolve_never_creates_a_secret(self, store, secrets_dir):
        store.resolve("new.example.com")
        assert not (secrets_dir / "new.example.com").exists()
        assert store.list() == []

    @pytest.mark.parametrize("domain", ["../etc/passwd", "a/b", "a\\b", "", "a\0b", ".."])
    def test_invalid_domain_never_touches_filesystem(self, store, domain):
        with patch.object(SecretStore, "_read") as read:
            assert store.resolve(domain) is None
        read.assert_not_called()

    def test_traversal_target_is_not_read(self, tmp_path):
        """A real file one level up must stay unreachable."""
        (tmp_path / "outside").write_text("do-not-leak")
        store = SecretStore(tmp_path / "secrets")
        store.ensure_dir()
        assert store.resolve("../outside") is None

    def test_strips_surrounding_whitespace(self, store, secrets_dir):
        (secrets_dir / "app.example.com").write_text("  s3cret\n")
        assert store.resolve("app.example.com") == "s3cret"

    def test_empty_file_is_treated_as_missing(self, store, secrets_dir):
        (secrets_dir / "app.example.com").write_text("   \n")
        assert store.resolve("app.example.com") is None

    def test_value_is_cached_after_first_read(self, store, secrets_dir):
        (secrets_dir / "app.example.com").write_text("first")
        assert store.resolve("app.example.com") == "first"
        (secrets_dir / "app.example.com").write_text("changed-on-disk")
        assert store.resolve("app.example.com") == "first"

    def test_has_secret(self, store):
        store.provision_or_get("app.example.com")
        assert store.has_secret("app.example.com") is True
        assert store.has_secret("other.example.com") is False


class TestProvision:
    def test_provision_twice_returns_same_secret(self, store):
        first = store.provision_or_get("app.example.com")
        second = store.provision_or_get("app.example.com")
        assert first == second
        assert store.resolve("app.example.com") == first

    def test_provision_survives_new_store_instance(self, store, secrets_dir):
        secret = store.provision_or_get("app.example.com")
        assert SecretStore(secrets_dir).resolve("app.example.com") == secret

    def test_provision_keeps_existing_file(self, store, secrets_dir):
        (secrets_dir / "app.example.com").write_text("preexisting")
        assert store.provision_or_get("app.example.com") == "preexisting"

    def test_provision_invalid_domain_raises(self, store):
        with pytest.raises(InvalidDomain):
            store.provision_or_get("../escape")

    def test_concurrent_provision_yields_one_secret(self, store):
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: store.provision_or_get("race.example.com"), range(16)))
        assert len(set(results)) == 1

    def test_secret_file_is_owner_only(self, store, secrets_dir):
        store.provision_or_get("app.example.com")
        mode = stat.S_IMODE((secrets_dir / "app.example.com").stat().st_mode)
        assert mode == 0o600

    def test_directory_is_owner_only(self, store, secrets_dir):
        assert stat.S_IMODE(secrets_dir.stat().st_mode) == 0o700

    def test_ensure_dir_is_idempotent(self, store):
        store.ensure_dir()
        store.ensure_dir()
        assert store.secrets_dir.is_dir()

    def test_generated_secrets_are_long_and_distinct(self):
        a, b = generate_secret(), generate_secret()
        assert a != b
        assert len(a) >= 43  # 32 bytes, base64url


class TestRotate:
    def test_rotate_changes_secret(self, store):
        old = store.provision_or_get("app.example.com")
        new = store.rotate("app.example.com")
        assert new != old
        assert store.resolve("app.example.com") == new

    def test_rotate_writes_disk(self, store, secrets_dir):
        new = store.rotate("app.example.com")
        assert (secrets_dir / "app.example.com").read_text() == new

    def test_rotate_leaves_no_temp_files(self, store, secrets_dir):
        store.rotate("app.example.com")
        store.rotate("app.example.com")
        assert [p.name for p in secrets_dir.iterdir()] == ["app.example.com"]


class TestDeleteAndList:
    def test_delete_existing(self, store):
        store.provision_or_get("app.example.com")
        assert store.delete("app.example.com") is True
        assert store.resolve("app.example.com") is None

    def test_delete_missing(self, store):
        assert store.delete("nothing.example.com") is False

    def test_delete_invalid_domain_raises(self, store):
        with pytest.raises(InvalidDomain):
            store.delete("../x")

    def test_list_sorted(self, store):
        for domain in ("zeta.example.com", "alpha.example.com", "mid.example.com"):
            store.provision_or_get(domain)
        assert store.list() == ["alpha.example.com", "mid.example.com", "zeta.example.com"]

    def test_list_skips_temp_and_foreign_entries(self, store, secrets_dir):
        store.provision_or_get("app.example.com")
        (secrets_dir / ".tmp-abc").write_text("partial")
        (secrets_dir / "not_a_domain").write_text("x")
        (secrets_dir / "subdir.example.com").mkdir()
        assert store.list() == ["app.example.com"]

    def test_list_missing_directory(self, tmp_path):
        assert SecretStore(tmp_path / "absent").list() == []


class TestReadRaces:
    """Admin writes racing a cache-miss read must never resurrect old secrets."""

    def _racing_read(self, store, action):
        """Wrap _read so action() starts on another thread after the file is read."""
        real_read = store._read
        threads = []

        def read_then_race(domain):
            value = real_read(domain)
            t = threading.Thread(target=action)
            t.start()
            threads.append(t)
            time.sleep(0.05)  # let the admin write reach the lock
            return value

        return read_then_race, threads

    def test_delete_during_read_is_not_undone(self, secrets_dir):
        writer = SecretStore(secrets_dir)
        writer.ensure_dir()
        writer.provision_or_get("app.example.com")

        store = SecretStore(secrets_dir)
        codec = TokenCodec(store, expire_seconds=3600)
        token = TokenCodec(writer, expire_seconds=3600).mint(
            AuthUser(id="u-1", email="a@x.com", name="A", role="user"), "app.example.com"
        )

        racing, threads = self._racing_read(store, lambda: store.delete("app.example.com"))
        with patch.object(store, "_read", side_effect=racing):
            store.resolve("app.example.com")
        for t in threads:
            t.join(timeout=5)

        assert not (secrets_dir / "app.example.com").exists()
        assert store.resolve("app.example.com") is None
        with pytest.raises(TokenInvalid):
            codec.verify(token, "app.example.com")

    def test_rotate_during_read_wins(self, secrets_dir):
        SecretStore(secrets_dir).provision_or_get("app.example.com")
        store = SecretStore(secrets_dir)
        rotated = []

        racing, threads = self._racing_read(store, lambda: rotated.append(store.rotate("app.example.com")))
        with patch.object(store, "_read", side_effect=racing):
            store.resolve("app.example.com")
        for t in threads:
            t.join(timeout=5)

        assert store.resolve("app.example.com") == rotated[0]
