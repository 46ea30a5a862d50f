"""
tests/test_user_store.py -- UserStore repository over in-memory SQLite.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import IdentityProfile
from auth.tokens import hash_password


def _profile(**overrides):
    fields = {
        "subject_id": "g-1",
        "email": "g@x.com",
        "name": "G",
        "picture": "https://example.com/g.png",
        "email_verified": True,
    }
    fields.update(overrides)
    return IdentityProfile(**fields)


class TestCreateWithPassword:
    def test_first_user_is_admin(self, user_store):
        first = user_store.create_with_password("a@x.com", "A", hash_password("pw123456"))
        second = user_store.create_with_password("b@x.com", "B", hash_password("pw123456"))
        assert first.role == "admin"
        assert second.role == "user"

    def test_fields_persisted(self, user_store):
        user = user_store.create_with_password("a@x.com", "A", "hash")
        assert len(user.id) == 36
        assert user.email == "a@x.com"
        assert user.name == "A"
        assert user.password_hash == "hash"
        assert user.google_id is None
        assert user.created_at and user.last_login_at

    def test_duplicate_email_raises_integrity_error(self, user_store):
        user_store.create_with_password("a@x.com", "A", "hash")
        with pytest.raises(IntegrityError):
            user_store.create_with_password("a@x.com", "A2", "hash")


class TestLookups:
    def test_get_by_id_email_google(self, user_store):
        user = user_store.create_or_update_from_identity(_profile())
        assert user_store.get_by_id(user.id).email == "g@x.com"
        assert user_store.get_by_email("g@x.com").id == user.id
        assert user_store.get_by_google_id("g-1").id == user.id

    def test_missing_returns_none(self, user_store):
        assert user_store.get_by_id("nope") is None
        assert user_store.get_by_email("nope@x.com") is None
        assert user_store.get_by_google_id("nope") is None

    def test_list_users_newest_first(self, user_store):
        a = user_store.create_with_password("a@x.com", "A", "h")
        b = user_store.create_with_password("b@x.com", "B", "h")
        c = user_store.create_with_password("c@x.com", "C", "h")
        assert [u.id for u in user_store.list_users()] == [c.id, b.id, a.id]


class TestIdentityUpsert:
    def test_creates_google_only_account(self, user_store):
        user = user_store.create_or_update_from_identity(_profile())
        assert user.google_id == "g-1"
        assert user.password_hash is None
        assert user.avatar_url == "https://example.com/g.png"
        assert user.role == "admin"

    def test_known_subject_refreshes_profile(self, user_store):
        first = user_store.create_or_update_from_identity(_profile())
        again = user_store.create_or_update_from_identity(_profile(name="New Name", picture=None))
        assert again.id == first.id
        assert again.name == "New Name"
        assert again.avatar_url is None
        assert len(user_store.list_users()) == 1

    def test_links_existing_password_account_by_email(self, user_store):
        pw_user = user_store.create_with_password("g@x.com", "Pw", "hash")
        linked = user_store.create_or_update_from_identity(_profile())
        assert linked.id == pw_user.id
        assert linked.google_id == "g-1"
        assert linked.password_hash == "hash"

    def test_does_not_relink_email_owned_by_other_google_account(self, user_store):
        user_store.create_or_update_from_identity(_profile(subject_id="g-1"))
        with pytest.raises(IntegrityError):
            # Same email, different subject: unique email blocks a second account
            user_store.create_or_update_from_identity(_profile(subject_id="g-2"))


class TestUpdatesAndDelete:
    def test_update_role(self, user_store):
        user_store.create_with_password("admin@x.com", "Admin", "h")
        user = user_store.create_with_password("u@x.com", "U", "h")
        updated = user_store.update_role(user.id, "admin")
        assert updated.role == "admin"

    def test_update_role_missing(self, user_store):
        assert user_store.update_role("missing", "admin") is None

    def test_update_last_login(self, user_store):
        user = user_store.create_with_password("u@x.com", "U", "h")
        user_store.update_last_login(user.id)
        assert user_store.get_by_id(user.id).last_login_at >= user.last_login_at

    def test_delete_user(self, user_store):
        user = user_store.create_with_password("u@x.com", "U", "h")
        assert user_store.delete_user(user.id) is True
        assert user_store.get_by_id(user.id) is None
        assert user_store.delete_user(user.id) is False
