"""
auth/store.py -- SQLAlchemy Core persistence layer for HostAuth users.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Rows become AuthUser
dataclasses here and nowhere else, so nothing above this module ever sees a
SQLAlchemy Row.

Security:
  All queries use bound parameters. No f-strings in SQL.

Role bootstrap:
  The first account ever created (password or Google) is an admin. Every
  later account is a plain user until an admin promotes it. The count and the
  insert share one transaction so two concurrent first sign-ups cannot both
  become admin on SQLite (which serializes writers).

DB path: auth/hostauth.db unless DATABASE_URL is set.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Connection, Engine

from auth.models import AuthUser, IdentityProfile

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'hostauth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),  # uuid4
    Column("email", String(255), nullable=False, unique=True),
    Column("google_id", String(255), unique=True),  # NULL until first Google sign-in
    Column("password_hash", Text),  # NULL for Google-only users
    Column("name", String(255), nullable=False),
    Column("avatar_url", Text),
    Column("role", String(10), nullable=False, server_default="user"),
    Column("created_at", String(32), nullable=False),
    Column("last_login_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _first_user_role(conn: Connection) -> str:
    count = conn.execute(select(func.count()).select_from(_users)).scalar() or 0
    return "admin" if count == 0 else "user"


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for AuthUser entities.

    Usage:
        store = UserStore()
        user = store.create_with_password("a@x.com", "A", hash_password("secret123"))
        same = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = "") -> None:
        db_url = db_url or _DEFAULT_DB_URL
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and "mode=memory" not in db_url and ":memory:" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: str) -> AuthUser | None:
        """Look up a user by primary key. Returns None if not found."""
        return self._fetch_one(_users.c.id == user_id)

    def get_by_email(self, email: str) -> AuthUser | None:
        """Look up a user by exact email. Returns None if not found."""
        return self._fetch_one(_users.c.email == email)

    def get_by_google_id(self, google_id: str) -> AuthUser | None:
        """Look up a user by Google subject id. Returns None if not found."""
        return self._fetch_one(_users.c.google_id == google_id)

    def list_users(self) -> list[AuthUser]:
        """Return all users, newest first. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at.desc())).fetchall()
        return [_row_to_user(r) for r in rows]

    def _fetch_one(self, where) -> AuthUser | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(where)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_with_password(self, email: str, name: str, password_hash: str) -> AuthUser:
        """Insert a password account and return it.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers treat that as a concurrent duplicate registration.
        """
        user_id = str(uuid.uuid4())
        now = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=email,
                    password_hash=password_hash,
                    name=name,
                    role=_first_user_role(conn),
                    created_at=now,
                    last_login_at=now,
                )
            )
        return self.get_by_id(user_id)  # type: ignore[return-value]

    def create_or_update_from_identity(self, profile: IdentityProfile) -> AuthUser:
        """Upsert the account for an identity-provider sign-in.

        1. Known Google id: refresh name, avatar and last login.
        2. Known email (password account, not yet linked): link the Google id.
           Callers must only pass profiles whose email the provider verified.
        3. Otherwise: create a Google-only account.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            row = conn.execute(_users.select().where(_users.c.google_id == profile.subject_id)).fetchone()
            if row is None:
                row = conn.execute(
                    _users.select().where((_users.c.email == profile.email) & _users.c.google_id.is_(None))
                ).fetchone()
            if row is not None:
                conn.execute(
                    _users.update()
                    .where(_users.c.id == row.id)
                    .values(
                        google_id=profile.subject_id,
                        name=profile.name,
                        avatar_url=profile.picture,
                        last_login_at=now,
                    )
                )
                user_id = row.id
            else:
                user_id = str(uuid.uuid4())
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        email=profile.email,
                        google_id=profile.subject_id,
                        password_hash=None,
                        name=profile.name,
                        avatar_url=profile.picture,
                        role=_first_user_role(conn),
                        created_at=now,
                        last_login_at=now,
                    )
                )
        return self.get_by_id(user_id)  # type: ignore[return-value]

    def update_last_login(self, user_id: str) -> None:
        """Stamp the current UTC time as last_login_at."""
        with self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login_at=_now_iso()))

    def update_role(self, user_id: str, role: str) -> AuthUser | None:
        """Set a user's role. Returns the updated user, or None if not found."""
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(role=role))
        if result.rowcount == 0:
            return None
        return self.get_by_id(user_id)

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user. Returns True if deleted, False if not found.

        Tokens already issued to the user stay cryptographically valid until
        they expire; the "who am I" path re-reads the user and refuses them.
        """
        with self.engine.begin() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> AuthUser:
    return AuthUser(
        id=row.id,
        email=row.email,
        name=row.name,
        role=row.role,
        google_id=row.google_id,
        password_hash=row.password_hash,
        avatar_url=row.avatar_url,
        created_at=row.created_at,
        last_login_at=row.last_login_at,
    )
