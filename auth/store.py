"""
auth/store.py -- SQLAlchemy Core persistence layer for hub users.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  increment_token_version() is the kill switch. It issues
  UPDATE users SET token_version = token_version + 1 so the increment
  happens inside the database; two concurrent calls both land and the
  counter moves by two. A read-modify-write in Python would lose one.

  Emails are stored lower-cased so lookups are case-insensitive without a
  functional index.

Layer rule: imports only core/ and auth/.
"""

from __future__ import annotations

import uuid

from sqlalchemy import select

from auth.models import User
from core.config import get_settings
from core.db import dispose_engine, get_engine, now_iso
from core.schema import users


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore(db_url)
        user_id = store.create_user(User(email="ada@example.com", name="Ada"))
        store.increment_token_version(user_id)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.db_url = db_url or get_settings().database_url
        self.engine = get_engine(self.db_url)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        The login flow catches that as a concurrent first login and re-reads.
        """
        user_id = user.id or str(uuid.uuid4())
        with self.engine.connect() as conn:
            conn.execute(
                users.insert().values(
                    id=user_id,
                    email=user.email.strip().lower(),
                    name=user.name,
                    image=user.image,
                    role=user.role,
                    token_version=user.token_version,
                    oauth_provider=user.oauth_provider,
                    oauth_subject=user.oauth_subject,
                    created_at=now_iso(),
                )
            )
            conn.commit()
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_oauth(self, provider: str, subject: str) -> User | None:
        """Look up a user by (oauth_provider, oauth_subject). Returns None if unlinked."""
        with self.engine.connect() as conn:
            row = conn.execute(
                users.select().where((users.c.oauth_provider == provider) & (users.c.oauth_subject == subject))
            ).fetchone()
        return _row_to_user(row) if row is not None else None


    def link_oauth(self, user_id: str, provider: str, subject: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(users.update().where(users.c.id == user_id).values(oauth_provider=provider, oauth_subject=subject))
            conn.commit()

    def record_login(self, user_id: str, name: str | None = None, image: str | None = None) -> None:
        """Stamp last_login and refresh the profile fields the provider sent."""
        values: dict = {"last_login": now_iso()}
        if name:
            values["name"] = name
        if image:
            values["image"] = image
        with self.engine.connect() as conn:
            conn.execute(users.update().where(users.c.id == user_id).values(**values))
            conn.commit()


    # ------------------------------------------------------------------
    # Token version (kill switch)
    # ------------------------------------------------------------------

    def get_token_version(self, user_id: str) -> int | None:
        """Read the current version straight from the store. None if the user is gone."""
        with self.engine.connect() as conn:
            return conn.execute(select(users.c.token_version).where(users.c.id == user_id)).scalar()

    def increment_token_version(self, user_id: str) -> int | None:
        """Atomically bump token_version and return the new value (None if no such user)."""
        with self.engine.begin() as conn:
            result = conn.execute(
                users.update().where(users.c.id == user_id).values(token_version=users.c.token_version + 1)
            )
            if result.rowcount == 0:
                return None
            return conn.execute(select(users.c.token_version).where(users.c.id == user_id)).scalar()

    def close(self) -> None:
        dispose_engine(self.db_url)


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        image=row.image,
        role=row.role,
        token_version=row.token_version,
        oauth_provider=row.oauth_provider,
        oauth_subject=row.oauth_subject,
        created_at=row.created_at,
        last_login=row.last_login,
    )
