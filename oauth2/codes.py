"""
oauth2/codes.py -- Generic single-use code repository.

Authorization codes and project setup codes have the same lifecycle:
issued once with an expiry, redeemed at most once, never updated otherwise.
SingleUseCodes[T] implements that lifecycle once over any table that has
the columns id, code, expires_at, used_at, used_by_ip and created_at; a row
mapper turns rows into the payload type T.

Redemption is race-free:

    1. SELECT the row and classify it for a precise error
       (not found -> 404, used -> 410, expired -> 410).
    2. UPDATE ... SET used_at = now
       WHERE id = ? AND used_at IS NULL AND expires_at > now
    3. rowcount == 1 means this caller won. rowcount == 0 means a
       concurrent redemption got there first -> CodeAlreadyUsed.

Step 1 alone is a check-then-act race; step 2 is what guarantees that two
simultaneous redemptions produce exactly one success. Expiry is compared
at read time, so an expired row that retention has not yet deleted is still
rejected.

Issuance relies on the UNIQUE constraint on code. A collision (practically
impossible at 128+ bits) is retried with a fresh code a few times and then
surfaces as InternalError.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Generic, TypeVar

from sqlalchemy import Table, delete, select
from sqlalchemy.exc import IntegrityError

from auth.tokens import generate_authorization_code, generate_setup_code
from core.config import get_settings
from core.db import dispose_engine, get_engine, to_iso, utcnow
from core.errors import CodeAlreadyUsed, CodeExpired, InternalError, InvalidOrExpiredCode
from core.schema import authorization_codes, project_setup_codes
from oauth2.models import AuthorizationCode, SetupCode

logger = logging.getLogger("logincenter.codes")

T = TypeVar("T", AuthorizationCode, SetupCode)

_MAX_ISSUE_ATTEMPTS = 3


class SingleUseCodes(Generic[T]):
    """Issue, look up and atomically redeem one kind of single-use code.

    Usage:
        codes = authorization_codes_repo(db_url)
        record = codes.issue(ttl_seconds=300, user_id=uid, project_id=pid, redirect_uri=uri)
        codes.redeem(record.code)          # ok
        codes.redeem(record.code)          # raises CodeAlreadyUsed
    """

    def __init__(
        self,
        db_url: str,
        table: Table,
        row_mapper: Callable[..., T],
        code_factory: Callable[[], str],
        label: str,
    ) -> None:
        self.db_url = db_url
        self.engine = get_engine(db_url)
        self.table = table
        self._to_record = row_mapper
        self._code_factory = code_factory
        self.label = label

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self, ttl_seconds: int, now: datetime | None = None, **payload) -> T:
        """Persist a fresh code carrying payload columns and return its record."""
        now = now or utcnow()
        for attempt in range(1, _MAX_ISSUE_ATTEMPTS + 1):
            code = self._code_factory()
            try:
                with self.engine.begin() as conn:
                    conn.execute(
                        self.table.insert().values(
                            id=str(uuid.uuid4()),
                            code=code,
                            expires_at=to_iso(now + timedelta(seconds=ttl_seconds)),
                            used_at=None,
                            used_by_ip=None,
                            created_at=to_iso(now),
                            **payload,
                        )
                    )
            except IntegrityError:
                logger.warning("%s insert failed on attempt %d (collision or missing parent)", self.label, attempt)
                continue
            return self.get(code)
        raise InternalError(f"Could not issue a unique {self.label.lower()}.")

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, code: str) -> T | None:
        with self.engine.connect() as conn:
            row = conn.execute(self.table.select().where(self.table.c.code == code)).fetchone()
        return self._to_record(row) if row is not None else None

    def list_active(self, now: datetime | None = None, **filters) -> list[T]:
        """Unused, unexpired codes matching column filters, newest first."""
        now_s = to_iso(now or utcnow())
        query = select(self.table).where(self.table.c.used_at.is_(None), self.table.c.expires_at > now_s)
        for column, value in filters.items():
            query = query.where(self.table.c[column] == value)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(self.table.c.created_at.desc())).fetchall()
        return [self._to_record(r) for r in rows]

    # ------------------------------------------------------------------
    # Redeem
    # ------------------------------------------------------------------

    def redeem(
        self,
        code: str,
        *,
        validate: Callable[[T], None] | None = None,
        used_by_ip: str | None = None,
        now: datetime | None = None,
    ) -> T:
        """Mark code used and return its record, or raise.

        validate runs after the lookup and before any state change; it may
        raise to reject the code without consuming it.

        Raises:
            InvalidOrExpiredCode: no such code.
            CodeAlreadyUsed:      used before, or a concurrent call won.
            CodeExpired:          past expires_at.
        """
        now_s = to_iso(now or utcnow())
        record = self.get(code)
        if record is None:
            raise InvalidOrExpiredCode(f"Invalid or expired {self.label.lower()}")
        if validate is not None:
            validate(record)
        if record.is_used:
            raise CodeAlreadyUsed(f"{self.label} has already been used")
        if record.is_expired(now_s):
            raise CodeExpired(f"{self.label} has expired")

        with self.engine.begin() as conn:
            result = conn.execute(
                self.table.update()
                .where(
                    self.table.c.id == record.id,
                    self.table.c.used_at.is_(None),
                    self.table.c.expires_at > now_s,
                )
                .values(used_at=now_s, used_by_ip=used_by_ip)
            )
        if result.rowcount != 1:
            raise CodeAlreadyUsed(f"{self.label} has already been used")
        return self.get(code)

    # ------------------------------------------------------------------
    # Revoke / purge
    # ------------------------------------------------------------------

    def revoke(self, code_id: str, **filters) -> bool:
        """Delete an unused code by id (scoped by column filters). False if not found or used."""
        stmt = delete(self.table).where(self.table.c.id == code_id, self.table.c.used_at.is_(None))
        for column, value in filters.items():
            stmt = stmt.where(self.table.c[column] == value)
        with self.engine.begin() as conn:
            result = conn.execute(stmt)
        return result.rowcount > 0

    def purge_expired(self, now: datetime | None = None) -> int:
        now_s = to_iso(now or utcnow())
        with self.engine.begin() as conn:
            result = conn.execute(delete(self.table).where(self.table.c.expires_at <= now_s))
        return result.rowcount

    def close(self) -> None:
        dispose_engine(self.db_url)


# ---------------------------------------------------------------------------
# Row mappers and factories
# ---------------------------------------------------------------------------


def _row_to_authorization_code(row) -> AuthorizationCode:
    return AuthorizationCode(
        id=row.id,
        code=row.code,
        expires_at=row.expires_at,
        created_at=row.created_at,
        used_at=row.used_at,
        used_by_ip=row.used_by_ip,
        user_id=row.user_id,
        project_id=row.project_id,
        redirect_uri=row.redirect_uri,
    )


def _row_to_setup_code(row) -> SetupCode:
    return SetupCode(
        id=row.id,
        code=row.code,
        expires_at=row.expires_at,
        created_at=row.created_at,
        used_at=row.used_at,
        used_by_ip=row.used_by_ip,
        project_id=row.project_id,
    )


def authorization_codes_repo(db_url: str | None = None) -> SingleUseCodes[AuthorizationCode]:
    return SingleUseCodes(
        db_url or get_settings().database_url,
        authorization_codes,
        _row_to_authorization_code,
        generate_authorization_code,
        "Authorization code",
    )


def setup_codes_repo(db_url: str | None = None) -> SingleUseCodes[SetupCode]:
    return SingleUseCodes(
        db_url or get_settings().database_url,
        project_setup_codes,
        _row_to_setup_code,
        generate_setup_code,
        "Setup code",
    )
