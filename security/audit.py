"""
security/audit.py -- Append-only security audit trail.

AuditLogger owns the audit_logs table: it is both the writer used by every
security-relevant code path and the repository the reporting modules read
from.

Failure isolation:
  log_success() / log_failure() never raise. A broken audit write must not
  turn a successful login or code exchange into a 500, so storage errors are
  caught here and reported through logger.exception() on the
  "logincenter.audit" logger, where operators can alert on them.

Security:
  All queries use bound parameters. metadata is serialized with json.dumps
  and only ever matched with LIKE on the serialized text, never evaluated.
  Caller-supplied fragments are escaped, so % and _ match literally.

Layer rule: imports only core/ and security/.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable

from sqlalchemy import delete, func, or_, select

from core.config import get_settings
from core.db import dispose_engine, get_engine, now_iso
from core.schema import audit_logs
from security.models import AuditAction, AuditLogEntry, AuditStatus, RequestInfo

logger = logging.getLogger("logincenter.audit")

_MAX_LIST_LIMIT = 200
_LIKE_ESCAPE = "\\"


class AuditLogger:
    """Writer and repository for AuditLogEntry rows.

    Usage:
        audit = AuditLogger(db_url)
        audit.log_success(AuditAction.LOGIN, user_id=user.id, info=info)
        audit.log_failure(AuditAction.ACCESS_DENIED, metadata={"reason": "user_not_member"})
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.db_url = db_url or get_settings().database_url
        self.engine = get_engine(self.db_url)

    # ------------------------------------------------------------------
    # Writes (best effort)
    # ------------------------------------------------------------------

    def log(
        self,
        action: AuditAction | str,
        status: AuditStatus | str,
        *,
        user_id: str | None = None,
        project_id: str | None = None,
        info: RequestInfo | None = None,
        metadata: dict | None = None,
    ) -> None:
        action_value = action.value if isinstance(action, AuditAction) else str(action)
        status_value = status.value if isinstance(status, AuditStatus) else str(status)
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    audit_logs.insert().values(
                        user_id=user_id,
                        project_id=project_id,
                        action=action_value,
                        status=status_value,
                        ip_address=info.ip_address if info else None,
                        user_agent=info.user_agent if info else None,
                        metadata=json.dumps(metadata, default=str) if metadata else None,
                        created_at=now_iso(),
                    )
                )
                conn.commit()
        except Exception:
            logger.exception("Failed to write audit log entry (action=%s status=%s)", action_value, status_value)

    def log_success(self, action: AuditAction | str, **kwargs) -> None:
        self.log(action, AuditStatus.SUCCESS, **kwargs)

    def log_failure(self, action: AuditAction | str, **kwargs) -> None:
        self.log(action, AuditStatus.FAILURE, **kwargs)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_visible(
        self,
        user_id: str,
        owned_project_ids: Iterable[str],
        *,
        project_id: str | None = None,
        limit: int = 50,
    ) -> list[AuditLogEntry]:
        """Return entries about the user or about projects they own, newest first.

        When project_id is given the caller has already checked ownership;
        only that project's entries are returned.
        """
        limit = max(1, min(limit, _MAX_LIST_LIMIT))
        query = select(audit_logs).order_by(audit_logs.c.created_at.desc(), audit_logs.c.id.desc()).limit(limit)
        query = query.where(self._visible_clause(user_id, owned_project_ids, project_id))
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_entry(r) for r in rows]

    def delete_visible(
        self,
        user_id: str,
        owned_project_ids: Iterable[str],
        *,
        log_id: int | None = None,
        project_id: str | None = None,
    ) -> int:
        """Delete entries the user may see. Returns the number of rows removed."""
        stmt = delete(audit_logs).where(self._visible_clause(user_id, owned_project_ids, project_id))
        if log_id is not None:
            stmt = stmt.where(audit_logs.c.id == log_id)
        with self.engine.connect() as conn:
            result = conn.execute(stmt)
            conn.commit()
        return result.rowcount

    @staticmethod
    def _visible_clause(user_id: str, owned_project_ids: Iterable[str], project_id: str | None):
        if project_id is not None:
            return audit_logs.c.project_id == project_id
        owned = list(owned_project_ids)
        if owned:
            return or_(audit_logs.c.user_id == user_id, audit_logs.c.project_id.in_(owned))
        return audit_logs.c.user_id == user_id

    def count(
        self,
        *,
        action: AuditAction | str | None = None,
        status: AuditStatus | str | None = None,
        since: str | None = None,
        ip_address: str | None = None,
        metadata_contains: str | None = None,
    ) -> int:
        """Count entries matching every given filter. since is an ISO timestamp."""
        query = select(func.count()).select_from(audit_logs)
        query = _apply_filters(query, action, status, since, ip_address, metadata_contains)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    def count_distinct_ips(
        self,
        *,
        action: AuditAction | str | None = None,
        status: AuditStatus | str | None = None,
        since: str | None = None,
    ) -> int:
        query = select(func.count(func.distinct(audit_logs.c.ip_address))).where(audit_logs.c.ip_address.is_not(None))
        query = _apply_filters(query, action, status, since, None, None)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    def count_failures_for(self, identifier: str, *, action: AuditAction | str, since: str) -> int:
        """Count failures of action since the cutoff where identifier is the IP or a metadata value."""
        query = (
            select(func.count())
            .select_from(audit_logs)
            .where(
                audit_logs.c.status == AuditStatus.FAILURE.value,
                audit_logs.c.action == _value(action),
                audit_logs.c.created_at >= since,
                or_(
                    audit_logs.c.ip_address == identifier,
                    audit_logs.c["metadata"].like(_metadata_value_pattern(identifier), escape=_LIKE_ESCAPE),
                ),
            )
        )
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    def stats(self) -> dict:
        """Return {totalCount, oldestLog, newestLog} over the whole trail."""
        query = select(func.count(), func.min(audit_logs.c.created_at), func.max(audit_logs.c.created_at))
        with self.engine.connect() as conn:
            total, oldest, newest = conn.execute(query).one()
        return {"totalCount": total or 0, "oldestLog": oldest, "newestLog": newest}

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def delete_older_than(self, cutoff_iso: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(delete(audit_logs).where(audit_logs.c.created_at < cutoff_iso))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        dispose_engine(self.db_url)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _value(v):
    return v.value if hasattr(v, "value") else v


def _escape_like(text: str) -> str:
    for ch in (_LIKE_ESCAPE, "%", "_"):
        text = text.replace(ch, _LIKE_ESCAPE + ch)
    return text


def _metadata_value_pattern(value: str) -> str:
    """LIKE pattern for a JSON member whose value is exactly value, under any key."""
    return f'%": {_escape_like(json.dumps(value))}%'


def _apply_filters(query, action, status, since, ip_address, metadata_contains):
    if action is not None:
        query = query.where(audit_logs.c.action == _value(action))
    if status is not None:
        query = query.where(audit_logs.c.status == _value(status))
    if since is not None:
        query = query.where(audit_logs.c.created_at >= since)
    if ip_address is not None:
        query = query.where(audit_logs.c.ip_address == ip_address)
    if metadata_contains is not None:
        pattern = f"%{_escape_like(metadata_contains)}%"
        query = query.where(audit_logs.c["metadata"].like(pattern, escape=_LIKE_ESCAPE))
    return query


def _row_to_entry(row) -> AuditLogEntry:
    m = row._mapping
    raw = m["metadata"]
    try:
        meta = json.loads(raw) if raw else {}
    except ValueError:
        meta = {"raw": raw}
    return AuditLogEntry(
        id=m["id"],
        user_id=m["user_id"],
        project_id=m["project_id"],
        action=m["action"],
        status=m["status"],
        ip_address=m["ip_address"],
        user_agent=m["user_agent"],
        metadata=meta,
        created_at=m["created_at"],
    )
