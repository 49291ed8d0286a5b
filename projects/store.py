"""
projects/store.py -- SQLAlchemy Core persistence for projects, memberships
and project sessions.

Pattern: Repository + Data Mapper, as in auth/store.py.

Security:
  All queries use bound parameters.
  Ownership is NOT checked here; routes resolve the project and compare
  owner_id before calling any mutating method, and every per-row mutation
  (remove_member, delete_session) is scoped by project_id so a foreign id
  from another project matches nothing.

Project sessions:
  One row per (user, project), enforced by a UNIQUE constraint.
  upsert_session() is an INSERT ... ON CONFLICT DO UPDATE so the row is
  refreshed in place on every authorization instead of accumulating.
"""

from __future__ import annotations

import re
import secrets
import uuid
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from core.config import get_settings
from core.db import dispose_engine, get_engine, now_iso, to_iso, upsert, utcnow
from core.schema import project_sessions, project_users, projects, users
from projects.models import MemberRole, Project, ProjectMember, ProjectSession, Visibility
from security.models import RequestInfo

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def make_slug(name: str) -> str:
    """Slugify name and append a short random suffix, e.g. "My Shop" -> "my-shop-3fa9"."""
    base = _SLUG_RE.sub("-", name.lower()).strip("-")[:40] or "project"
    return f"{base}-{secrets.token_hex(2)}"


class ProjectStore:
    """Repository for Project, ProjectMember and ProjectSession.

    Usage:
        store = ProjectStore(db_url)
        project = store.create_project(Project(name="Shop", slug="shop", api_key=key, owner_id=uid))
        store.add_member(project.id, other_uid)
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.db_url = db_url or get_settings().database_url
        self.engine = get_engine(self.db_url)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, project: Project) -> Project:
        """Insert a project and return it with id and timestamps filled in.

        Raises IntegrityError if slug or api_key collides.
        """
        project_id = project.id or str(uuid.uuid4())
        stamp = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                projects.insert().values(
                    id=project_id,
                    slug=project.slug,
                    name=project.name,
                    domain=project.domain or None,
                    api_key=project.api_key,
                    owner_id=project.owner_id,
                    visibility=Visibility(project.visibility).value,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            conn.commit()
        return self.get_by_id(project_id)

    def get_by_id(self, project_id: str) -> Project | None:
        with self.engine.connect() as conn:
            row = conn.execute(projects.select().where(projects.c.id == project_id)).fetchone()
        return _row_to_project(row) if row is not None else None

    def get_by_slug(self, slug: str) -> Project | None:
        with self.engine.connect() as conn:
            row = conn.execute(projects.select().where(projects.c.slug == slug)).fetchone()
        return _row_to_project(row) if row is not None else None

    def get_by_api_key(self, api_key: str) -> Project | None:
        """O(1) lookup via the UNIQUE index on api_key."""
        with self.engine.connect() as conn:
            row = conn.execute(projects.select().where(projects.c.api_key == api_key)).fetchone()
        return _row_to_project(row) if row is not None else None

    def list_owned(self, owner_id: str) -> list[Project]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                projects.select().where(projects.c.owner_id == owner_id).order_by(projects.c.created_at.desc())
            ).fetchall()
        return [_row_to_project(r) for r in rows]

    def list_member_of(self, user_id: str) -> list[Project]:
        """Projects the user belongs to through a membership row (not ownership)."""
        query = (
            select(projects)
            .join(project_users, project_users.c.project_id == projects.c.id)
            .where(project_users.c.user_id == user_id)
            .order_by(projects.c.name)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_project(r) for r in rows]

    def owned_project_ids(self, owner_id: str) -> list[str]:
        with self.engine.connect() as conn:
            return list(conn.execute(select(projects.c.id).where(projects.c.owner_id == owner_id)).scalars())

    def delete_project(self, project_id: str) -> bool:
        """Delete a project; codes, sessions, memberships and setup codes cascade."""
        with self.engine.connect() as conn:
            result = conn.execute(projects.delete().where(projects.c.id == project_id))
            conn.commit()
        return result.rowcount > 0

    def rotate_api_key(self, project_id: str, new_key: str) -> bool:
        """Replace the API key in one statement. The old key stops working immediately."""
        with self.engine.connect() as conn:
            result = conn.execute(
                projects.update().where(projects.c.id == project_id).values(api_key=new_key, updated_at=now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def set_visibility(self, project_id: str, visibility: Visibility) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                projects.update()
                .where(projects.c.id == project_id)
                .values(visibility=Visibility(visibility).value, updated_at=now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Memberships
    # ------------------------------------------------------------------

    def add_member(self, project_id: str, user_id: str, role: MemberRole = MemberRole.MEMBER) -> ProjectMember | None:
        """Grant membership. Returns None if the user is already a member."""
        member_id = str(uuid.uuid4())
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    project_users.insert().values(
                        id=member_id,
                        user_id=user_id,
                        project_id=project_id,
                        role=MemberRole(role).value,
                        created_at=now_iso(),
                    )
                )
                conn.commit()
        except IntegrityError:
            return None
        return self.get_member(project_id, member_id)

    def get_member(self, project_id: str, member_id: str) -> ProjectMember | None:
        query = _member_query().where(project_users.c.project_id == project_id, project_users.c.id == member_id)
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_member(row) if row is not None else None

    def get_membership(self, project_id: str, user_id: str) -> ProjectMember | None:
        query = _member_query().where(project_users.c.project_id == project_id, project_users.c.user_id == user_id)
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_member(row) if row is not None else None

    def list_members(self, project_id: str) -> list[ProjectMember]:
        query = _member_query().where(project_users.c.project_id == project_id).order_by(project_users.c.created_at)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_member(r) for r in rows]

    def remove_member(self, project_id: str, member_id: str) -> ProjectMember | None:
        """Revoke membership. Returns the removed member, or None if not found in this project."""
        member = self.get_member(project_id, member_id)
        if member is None:
            return None
        with self.engine.connect() as conn:
            result = conn.execute(
                project_users.delete().where(project_users.c.project_id == project_id, project_users.c.id == member_id)
            )
            conn.commit()
        return member if result.rowcount > 0 else None

    # ------------------------------------------------------------------
    # Project sessions
    # ------------------------------------------------------------------

    def upsert_session(
        self,
        project_id: str,
        user_id: str,
        user_email: str,
        user_name: str | None = None,
        info: RequestInfo | None = None,
    ) -> None:
        """Create or refresh the (user, project) session row atomically."""
        stamp = now_iso()
        stmt = upsert(self.engine, project_sessions).values(
            id=str(uuid.uuid4()),
            user_id=user_id,
            project_id=project_id,
            user_email=user_email,
            user_name=user_name,
            user_agent=info.user_agent if info else None,
            ip_address=info.ip_address if info else None,
            last_seen_at=stamp,
            created_at=stamp,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[project_sessions.c.user_id, project_sessions.c.project_id],
            set_={
                "user_email": stmt.excluded.user_email,
                "user_name": stmt.excluded.user_name,
                "user_agent": stmt.excluded.user_agent,
                "ip_address": stmt.excluded.ip_address,
                "last_seen_at": stmt.excluded.last_seen_at,
            },
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)

    def touch_session(self, project_id: str, user_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                project_sessions.update()
                .where(project_sessions.c.project_id == project_id, project_sessions.c.user_id == user_id)
                .values(last_seen_at=now_iso())
            )
            conn.commit()

    def list_sessions(self, project_id: str) -> list[ProjectSession]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                project_sessions.select()
                .where(project_sessions.c.project_id == project_id)
                .order_by(project_sessions.c.last_seen_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def session_stats(self, project_id: str, now: datetime | None = None) -> dict:
        """Return {total, activeToday, activeThisWeek} by last_seen_at."""
        now = now or utcnow()
        day_ago = to_iso(now - timedelta(days=1))
        week_ago = to_iso(now - timedelta(days=7))
        base = select(func.count()).select_from(project_sessions).where(project_sessions.c.project_id == project_id)
        with self.engine.connect() as conn:
            total = conn.execute(base).scalar() or 0
            today = conn.execute(base.where(project_sessions.c.last_seen_at >= day_ago)).scalar() or 0
            week = conn.execute(base.where(project_sessions.c.last_seen_at >= week_ago)).scalar() or 0
        return {"total": total, "activeToday": today, "activeThisWeek": week}

    def delete_session(self, project_id: str, session_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                delete(project_sessions).where(
                    project_sessions.c.project_id == project_id, project_sessions.c.id == session_id
                )
            )
            conn.commit()
        return result.rowcount > 0

    def delete_sessions_for_project(self, project_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(delete(project_sessions).where(project_sessions.c.project_id == project_id))
            conn.commit()
        return result.rowcount

    def delete_user_session(self, project_id: str, user_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                delete(project_sessions).where(
                    project_sessions.c.project_id == project_id, project_sessions.c.user_id == user_id
                )
            )
            conn.commit()
        return result.rowcount

    def delete_sessions_for_user(self, user_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(delete(project_sessions).where(project_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        dispose_engine(self.db_url)


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _member_query():
    return select(
        project_users,
        users.c.email.label("user_email"),
        users.c.name.label("user_name"),
    ).join(users, users.c.id == project_users.c.user_id)


def _row_to_project(row) -> Project:
    return Project(
        id=row.id,
        slug=row.slug,
        name=row.name,
        domain=row.domain,
        api_key=row.api_key,
        owner_id=row.owner_id,
        visibility=Visibility(row.visibility),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_member(row) -> ProjectMember:
    return ProjectMember(
        id=row.id,
        project_id=row.project_id,
        user_id=row.user_id,
        role=MemberRole(row.role),
        created_at=row.created_at,
        user_email=row.user_email,
        user_name=row.user_name,
    )


def _row_to_session(row) -> ProjectSession:
    return ProjectSession(
        id=row.id,
        project_id=row.project_id,
        user_id=row.user_id,
        user_email=row.user_email,
        user_name=row.user_name,
        user_agent=row.user_agent,
        ip_address=row.ip_address,
        last_seen_at=row.last_seen_at,
        created_at=row.created_at,
    )
