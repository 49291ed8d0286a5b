"""
projects/lifecycle.py -- Project credential lifecycle shared by the REST API
and the CLI.

  register_project()   create a project with a fresh slug and API key
  rotate_project_key() replace the API key; the old one dies immediately
  issue_setup_code()   mint a one-time code that hands out the API key

Each operation writes its own audit entry, so a project created from the
command line leaves the same trail as one created from the dashboard.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.tokens import generate_api_key
from core.config import get_settings
from core.errors import InternalError
from oauth2.codes import SingleUseCodes
from oauth2.models import SetupCode
from projects.models import Project, Visibility
from projects.store import ProjectStore, make_slug
from security.audit import AuditLogger
from security.models import AuditAction, RequestInfo

logger = logging.getLogger("logincenter.projects")

_MAX_CREATE_ATTEMPTS = 3


def register_project(
    store: ProjectStore,
    audit: AuditLogger,
    owner_id: str,
    name: str,
    domain: str | None = None,
    visibility: Visibility = Visibility.PUBLIC,
    info: RequestInfo | None = None,
) -> Project:
    """Create a project owned by owner_id. Slug and key collisions are retried."""
    for _ in range(_MAX_CREATE_ATTEMPTS):
        candidate = Project(
            name=name.strip(),
            slug=make_slug(name),
            api_key=generate_api_key(),
            owner_id=owner_id,
            domain=(domain or "").strip() or None,
            visibility=visibility,
        )
        try:
            project = store.create_project(candidate)
        except IntegrityError:
            logger.warning("Project insert collided for %r; retrying with a new slug", name)
            continue
        audit.log_success(
            AuditAction.PROJECT_CREATE,
            user_id=owner_id,
            project_id=project.id,
            info=info,
            metadata={"name": project.name, "slug": project.slug, "visibility": project.visibility.value},
        )
        logger.info("Project created: %s (%s)", project.slug, project.visibility.value)
        return project
    raise InternalError("Could not allocate a unique project slug.")


def rotate_project_key(
    store: ProjectStore,
    audit: AuditLogger,
    project: Project,
    actor_id: str,
    info: RequestInfo | None = None,
) -> str:
    """Install a new API key for project and return it."""
    new_key = generate_api_key()
    store.rotate_api_key(project.id, new_key)
    audit.log_success(
        AuditAction.API_KEY_ROTATE,
        user_id=actor_id,
        project_id=project.id,
        info=info,
        metadata={"old_key_prefix": project.api_key_prefix, "new_key_prefix": new_key[:11]},
    )
    return new_key


def issue_setup_code(
    setup_codes: SingleUseCodes[SetupCode],
    audit: AuditLogger,
    project: Project,
    actor_id: str,
    info: RequestInfo | None = None,
    ttl_seconds: int | None = None,
) -> SetupCode:
    ttl = ttl_seconds if ttl_seconds is not None else get_settings().setup_code_ttl_seconds
    record = setup_codes.issue(ttl_seconds=ttl, project_id=project.id)
    audit.log_success(
        AuditAction.SETUP_CODE,
        user_id=actor_id,
        project_id=project.id,
        info=info,
        metadata={"setup_code_id": record.id, "expires_at": record.expires_at},
    )
    return record
