"""
api/ownership.py -- The single owner check shared by project-scoped routes.

Unknown id -> NotFound (404). An existing project owned by someone else ->
AccessDenied (403) plus an access_denied audit entry, so probing other
tenants' project ids leaves a trail.
"""

from __future__ import annotations

from fastapi import Request

from auth.dependencies import request_info
from auth.models import User
from core.errors import AccessDenied, NotFound
from projects.models import Project
from security.models import AuditAction


def owned_project(request: Request, project_id: str, user: User, action: str) -> Project:
    """Return the project if user owns it, else raise."""
    project = request.app.state.project_store.get_by_id(project_id)
    if project is None:
        raise NotFound("Project not found")
    if project.owner_id != user.id:
        request.app.state.audit.log_failure(
            AuditAction.ACCESS_DENIED,
            user_id=user.id,
            project_id=project_id,
            info=request_info(request),
            metadata={"reason": "not_owner", "action": action},
        )
        raise AccessDenied("Project not found or access denied", reason="not_owner")
    return project
