"""
api/routes/v1/audit.py -- The caller's own slice of the audit trail.

Routes:
  GET    /api/v1/audit-logs  -- ?projectId=&limit= (default 50, max 200)
  DELETE /api/v1/audit-logs  -- ?id= one entry, ?projectId= one project, or all visible

Visibility: a user sees entries about themselves plus every entry tied to a
project they own. With ?projectId= the caller must own that project (403
and an access_denied entry otherwise). Deletion follows the same rule; it
exists for retention and privacy requests, never to edit an entry.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.ownership import owned_project
from auth.dependencies import get_current_user
from auth.models import User

router = APIRouter()


def _entry_to_dict(entry) -> dict:
    data = asdict(entry)
    return {
        "id": data["id"],
        "userId": data["user_id"],
        "projectId": data["project_id"],
        "action": data["action"],
        "status": data["status"],
        "ipAddress": data["ip_address"],
        "userAgent": data["user_agent"],
        "metadata": data["metadata"],
        "createdAt": data["created_at"],
    }


@router.get("/audit-logs")
def list_audit_logs(
    request: Request,
    project_id: Optional[str] = Query(default=None, alias="projectId"),
    limit: int = Query(default=50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
) -> dict:
    if project_id:
        owned_project(request, project_id, current_user, "view_audit_logs")
    audit = request.app.state.audit
    owned = request.app.state.project_store.owned_project_ids(current_user.id)
    entries = audit.list_visible(current_user.id, owned, project_id=project_id, limit=limit)
    return {"logs": [_entry_to_dict(e) for e in entries]}


@router.delete("/audit-logs")
def delete_audit_logs(
    request: Request,
    log_id: Optional[int] = Query(default=None, alias="id"),
    project_id: Optional[str] = Query(default=None, alias="projectId"),
    current_user: User = Depends(get_current_user),
) -> dict:
    if project_id:
        owned_project(request, project_id, current_user, "delete_audit_logs")
    owned = request.app.state.project_store.owned_project_ids(current_user.id)
    deleted = request.app.state.audit.delete_visible(current_user.id, owned, log_id=log_id, project_id=project_id)
    return {"success": True, "deleted": deleted}
