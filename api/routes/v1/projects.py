"""
api/routes/v1/projects.py -- Project management REST endpoints.

Routes:
  POST   /api/v1/projects                          -- create project (auth)
  GET    /api/v1/projects                          -- owned + member projects (auth)
  POST   /api/v1/projects/claim                    -- setup code -> API key (anonymous)
  DELETE /api/v1/project/{id}                      -- delete project (owner)
  POST   /api/v1/project/{id}/rotate-api-key       -- new API key (owner)
  PATCH  /api/v1/project/{id}/visibility           -- public / restricted (owner)
  GET    /api/v1/project/{id}/members              -- list members (owner)
  POST   /api/v1/project/{id}/members              -- add member by email (owner)
  DELETE /api/v1/project/{id}/members/{member_id}  -- remove member (owner)
  GET    /api/v1/project/{id}/sessions             -- sessions + stats (owner)
  DELETE /api/v1/project/{id}/sessions             -- revoke one (?sessionId) or all (owner)
  GET    /api/v1/project/{id}/setup-code           -- active setup codes (owner)
  POST   /api/v1/project/{id}/setup-code           -- generate setup code (owner)
  DELETE /api/v1/project/{id}/setup-code/{code_id} -- revoke unused code (owner)
  POST   /api/v1/project/{id}/test                 -- integration check (owner)

Security:
  [O1] Ownership is checked in one place, api/ownership.py. Unknown id -> 404;
       an existing project owned by someone else -> 403 plus an access_denied
       audit entry, so probing other tenants' ids is visible.
  [O2] The full API key is returned only by create, rotate and claim. Lists
       show the 11-character prefix.
  [O3] Member, session and setup-code mutations are scoped by project id in
       the store, so an id belonging to another project matches nothing.
  [O4] claim is anonymous; the database rate limiter allows 10 per minute
       per IP, which makes guessing 128-bit codes pointless.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.limiter import limiter
from api.models import (
    ClaimRequest,
    ClaimResponse,
    MemberAdd,
    MemberResponse,
    ProjectCreate,
    ProjectCreatedResponse,
    ProjectResponse,
    RotateKeyResponse,
    SessionListResponse,
    SessionResponse,
    SessionStats,
    SetupCodeResponse,
    VisibilityPatch,
)
from api.ownership import owned_project
from auth.dependencies import get_current_user, request_info
from auth.models import User
from core.config import get_settings
from core.errors import InvalidRequest, NotFound
from oauth2.exchange import claim_setup_code
from projects.integration import run_integration_test
from projects.lifecycle import issue_setup_code, register_project, rotate_project_key
from security.models import AuditAction
from security.rate_limit import enforce_rate_limit

# Auth policy:
# - POST /api/v1/projects/claim:   anonymous, DB rate limited [O4]
# - POST/GET /api/v1/projects:     requires auth (get_current_user)
# - everything under /project/{id}: requires auth + ownership [O1]
router = APIRouter()


# ---------------------------------------------------------------------------
# Anonymous: setup-code claim
# ---------------------------------------------------------------------------


@router.post("/projects/claim", response_model=ClaimResponse)
def claim(request: Request, body: ClaimRequest) -> ClaimResponse:
    """Redeem a one-time setup code for the project's API key and config."""
    state = request.app.state
    info = request_info(request)
    enforce_rate_limit(state.rate_limiter, state.audit, info, "setup_claim", "api/v1/projects/claim")  # [O4]
    center_url = get_settings().center_url or str(request.base_url)
    payload = claim_setup_code(state.project_store, state.setup_codes, state.audit, body.setup_code, info, center_url)
    return ClaimResponse(**payload)


# ---------------------------------------------------------------------------
# Project CRUD
# ---------------------------------------------------------------------------


@router.post("/projects", response_model=ProjectCreatedResponse, status_code=201)
@limiter.limit("20/minute")
def create_project(
    request: Request,
    body: ProjectCreate,
    current_user: User = Depends(get_current_user),
) -> ProjectCreatedResponse:
    """Create a project. The response is the only place the API key is shown. [O2]"""
    project = register_project(
        request.app.state.project_store,
        request.app.state.audit,
        current_user.id,
        body.name,
        domain=body.domain,
        visibility=body.visibility,
        info=request_info(request),
    )
    return ProjectCreatedResponse.from_new_project(project)


@router.get("/projects", response_model=list[ProjectResponse])
def list_projects(request: Request, current_user: User = Depends(get_current_user)) -> list[ProjectResponse]:
    """Projects the caller owns, followed by those they are a member of."""
    store = request.app.state.project_store
    seen: set[str] = set()
    result: list[ProjectResponse] = []
    for project in store.list_owned(current_user.id) + store.list_member_of(current_user.id):
        if project.id in seen:
            continue
        seen.add(project.id)
        result.append(ProjectResponse.from_project(project, current_user.id))
    return result


@router.delete("/project/{project_id}")
def delete_project(request: Request, project_id: str, current_user: User = Depends(get_current_user)) -> dict:
    project = owned_project(request, project_id, current_user, "delete_project")
    request.app.state.project_store.delete_project(project.id)
    request.app.state.audit.log_success(
        AuditAction.PROJECT_DELETE,
        user_id=current_user.id,
        project_id=project.id,
        info=request_info(request),
        metadata={"name": project.name, "slug": project.slug},
    )
    return {"success": True}


@router.post("/project/{project_id}/rotate-api-key", response_model=RotateKeyResponse)
@limiter.limit("10/minute")
def rotate_api_key(
    request: Request,
    project_id: str,
    current_user: User = Depends(get_current_user),
) -> RotateKeyResponse:
    """Replace the project's API key. The old key is rejected from now on. [O2]"""
    project = owned_project(request, project_id, current_user, "rotate_api_key")
    new_key = rotate_project_key(
        request.app.state.project_store,
        request.app.state.audit,
        project,
        current_user.id,
        info=request_info(request),
    )
    return RotateKeyResponse(
        new_api_key=new_key,
        project_name=project.name,
        warning="The previous API key no longer works. Update every deployment of this application.",
    )


@router.patch("/project/{project_id}/visibility")
def change_visibility(
    request: Request,
    project_id: str,
    body: VisibilityPatch,
    current_user: User = Depends(get_current_user),
) -> dict:
    project = owned_project(request, project_id, current_user, "change_visibility")
    visibility = body.resolved()
    request.app.state.project_store.set_visibility(project.id, visibility)
    request.app.state.audit.log_success(
        AuditAction.VISIBILITY_CHANGE,
        user_id=current_user.id,
        project_id=project.id,
        info=request_info(request),
        metadata={"from": project.visibility.value, "to": visibility.value},
    )
    return {"success": True, "visibility": visibility.value, "isPublic": visibility.value == "public"}


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@router.get("/project/{project_id}/members", response_model=list[MemberResponse])
def list_members(request: Request, project_id: str, current_user: User = Depends(get_current_user)) -> list:
    project = owned_project(request, project_id, current_user, "list_members")
    return [MemberResponse.from_member(m) for m in request.app.state.project_store.list_members(project.id)]


@router.post("/project/{project_id}/members", response_model=MemberResponse, status_code=201)
def add_member(
    request: Request,
    project_id: str,
    body: MemberAdd,
    current_user: User = Depends(get_current_user),
) -> MemberResponse:
    """Grant a registered user access to a restricted project."""
    project = owned_project(request, project_id, current_user, "add_member")
    user = request.app.state.user_store.get_by_email(body.email)
    if user is None:
        raise NotFound("No user with that email exists.")
    member = request.app.state.project_store.add_member(project.id, user.id, body.role)
    if member is None:
        raise InvalidRequest("User is already a member of this project.", code="already_member")
    request.app.state.audit.log_success(
        AuditAction.MEMBER_ADD,
        user_id=user.id,
        project_id=project.id,
        info=request_info(request),
        metadata={"addedBy": current_user.id, "role": member.role.value, "email": user.email},
    )
    return MemberResponse.from_member(member)


@router.delete("/project/{project_id}/members/{member_id}")
def remove_member(
    request: Request,
    project_id: str,
    member_id: str,
    current_user: User = Depends(get_current_user),
) -> dict:
    """Revoke membership. Takes effect on the member's next authorize. [O3]"""
    project = owned_project(request, project_id, current_user, "remove_member")
    removed = request.app.state.project_store.remove_member(project.id, member_id)
    if removed is None:
        raise NotFound("Member not found")
    request.app.state.audit.log_success(
        AuditAction.MEMBER_REMOVE,
        user_id=removed.user_id,
        project_id=project.id,
        info=request_info(request),
        metadata={"removedBy": current_user.id, "email": removed.user_email},
    )
    return {"success": True}


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.get("/project/{project_id}/sessions", response_model=SessionListResponse)
def list_sessions(
    request: Request,
    project_id: str,
    current_user: User = Depends(get_current_user),
) -> SessionListResponse:
    project = owned_project(request, project_id, current_user, "list_sessions")
    store = request.app.state.project_store
    return SessionListResponse(
        sessions=[SessionResponse.from_session(s) for s in store.list_sessions(project.id)],
        stats=SessionStats(**store.session_stats(project.id)),
    )


@router.delete("/project/{project_id}/sessions")
def delete_sessions(
    request: Request,
    project_id: str,
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    current_user: User = Depends(get_current_user),
) -> dict:
    """Revoke one session (?sessionId=...) or every session of the project."""
    project = owned_project(request, project_id, current_user, "delete_sessions")
    store = request.app.state.project_store
    if session_id:
        if not store.delete_session(project.id, session_id):
            raise NotFound("Session not found")
        removed = 1
    else:
        removed = store.delete_sessions_for_project(project.id)
    request.app.state.audit.log_success(
        AuditAction.SESSION_DELETE,
        user_id=current_user.id,
        project_id=project.id,
        info=request_info(request),
        metadata={"sessionId": session_id, "removed": removed},
    )
    return {"success": True, "removed": removed}


# ---------------------------------------------------------------------------
# Setup codes
# ---------------------------------------------------------------------------


@router.get("/project/{project_id}/setup-code")
def list_setup_codes(request: Request, project_id: str, current_user: User = Depends(get_current_user)) -> dict:
    project = owned_project(request, project_id, current_user, "list_setup_codes")
    codes = request.app.state.setup_codes.list_active(project_id=project.id)
    return {"codes": [SetupCodeResponse.from_record(c).model_dump(by_alias=True) for c in codes]}


@router.post("/project/{project_id}/setup-code", response_model=SetupCodeResponse, status_code=201)
@limiter.limit("10/minute")
def generate_setup_code(
    request: Request,
    project_id: str,
    current_user: User = Depends(get_current_user),
) -> SetupCodeResponse:
    """Mint a 24-hour, single-use setup code for a new deployment."""
    project = owned_project(request, project_id, current_user, "generate_setup_code")
    record = issue_setup_code(
        request.app.state.setup_codes,
        request.app.state.audit,
        project,
        current_user.id,
        info=request_info(request),
    )
    return SetupCodeResponse.from_record(record)


@router.delete("/project/{project_id}/setup-code/{code_id}")
def revoke_setup_code(
    request: Request,
    project_id: str,
    code_id: str,
    current_user: User = Depends(get_current_user),
) -> dict:
    """Delete an unused setup code. Used codes stay as a record of the claim."""
    project = owned_project(request, project_id, current_user, "delete_setup_code")
    if not request.app.state.setup_codes.revoke(code_id, project_id=project.id):
        raise NotFound("Setup code not found or already used")
    request.app.state.audit.log_success(
        AuditAction.SETUP_CODE_DELETE,
        user_id=current_user.id,
        project_id=project.id,
        info=request_info(request),
        metadata={"setup_code_id": code_id},
    )
    return {"success": True}


# ---------------------------------------------------------------------------
# Integration test
# ---------------------------------------------------------------------------


@router.post("/project/{project_id}/test")
@limiter.limit("10/minute")
def integration_test(request: Request, project_id: str, current_user: User = Depends(get_current_user)) -> dict:
    """Request the project's domain and summarise session activity. Never fails on network errors."""
    project = owned_project(request, project_id, current_user, "integration_test")
    result = run_integration_test(request.app.state.project_store, project)
    request.app.state.audit.log_success(
        AuditAction.INTEGRATION_TEST,
        user_id=current_user.id,
        project_id=project.id,
        info=request_info(request),
        metadata={"status": result["status"]},
    )
    return result
