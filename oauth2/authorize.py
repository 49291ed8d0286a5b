"""
oauth2/authorize.py -- Authorization-code issuer behind GET /authorize.

Validation order (first failure wins, nothing is written except the audit
entry):

    (a) client_id and redirect_uri present      else InvalidRequest
    (b) a project with slug == client_id        else UnknownClient
    (c) redirect_uri allowed for the project    else RedirectMismatch
    (d) check_project_access() allows the user  else AccessDenied

Only then is a code minted (5 minutes by default), the (user, project)
session row refreshed, and the browser sent to redirect_uri?code=...

Every call writes exactly one audit entry: project_access success, a
project_access failure for (a)-(c), or access_denied for (d).

The caller (web/routes.py) owns the hub-session check; an anonymous browser
never reaches this module.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode, urlsplit

from auth.models import User
from core.config import get_settings
from core.errors import AccessDenied, InvalidRequest, RedirectMismatch, UnknownClient
from oauth2.codes import SingleUseCodes
from oauth2.models import AuthorizationCode, AuthorizationGrant
from projects.access import check_project_access, is_redirect_allowed
from projects.store import ProjectStore
from security.audit import AuditLogger
from security.models import AuditAction, RequestInfo

logger = logging.getLogger("logincenter.authorize")


def issue_authorization_code(
    project_store: ProjectStore,
    codes: SingleUseCodes[AuthorizationCode],
    audit: AuditLogger,
    user: User,
    client_id: str | None,
    redirect_uri: str | None,
    info: RequestInfo,
    state: str | None = None,
    ttl_seconds: int | None = None,
) -> AuthorizationGrant:
    """Validate an authorization request for user and mint a code, or raise."""
    if not client_id or not redirect_uri:
        audit.log_failure(
            AuditAction.PROJECT_ACCESS,
            user_id=user.id,
            info=info,
            metadata={"reason": "invalid_request", "client_id": client_id, "redirect_uri": redirect_uri},
        )
        raise InvalidRequest("Missing client_id or redirect_uri.")

    project = project_store.get_by_slug(client_id)
    if project is None:
        audit.log_failure(
            AuditAction.PROJECT_ACCESS,
            user_id=user.id,
            info=info,
            metadata={"reason": "unknown_client", "client_id": client_id},
        )
        raise UnknownClient()

    if not is_redirect_allowed(project, redirect_uri):
        audit.log_failure(
            AuditAction.PROJECT_ACCESS,
            user_id=user.id,
            project_id=project.id,
            info=info,
            metadata={"reason": "redirect_mismatch", "redirect_uri": redirect_uri, "domain": project.domain},
        )
        raise RedirectMismatch("The redirect URI is not registered for this application.")

    decision = check_project_access(project_store, user.id, project)
    if not decision.allowed:
        audit.log_failure(
            AuditAction.ACCESS_DENIED,
            user_id=user.id,
            project_id=project.id,
            info=info,
            metadata={"reason": decision.reason, "email": user.email, "project_slug": project.slug},
        )
        logger.info("Access denied: %s -> %s (%s)", user.email, project.slug, decision.reason)
        raise AccessDenied("You do not have access to this application.", reason=decision.reason or "access_denied")

    ttl = ttl_seconds if ttl_seconds is not None else get_settings().auth_code_ttl_seconds
    record = codes.issue(
        ttl_seconds=ttl,
        user_id=user.id,
        project_id=project.id,
        redirect_uri=redirect_uri,
    )
    project_store.upsert_session(project.id, user.id, user.email, user.name, info)
    audit.log_success(
        AuditAction.PROJECT_ACCESS,
        user_id=user.id,
        project_id=project.id,
        info=info,
        metadata={"redirect_uri": redirect_uri, "email": user.email, "role": decision.role},
    )
    return AuthorizationGrant(
        code=record.code,
        redirect_to=build_redirect(redirect_uri, record.code, state),
        project_id=project.id,
        user_id=user.id,
    )


def build_redirect(redirect_uri: str, code: str, state: str | None = None) -> str:
    """Append code (and state, if any) with ? or & depending on the existing query."""
    params = {"code": code}
    if state:
        params["state"] = state
    separator = "&" if urlsplit(redirect_uri).query else "?"
    return f"{redirect_uri}{separator}{urlencode(params)}"
