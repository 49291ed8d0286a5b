"""
oauth2/exchange.py -- Server-to-server redemption and verification.

Every function here runs on behalf of a client project that has already
been authenticated by its API key (auth/dependencies.py), except
the SDK pair, claim_setup_code() and public_logout(), which are anonymous
and protected by the database rate limiter in the route layer.

  exchange_code()                authorization code -> user profile + tokenVersion
  verify_session()               (userId, tokenVersion) -> valid / invalid + reason
  public_exchange_code()         code + exact redirect_uri -> profile + sessionToken
  verify_project_session_token() sessionToken -> valid / invalid + reason
  claim_setup_code()             setup code -> project API key and config
  public_logout()                drop one (user, project) session, silently

Failure reporting:
  exchange_code(), public_exchange_code() and claim_setup_code() raise
  HubError subclasses with precise codes. verify_session() and
  verify_project_session_token() never raise for a stale session; they
  answer {"valid": false, "reason": ...} so the client can drop it.
  public_logout() never reports whether the user or project existed.

Every redemption failure is audited before the exception leaves this
module, so enumeration attempts show up in the security report.
"""

from __future__ import annotations

import logging

from auth.store import UserStore
from auth.tokens import create_project_session_token, decode_project_session_token, is_well_formed_setup_code
from core.errors import AccessDenied, HubError, InvalidOrExpiredCode, InvalidRequest, NotFound, RedirectMismatch
from oauth2.codes import SingleUseCodes
from oauth2.models import AuthorizationCode, SetupCode
from projects.access import check_access
from projects.models import Project
from projects.store import ProjectStore
from security.audit import AuditLogger
from security.models import AuditAction, RequestInfo

logger = logging.getLogger("logincenter.exchange")


# ---------------------------------------------------------------------------
# Code exchange
# ---------------------------------------------------------------------------


def exchange_code(
    project_store: ProjectStore,
    user_store: UserStore,
    codes: SingleUseCodes[AuthorizationCode],
    audit: AuditLogger,
    project: Project,
    code: str | None,
    redirect_uri: str | None,
    info: RequestInfo,
) -> dict:
    """Redeem an authorization code issued to project. Returns the exchange payload.

    A code minted for a different project is reported as not found and is
    left unconsumed, as is a code presented with the wrong redirect_uri.
    """
    if not code:
        audit.log_failure(
            AuditAction.TOKEN_EXCHANGE,
            project_id=project.id,
            info=info,
            metadata={"reason": "missing_code"},
        )
        raise InvalidRequest("Missing code")

    def _bound_to_caller(record: AuthorizationCode) -> None:
        if record.project_id != project.id:
            raise InvalidOrExpiredCode("Invalid or expired authorization code")
        if redirect_uri and redirect_uri != record.redirect_uri:
            raise RedirectMismatch("Redirect URI mismatch.")

    try:
        record = codes.redeem(code, validate=_bound_to_caller, used_by_ip=info.ip_address)
    except HubError as exc:
        audit.log_failure(
            AuditAction.TOKEN_EXCHANGE,
            project_id=project.id,
            info=info,
            metadata={"reason": exc.code, "code_prefix": code[:8]},
        )
        raise

    user = user_store.get_by_id(record.user_id)
    if user is None:
        audit.log_failure(
            AuditAction.TOKEN_EXCHANGE,
            user_id=record.user_id,
            project_id=project.id,
            info=info,
            metadata={"reason": "user_not_found"},
        )
        raise NotFound("User not found")

    project_store.upsert_session(project.id, user.id, user.email, user.name, info)
    audit.log_success(
        AuditAction.TOKEN_EXCHANGE,
        user_id=user.id,
        project_id=project.id,
        info=info,
        metadata={"email": user.email, "project_slug": project.slug},
    )
    logger.info("Code exchanged: %s -> %s", user.email, project.slug)
    return {
        "user": {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "image": user.image,
            "role": user.role,
            "tokenVersion": user.token_version,
        },
        "tokenVersion": user.token_version,
        "project": {"id": project.id, "name": project.name},
    }


# ---------------------------------------------------------------------------
# Session verification
# ---------------------------------------------------------------------------


def verify_session(
    project_store: ProjectStore,
    user_store: UserStore,
    audit: AuditLogger,
    project: Project,
    user_id: str,
    token_version: int,
    info: RequestInfo,
) -> dict:
    """Compare the caller's tokenVersion with the stored one.

    Read-only apart from refreshing the session's last_seen_at on success.
    """
    user = user_store.get_by_id(user_id)
    if user is None:
        reason = "user_not_found"
    elif user.token_version != token_version:
        reason = "token_version_mismatch"
    else:
        project_store.touch_session(project.id, user.id)
        return {"valid": True}

    audit.log_failure(
        AuditAction.SESSION_VERIFY,
        user_id=user.id if user is not None else None,
        project_id=project.id,
        info=info,
        metadata={"reason": reason, "presented_version": token_version},
    )
    return {"valid": False, "reason": reason}


# ---------------------------------------------------------------------------
# SDK flow for static front ends (no API key)
# ---------------------------------------------------------------------------


def public_exchange_code(
    project_store: ProjectStore,
    user_store: UserStore,
    codes: SingleUseCodes[AuthorizationCode],
    audit: AuditLogger,
    code: str | None,
    redirect_uri: str | None,
    info: RequestInfo,
) -> dict:
    """Redeem a code without an API key. Returns the profile and a sessionToken.

    With no key to bind the caller to a project, the exact redirect_uri the
    code was issued for is the proof of origin, so it is mandatory here.
    Project access is re-checked at redemption. A code that fails either
    check stays unconsumed. The payload carries no tokenVersion; the
    sessionToken embeds it and only /api/v1/public/session/verify reads it.
    """
    if not code or not redirect_uri:
        audit.log_failure(
            AuditAction.TOKEN_EXCHANGE,
            info=info,
            metadata={"reason": "missing_params", "endpoint": "public"},
        )
        raise InvalidRequest("Missing authorization code or redirect_uri")

    def _redirect_and_access(record: AuthorizationCode) -> None:
        if redirect_uri != record.redirect_uri:
            raise RedirectMismatch("Redirect URI mismatch.")
        decision = check_access(project_store, record.user_id, record.project_id)
        if not decision.allowed:
            raise AccessDenied("Access denied. User is not authorized for this project.", reason=decision.reason)

    try:
        record = codes.redeem(code, validate=_redirect_and_access, used_by_ip=info.ip_address)
    except AccessDenied as exc:
        record = codes.get(code)
        audit.log_failure(
            AuditAction.ACCESS_DENIED,
            user_id=record.user_id if record else None,
            project_id=record.project_id if record else None,
            info=info,
            metadata={"reason": exc.reason, "endpoint": "public"},
        )
        raise
    except HubError as exc:
        audit.log_failure(
            AuditAction.TOKEN_EXCHANGE,
            info=info,
            metadata={"reason": exc.code, "endpoint": "public", "code_prefix": code[:8]},
        )
        raise

    user = user_store.get_by_id(record.user_id)
    project = project_store.get_by_id(record.project_id)
    if user is None or project is None:
        audit.log_failure(
            AuditAction.TOKEN_EXCHANGE,
            user_id=record.user_id,
            project_id=record.project_id,
            info=info,
            metadata={"reason": "user_not_found" if user is None else "project_not_found", "endpoint": "public"},
        )
        raise NotFound("User not found" if user is None else "Project not found")

    project_store.upsert_session(project.id, user.id, user.email, user.name, info)
    audit.log_success(
        AuditAction.TOKEN_EXCHANGE,
        user_id=user.id,
        project_id=project.id,
        info=info,
        metadata={"endpoint": "public", "redirectUri": redirect_uri, "email": user.email, "project_slug": project.slug},
    )
    logger.info("Public code exchanged: %s -> %s", user.email, project.slug)
    return {
        "user": {"id": user.id, "email": user.email, "name": user.name, "image": user.image},
        "project": {"id": project.id, "name": project.name},
        "sessionToken": create_project_session_token(user.id, project.id, user.token_version),
    }


def verify_project_session_token(
    project_store: ProjectStore,
    user_store: UserStore,
    audit: AuditLogger,
    token: str,
    info: RequestInfo,
) -> dict:
    """Re-check a sessionToken against current access and the kill switch.

    Answers {"valid": false, "reason": ...} for a bad signature, an expired
    token, a revoked membership, a restricted project, a deleted user or a
    bumped token_version.
    """
    payload = decode_project_session_token(token)
    if payload is None:
        audit.log_failure(AuditAction.SESSION_VERIFY, info=info, metadata={"reason": "invalid_token", "endpoint": "public"})
        return {"valid": False, "reason": "invalid_token"}

    user_id = payload["user_id"]
    project_id = payload["project_id"]
    user = user_store.get_by_id(user_id)
    if not check_access(project_store, user_id, project_id).allowed:
        reason = "access_denied"
    elif user is None:
        reason = "user_not_found"
    elif user.token_version != (payload.get("tv") or 1):
        reason = "token_version_mismatch"
    else:
        project_store.touch_session(project_id, user_id)
        return {"valid": True}

    audit.log_failure(
        AuditAction.SESSION_VERIFY,
        user_id=user.id if user is not None else None,
        project_id=project_id if project_store.get_by_id(project_id) is not None else None,
        info=info,
        metadata={"reason": reason, "endpoint": "public"},
    )
    return {"valid": False, "reason": reason}


# ---------------------------------------------------------------------------
# Setup-code claim
# ---------------------------------------------------------------------------


def claim_setup_code(
    project_store: ProjectStore,
    setup_codes: SingleUseCodes[SetupCode],
    audit: AuditLogger,
    code: str | None,
    info: RequestInfo,
    center_url: str,
) -> dict:
    """Trade a one-time setup code for the project's API key and config.

    Raises:
        InvalidRequest:       missing or malformed code (400).
        InvalidOrExpiredCode: unknown code, or its project is gone (404).
        CodeAlreadyUsed:      claimed before (410).
        CodeExpired:          past its 24h lifetime (410).
    """
    code = (code or "").strip()
    if not code:
        raise InvalidRequest("Setup code is required")
    if not is_well_formed_setup_code(code):
        raise InvalidRequest("Invalid setup code format")

    try:
        record = setup_codes.redeem(code, used_by_ip=info.ip_address)
    except HubError as exc:
        audit.log_failure(
            AuditAction.SETUP_CODE_USE,
            info=info,
            metadata={"reason": exc.code, "code_prefix": code[:10]},
        )
        raise

    project = project_store.get_by_id(record.project_id)
    if project is None:
        raise InvalidOrExpiredCode("Invalid or expired setup code")

    audit.log_success(
        AuditAction.SETUP_CODE_USE,
        user_id=project.owner_id,
        project_id=project.id,
        info=info,
        metadata={"setup_code_id": record.id},
    )
    logger.info("Setup code claimed for project %s from %s", project.slug, info.ip_address)
    return {
        "apiKey": project.api_key,
        "slug": project.slug,
        "centerUrl": center_url.rstrip("/"),
        "projectName": project.name,
        "projectId": project.id,
    }


# ---------------------------------------------------------------------------
# Public logout
# ---------------------------------------------------------------------------


def public_logout(
    project_store: ProjectStore,
    audit: AuditLogger,
    user_id: str | None,
    project_slug: str | None,
    info: RequestInfo,
) -> dict:
    """Delete the (user, project) session if both exist. Always reports success."""
    if not user_id or not project_slug:
        return {"success": True}
    project = project_store.get_by_slug(project_slug)
    if project is None:
        return {"success": True}

    removed = project_store.delete_user_session(project.id, user_id)
    audit.log_success(
        AuditAction.LOGOUT,
        user_id=user_id,
        project_id=project.id,
        info=info,
        metadata={"endpoint": "public", "sessions_removed": removed},
    )
    return {"success": True}
