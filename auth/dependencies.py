"""
auth/dependencies.py -- FastAPI Depends() helpers for the three credentials
the hub accepts.

  1. Hub session: JWT in the "access_token" cookie (web UI) or an
     Authorization: Bearer header. Valid only while its "tv" claim equals
     the user's stored token_version.
  2. Project API key: x-api-key header on server-to-server calls. Resolves
     to a Project, not a User.
  3. Admin key: x-admin-key header compared in constant time with
     ADMIN_API_KEY. Unset means the admin surface is closed.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() raises Unauthenticated.

client_ip() honours X-Forwarded-For / X-Real-IP only when
TRUST_PROXY_HEADERS is on; otherwise a client could pick its own rate-limit
bucket by sending the header.

Layer rule: no imports from projects/, oauth2/, or web/. Stores are reached
through request.app.state.
"""

from __future__ import annotations

import hmac
from typing import TYPE_CHECKING

from fastapi import Request

from auth.models import User
from auth.tokens import SESSION_COOKIE, decode_access_token
from core.config import get_settings
from core.errors import InvalidApiKey, MissingApiKey, Unauthenticated
from security.models import AuditAction, RequestInfo

if TYPE_CHECKING:
    from projects.models import Project

# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------


def client_ip(request: Request) -> str:
    if get_settings().trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for", "")
        if forwarded:
            return forwarded.split(",")[0].strip() or "unknown"
        real_ip = request.headers.get("x-real-ip", "")
        if real_ip:
            return real_ip.strip()
    return request.client.host if request.client else "unknown"


def request_info(request: Request) -> RequestInfo:
    return RequestInfo(ip_address=client_ip(request), user_agent=request.headers.get("user-agent"))


# ---------------------------------------------------------------------------
# Hub session
# ---------------------------------------------------------------------------


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request via cookie or Bearer token. Never raises.

    A token whose "tv" claim no longer matches the stored token_version was
    issued before a kill switch and is rejected.
    """
    token: str | None = request.cookies.get(SESSION_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    if not token:
        return None

    payload = decode_access_token(token)
    if payload is None:
        return None
    user = request.app.state.user_store.get_by_id(payload["user_id"])
    if user is None or user.token_version != payload["tv"]:
        return None
    return user


def get_current_user(request: Request) -> User:
    """Require a hub session. Raises Unauthenticated (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise Unauthenticated()
    return user


# ---------------------------------------------------------------------------
# Project API key
# ---------------------------------------------------------------------------


def require_project_api_key(request: Request) -> Project:
    """Resolve the x-api-key header to a Project.

    Missing header -> MissingApiKey (401). Unknown key -> InvalidApiKey (403)
    and an access_denied audit entry.
    """
    raw_key = request.headers.get("x-api-key", "").strip()
    if not raw_key:
        raise MissingApiKey()
    project = request.app.state.project_store.get_by_api_key(raw_key)
    if project is None:
        request.app.state.audit.log_failure(
            AuditAction.ACCESS_DENIED,
            info=request_info(request),
            metadata={"reason": "invalid_api_key", "path": request.url.path},
        )
        raise InvalidApiKey()
    return project


# ---------------------------------------------------------------------------
# Admin key
# ---------------------------------------------------------------------------


def require_admin_key(request: Request) -> None:
    """Check x-admin-key against ADMIN_API_KEY in constant time."""
    expected = get_settings().admin_api_key
    provided = request.headers.get("x-admin-key", "")
    if not expected or not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        request.app.state.audit.log_failure(
            AuditAction.ACCESS_DENIED,
            info=request_info(request),
            metadata={"reason": "invalid_admin_key", "path": request.url.path},
        )
        raise Unauthenticated("Unauthorized")
