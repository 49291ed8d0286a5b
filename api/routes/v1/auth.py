"""
api/routes/v1/auth.py -- Hub session REST endpoints.

Routes:
  GET  /api/v1/auth/me          -- current user info (requires auth)
  GET  /api/v1/auth/providers   -- list enabled identity providers (public)
  POST /api/v1/auth/logout      -- clears the hub cookie; 200
  POST /api/v1/auth/logout-all  -- kill switch for the caller (requires auth)

Security:
  [K1] logout-all increments token_version, so every client project that
       consults /api/v1/session/verify drops the user on its next request,
       and the hub cookie itself stops validating.
  [K2] logout-all is throttled by slowapi; each call invalidates every
       session the user has, so there is no reason to allow bursts.
  Cache-Control: no-store on responses that carry identity data.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import MeResponse, OAuthProviderInfo
from auth.dependencies import get_current_user, request_info, try_get_current_user
from auth.models import User
from auth.oauth import get_enabled_providers
from auth.sessions import revoke_all_sessions
from auth.tokens import clear_auth_cookie
from security.models import AuditAction

# Auth policy:
# - GET  /api/v1/auth/providers:   public -- login page renders provider buttons
# - POST /api/v1/auth/logout:      public -- clearing a cookie needs no prior auth
# - GET  /api/v1/auth/me:          requires auth (get_current_user)
# - POST /api/v1/auth/logout-all:  requires auth (get_current_user)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured identity providers. Empty if none are set up."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


@router.post("/auth/logout")
async def logout(request: Request) -> JSONResponse:
    """Clear the hub cookie. Client-project sessions are left alone."""
    user = try_get_current_user(request)
    if user is not None:
        request.app.state.audit.log_success(
            AuditAction.LOGOUT,
            user_id=user.id,
            info=request_info(request),
            metadata={"endpoint": "hub"},
        )
    resp = JSONResponse(content={"success": True})
    clear_auth_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Return identity information for the currently authenticated user."""
    resp = JSONResponse(content=MeResponse.from_user(current_user).model_dump(by_alias=True))
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout-all")
@limiter.limit("5/minute")  # [K2]
def logout_all(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Sign the caller out of the hub and of every client project. [K1]"""
    new_version = revoke_all_sessions(
        request.app.state.user_store,
        request.app.state.project_store,
        request.app.state.audit,
        current_user.id,
        info=request_info(request),
    )
    resp = JSONResponse(content={"success": True, "tokenVersion": new_version})
    clear_auth_cookie(resp)
    return resp
