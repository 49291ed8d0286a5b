"""
api/routes/v1/public.py -- Anonymous endpoints called from client front ends.

Routes:
  POST /api/v1/public/logout          -- drop one (user, project) session
  POST /api/v1/public/token           -- redeem a code without an API key (SDK)
  POST /api/v1/public/session/verify  -- re-check an SDK sessionToken

Security:
  [P1] Logout always answers {"success": true}, whether or not the user,
       project or session existed, and whether or not the body parsed.
       Anything else would let an anonymous caller enumerate users and
       projects.
  [P2] Every route counts against the database rate limiter, keyed by
       client IP: 20/min for logout, 10/min for token, 60/min for verify.
       A rejected call is 429 with Retry-After in seconds.
  [P3] The SDK token route requires the exact redirect_uri the code was
       issued for and re-checks project access before the code is spent.
  [P4] SDK responses carry Cache-Control: no-store.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.models import PublicSessionVerifyRequest, TokenExchangeRequest
from auth.dependencies import request_info
from core.errors import InvalidRequest
from oauth2.exchange import public_exchange_code, public_logout, verify_project_session_token
from security.rate_limit import enforce_rate_limit

router = APIRouter()


async def _lenient_json(request: Request) -> dict:
    """Parse the body as a JSON object, or return {} for anything else. [P1]"""
    raw = await request.body()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


@router.post("/public/logout")
async def logout(request: Request) -> JSONResponse:
    """Delete the caller's session for one project. Silent on unknown input."""
    state = request.app.state
    info = request_info(request)
    enforce_rate_limit(state.rate_limiter, state.audit, info, "public_logout", "api/v1/public/logout")  # [P2]

    body = await _lenient_json(request)
    user_id = body.get("userId")
    project_slug = body.get("projectSlug")
    result = public_logout(
        state.project_store,
        state.audit,
        user_id if isinstance(user_id, str) else None,
        project_slug if isinstance(project_slug, str) else None,
        info,
    )
    return JSONResponse(content=result)


def _no_store(content: dict) -> JSONResponse:
    resp = JSONResponse(content=content)
    resp.headers["Cache-Control"] = "no-store"  # [P4]
    return resp


@router.post("/public/token")
def public_token(request: Request, body: TokenExchangeRequest) -> JSONResponse:
    """Exchange a code for the user's profile and a short-lived sessionToken."""
    state = request.app.state
    info = request_info(request)
    enforce_rate_limit(state.rate_limiter, state.audit, info, "public_token", "api/v1/public/token")  # [P2]
    payload = public_exchange_code(
        state.project_store,
        state.user_store,
        state.auth_codes,
        state.audit,
        body.code,
        body.redirect_uri,  # [P3]
        info,
    )
    return _no_store(payload)


@router.post("/public/session/verify")
def public_session_verify(request: Request, body: PublicSessionVerifyRequest) -> JSONResponse:
    """Answer {valid: true} while the sessionToken's user still has access."""
    state = request.app.state
    info = request_info(request)
    enforce_rate_limit(
        state.rate_limiter, state.audit, info, "public_session_verify", "api/v1/public/session/verify"
    )  # [P2]
    if not body.token:
        raise InvalidRequest("Missing token")
    result = verify_project_session_token(state.project_store, state.user_store, state.audit, body.token, info)
    return _no_store(result)
